"""Throughput / duración media en ventana y roll-up a nivel de cola."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Optional

from ..core.clock import Clock, SystemClock
from ..core.domain.identity import JobIdentity, QueueRef
from ..core.domain.queue import QueueAggregate, QueueDepth
from ..core.store.interface import KeyValueStore
from ..core.store.keys import MetricsKeyBuilder
from ..discovery.registry import QueueDiscovery
from ..recording.job_repository import JobMetricsRepository
from .history import NullQueueInspector, QueueInspector
from .repository import QueueMetricsRepository

if TYPE_CHECKING:
    from ..workers.heartbeat import WorkerHeartbeatTracker

logger = logging.getLogger(__name__)

QUEUE_WINDOW_SECONDS = 60


class WindowedAggregator:
    def __init__(
        self,
        store: KeyValueStore,
        keys: MetricsKeyBuilder,
        discovery: QueueDiscovery,
        jobs: JobMetricsRepository,
        queues: QueueMetricsRepository,
        clock: Optional[Clock] = None,
        inspector: Optional[QueueInspector] = None,
        workers: Optional["WorkerHeartbeatTracker"] = None,
    ):
        self._store = store
        self._keys = keys
        self._discovery = discovery
        self._jobs = jobs
        self._queues = queues
        self._clock = clock or SystemClock()
        self._inspector = inspector or NullQueueInspector()
        self._workers = workers

    def throughput(self, identity: JobIdentity, window_seconds: int) -> int:
        """Nº de muestras de duración en [now - window, now]. Sin normalizar."""
        now = self._clock.now()
        return self._store.zcount(self._keys.durations(identity), now - window_seconds, now)

    def average_duration_in_window(self, identity: JobIdentity, window_seconds: int) -> float:
        values = self._jobs.get_duration_samples_since(identity, self._clock.now() - window_seconds)
        if not values:
            return 0.0
        return sum(values) / len(values)

    def aggregate_queue(self, connection: str, queue: str) -> QueueAggregate:
        """Calcula y guarda el snapshot de la cola.

        throughput y avg_duration salen de la ventana de 60 s; avg_duration se
        pondera por el throughput de cada job class. failure_rate usa totales
        de vida (JobAggregate).
        """
        ref = QueueRef(connection, queue)
        now = self._clock.now()

        window_jobs = 0
        weighted_duration = 0.0
        total_processed = 0
        total_failed = 0
        last_processed_at = None

        for identity in self._discovery.jobs_for_queue(ref.connection, ref.queue):
            jobs_in_window = self.throughput(identity, QUEUE_WINDOW_SECONDS)
            if jobs_in_window:
                avg = self.average_duration_in_window(identity, QUEUE_WINDOW_SECONDS)
                window_jobs += jobs_in_window
                weighted_duration += avg * jobs_in_window

            aggregate = self._jobs.get_metrics(identity)
            if aggregate is None:
                continue
            total_processed += aggregate.total_processed
            total_failed += aggregate.total_failed
            if aggregate.last_processed_at is not None:
                last_processed_at = max(last_processed_at or 0.0, aggregate.last_processed_at)

        total = total_processed + total_failed
        depth = self._depth(ref)

        snapshot = QueueAggregate(
            connection=ref.connection,
            queue=ref.queue,
            throughput_per_minute=float(window_jobs),
            avg_duration_ms=weighted_duration / window_jobs if window_jobs else 0.0,
            failure_rate=total_failed / total * 100.0 if total else 0.0,
            total_processed=total_processed,
            total_failed=total_failed,
            last_processed_at=last_processed_at,
            depth=depth.depth,
            oldest_job_age=depth.oldest_job_age,
            active_workers=self._active_workers(ref),
            recorded_at=now,
        )
        self._queues.record_snapshot(snapshot)
        logger.debug(
            "QUEUE_AGGREGATED queue=%s throughput=%d avg_ms=%.2f failure_rate=%.2f",
            ref.member, window_jobs, snapshot.avg_duration_ms, snapshot.failure_rate,
        )
        return snapshot

    def _depth(self, ref: QueueRef) -> QueueDepth:
        return self._inspector.depth(ref.connection, ref.queue)

    def _active_workers(self, ref: QueueRef) -> int:
        if self._workers is None:
            return 0
        return len(self._workers.get_active_workers(ref.connection, ref.queue))

    def aggregate_all_queues(self) -> Dict[str, int]:
        """Una cola que falla se registra en log y se salta; el resto sigue."""
        summary = {"queues_processed": 0, "queues_failed": 0}
        for ref in self._discovery.list_queues():
            try:
                self.aggregate_queue(ref.connection, ref.queue)
                summary["queues_processed"] += 1
            except Exception as e:
                summary["queues_failed"] += 1
                logger.exception(
                    "AGGREGATE_FAILED connection=%s queue=%s err=%s", ref.connection, ref.queue, e
                )
        return summary

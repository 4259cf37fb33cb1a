"""Sweep orchestrator: una pasada sobre todas las colas descubiertas.

Cada cola se procesa y se confirma por separado; un fallo en una cola se
registra y la pasada continúa con la siguiente.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict

from queue_metrics.core.domain.identity import QueueRef
from queue_metrics.service import QueueMetricsService

from .config import SweepConfig

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    queues_aggregated: int = 0
    queues_failed: int = 0
    baselines_calculated: int = 0
    baselines_skipped: int = 0
    workers_crashed: int = 0
    cleaned: Dict[str, int] = field(default_factory=dict)


class SweepRunner:
    def __init__(self, service: QueueMetricsService, cfg: SweepConfig = SweepConfig()):
        self._service = service
        self._cfg = cfg

    def baseline_due(self, ref: QueueRef) -> bool:
        """True si el intervalo recomendado ya pasó desde el último cálculo."""
        svc = self._service
        baseline = svc.baselines.get_baseline(ref.connection, ref.queue)
        if baseline is None:
            return True
        interval_minutes = svc.deviation.recommended_interval_minutes(ref.connection, ref.queue)
        return svc.clock.now() - baseline.calculated_at >= interval_minutes * 60

    def _aggregate(self, ref: QueueRef, result: SweepResult) -> None:
        svc = self._service
        try:
            snapshot = svc.aggregator.aggregate_queue(ref.connection, ref.queue)
            svc.history.record_throughput_history(ref.connection, ref.queue, int(snapshot.throughput_per_minute))
            svc.history.record_depth_history(ref.connection, ref.queue, snapshot.depth, snapshot.oldest_job_age)
            result.queues_aggregated += 1
        except Exception as e:
            result.queues_failed += 1
            logger.error("sweep_aggregate_failed connection=%s queue=%s err=%s", ref.connection, ref.queue, e)

    def _baseline(self, ref: QueueRef, result: SweepResult) -> None:
        svc = self._service
        try:
            if not self.baseline_due(ref):
                result.baselines_skipped += 1
                return
            if svc.estimator.calculate_for_queue(ref.connection, ref.queue) is not None:
                result.baselines_calculated += 1
        except Exception as e:
            logger.error("sweep_baseline_failed connection=%s queue=%s err=%s", ref.connection, ref.queue, e)

    def run_once(self) -> SweepResult:
        svc = self._service
        t0 = time.monotonic()
        result = SweepResult()

        try:
            result.workers_crashed = svc.workers.detect_staled_workers(self._cfg.stale_threshold_seconds)
        except Exception as e:
            logger.error("sweep_stale_workers_failed err=%s", e)

        queues = svc.discovery.list_queues()
        for ref in queues:
            self._aggregate(ref, result)
            if not self._cfg.skip_baselines:
                self._baseline(ref, result)

        if self._cfg.cleanup_older_than_seconds:
            try:
                result.cleaned = svc.cleanup(self._cfg.cleanup_older_than_seconds)
            except Exception as e:
                logger.error("sweep_cleanup_failed err=%s", e)

        cycle_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "sweep_cycle ms=%.1f queues=%d aggregated=%d failed=%d baselines=%d skipped=%d crashed=%d",
            cycle_ms, len(queues), result.queues_aggregated, result.queues_failed,
            result.baselines_calculated, result.baselines_skipped, result.workers_crashed,
        )
        return result

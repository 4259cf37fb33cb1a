"""Cableado de componentes a partir de Settings.

Contenedor tipado: los consumidores llaman directamente al componente que
necesitan (``service.recorder``, ``service.workers``...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from common.config import Settings, get_settings
from common.store import get_store

from .aggregation.history import QueueHistoryRecorder, QueueInspector
from .aggregation.job_metrics import JobMetricsCalculator
from .aggregation.repository import QueueMetricsRepository
from .aggregation.trends import TrendAnalyzer
from .aggregation.windowed import WindowedAggregator
from .baseline.deviation import DeviationDetector
from .baseline.estimator import BaselineEstimator
from .baseline.repository import BaselineRepository
from .core.clock import Clock, SystemClock
from .core.store.interface import KeyValueStore
from .core.store.keys import MetricsKeyBuilder
from .discovery.registry import QueueDiscovery
from .recording.hooks import HookRegistry
from .recording.ingestion import MetricsIngestor
from .recording.job_repository import JobMetricsRepository
from .recording.recorder import SampleRecorder
from .workers.heartbeat import WorkerHeartbeatTracker

logger = logging.getLogger(__name__)


@dataclass
class QueueMetricsService:
    settings: Settings
    clock: Clock
    store: KeyValueStore
    keys: MetricsKeyBuilder
    discovery: QueueDiscovery
    hooks: HookRegistry
    recorder: SampleRecorder
    jobs: JobMetricsRepository
    queues: QueueMetricsRepository
    history: QueueHistoryRecorder
    aggregator: WindowedAggregator
    job_metrics: JobMetricsCalculator
    trends: TrendAnalyzer
    baselines: BaselineRepository
    estimator: BaselineEstimator
    deviation: DeviationDetector
    workers: WorkerHeartbeatTracker
    ingestor: MetricsIngestor

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        inspector: Optional[QueueInspector] = None,
    ) -> "QueueMetricsService":
        settings = settings or get_settings()
        clock = clock or SystemClock()
        store = store or get_store(settings, clock)
        keys = MetricsKeyBuilder.from_settings(settings)

        discovery = QueueDiscovery(store, keys, clock)
        hooks = HookRegistry()
        recorder = SampleRecorder(
            store, keys, discovery, clock, hooks,
            sample_cap=settings.sample_cap,
            exception_max_length=settings.exception_max_length,
        )
        jobs = JobMetricsRepository(store, keys, discovery, clock)
        queues = QueueMetricsRepository(store, keys, clock)
        history = QueueHistoryRecorder(store, keys, clock)
        workers = WorkerHeartbeatTracker(
            store, keys, clock, stale_threshold_seconds=settings.stale_threshold_seconds
        )
        aggregator = WindowedAggregator(
            store, keys, discovery, jobs, queues, clock, inspector=inspector, workers=workers
        )
        baselines = BaselineRepository(store, keys, clock)

        return cls(
            settings=settings,
            clock=clock,
            store=store,
            keys=keys,
            discovery=discovery,
            hooks=hooks,
            recorder=recorder,
            jobs=jobs,
            queues=queues,
            history=history,
            aggregator=aggregator,
            job_metrics=JobMetricsCalculator(jobs, aggregator, clock, windows=settings.windows),
            trends=TrendAnalyzer(history, clock),
            baselines=baselines,
            estimator=BaselineEstimator(
                jobs, discovery, baselines, clock,
                decay_factor=settings.baseline_decay_factor,
                target_sample_size=settings.baseline_target_sample_size,
                max_samples=settings.baseline_max_samples,
            ),
            deviation=DeviationDetector(
                jobs, discovery, baselines, clock,
                threshold=settings.baseline_deviation_threshold,
                enabled=settings.baseline_deviation_enabled,
                intervals=settings.baseline_intervals,
                trigger_interval_minutes=settings.baseline_deviation_trigger_minutes,
            ),
            workers=workers,
            ingestor=MetricsIngestor(recorder, workers, enabled=settings.enabled),
        )

    def cleanup(self, older_than_seconds: float) -> Dict[str, int]:
        """Limpieza explícita en todos los repositorios."""
        return {
            "jobs": self.jobs.cleanup(older_than_seconds),
            "queues": self.queues.cleanup(older_than_seconds),
            "baselines": self.baselines.cleanup(older_than_seconds),
            "workers": self.workers.cleanup(older_than_seconds),
        }

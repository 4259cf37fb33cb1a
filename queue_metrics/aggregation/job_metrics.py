"""Informe de métricas puntual para un JobIdentity."""

from __future__ import annotations

from typing import Optional, Sequence

from ..core.clock import Clock, SystemClock
from ..core.domain.identity import JobIdentity
from ..core.domain.job import (
    DurationStats,
    FailureInfo,
    JobMetricsReport,
    MemoryStats,
    ThroughputStats,
    WindowStats,
)
from ..recording.job_repository import JobMetricsRepository
from ..stats.percentiles import summarize
from .windowed import WindowedAggregator

DEFAULT_WINDOWS = (60, 300, 900, 3600, 86400)


class JobMetricsCalculator:
    def __init__(
        self,
        jobs: JobMetricsRepository,
        aggregator: WindowedAggregator,
        clock: Optional[Clock] = None,
        windows: Sequence[int] = DEFAULT_WINDOWS,
    ):
        self._jobs = jobs
        self._aggregator = aggregator
        self._clock = clock or SystemClock()
        self._windows = tuple(windows)

    def calculate(self, identity: JobIdentity) -> Optional[JobMetricsReport]:
        aggregate = self._jobs.get_metrics(identity)
        if aggregate is None:
            return None

        durations = summarize(self._jobs.get_duration_samples(identity))
        memory = summarize(self._jobs.get_memory_samples(identity))

        windows = []
        for window in self._windows:
            count = self._aggregator.throughput(identity, window)
            windows.append(WindowStats(
                window_seconds=window,
                jobs_processed=count,
                avg_duration_ms=self._aggregator.average_duration_in_window(identity, window) if count else 0.0,
                throughput_per_minute=count / (window / 60.0),
            ))

        return JobMetricsReport(
            identity=identity,
            aggregate=aggregate,
            duration=DurationStats(
                avg=durations.avg,
                min=durations.min,
                max=durations.max,
                p50=durations.p50,
                p95=durations.p95,
                p99=durations.p99,
                stddev=durations.stddev,
            ),
            memory=MemoryStats(avg=memory.avg, peak=memory.max, p95=memory.p95, p99=memory.p99),
            throughput=ThroughputStats(
                per_minute=float(self._aggregator.throughput(identity, 60)),
                per_hour=float(self._aggregator.throughput(identity, 3600)),
                per_day=float(self._aggregator.throughput(identity, 86400)),
            ),
            failures=FailureInfo(
                count=aggregate.total_failed,
                rate=aggregate.failure_rate,
                last_failed_at=aggregate.last_failed_at,
                last_exception=aggregate.last_exception,
            ),
            windows=windows,
            calculated_at=self._clock.now(),
        )

"""Desviación de las muestras recientes respecto al baseline guardado.

Regla: |observado - baseline| / baseline >= threshold (2.0 = 200 %).
Un baseline <= 0 nunca se considera desviado.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.clock import Clock, SystemClock
from ..core.domain.baseline import BaselineEstimate
from ..discovery.registry import QueueDiscovery
from ..recording.job_repository import JobMetricsRepository
from .estimator import aged_confidence, cpu_percent
from .repository import BaselineRepository

logger = logging.getLogger(__name__)

DEFAULT_RECENT_SAMPLES = 100

DEFAULT_INTERVALS: Dict[str, int] = {
    "no_baseline": 1,
    "low_confidence": 5,
    "medium_confidence": 10,
    "high_confidence": 30,
    "very_high_confidence": 60,
}


def relative_deviation(observed: float, baseline: float) -> Optional[float]:
    if baseline <= 0:
        return None
    return abs(observed - baseline) / baseline


def is_significant_deviation(observed: float, baseline: float, threshold: float) -> bool:
    deviation = relative_deviation(observed, baseline)
    return deviation is not None and deviation >= threshold


@dataclass(frozen=True)
class DeviationReport:
    has_deviation: bool
    metric: Optional[str] = None
    observed: float = 0.0
    baseline: float = 0.0
    deviation: float = 0.0
    threshold: float = 0.0


class DeviationDetector:
    def __init__(
        self,
        jobs: JobMetricsRepository,
        discovery: QueueDiscovery,
        baselines: BaselineRepository,
        clock: Optional[Clock] = None,
        threshold: float = 2.0,
        enabled: bool = True,
        intervals: Optional[Dict[str, int]] = None,
        trigger_interval_minutes: int = 5,
        recent_samples: int = DEFAULT_RECENT_SAMPLES,
    ):
        self._jobs = jobs
        self._discovery = discovery
        self._baselines = baselines
        self._clock = clock or SystemClock()
        self.threshold = threshold
        self.enabled = enabled
        self.intervals = dict(DEFAULT_INTERVALS)
        if intervals:
            self.intervals.update(intervals)
        self.trigger_interval_minutes = trigger_interval_minutes
        self.recent_samples = recent_samples

    def _recent(self, connection: str, queue: str) -> Dict[str, List[float]]:
        identities = self._discovery.jobs_for_queue(connection, queue)
        samples: Dict[str, List[float]] = {"duration": [], "memory": [], "cpu": []}
        if not identities:
            return samples
        per_class = max(1, -(-self.recent_samples // len(identities)))
        for identity in identities:
            samples["duration"] += self._jobs.get_duration_samples(identity, per_class)
            samples["memory"] += self._jobs.get_memory_samples(identity, per_class)
            samples["cpu"] += self._jobs.get_cpu_time_samples(identity, per_class)
        return samples

    def _compare(self, baseline: BaselineEstimate, samples: Dict[str, List[float]]) -> DeviationReport:
        def mean(values: List[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        avg_duration = mean(samples["duration"])
        observed = {
            "avg_duration_ms": avg_duration,
            "memory_mb_per_job": mean(samples["memory"]),
            "cpu_percent_per_job": cpu_percent(mean(samples["cpu"]), avg_duration),
        }

        worst = DeviationReport(has_deviation=False, threshold=self.threshold)
        for metric, value in observed.items():
            reference = getattr(baseline, metric)
            deviation = relative_deviation(value, reference)
            if deviation is None or deviation <= worst.deviation:
                continue
            worst = DeviationReport(
                has_deviation=deviation >= self.threshold,
                metric=metric,
                observed=value,
                baseline=reference,
                deviation=round(deviation, 4),
                threshold=self.threshold,
            )
        return worst

    def detect(self, connection: str, queue: str) -> DeviationReport:
        if not self.enabled:
            return DeviationReport(has_deviation=False)

        baseline = self._baselines.get_baseline(connection, queue)
        if baseline is None:
            return DeviationReport(has_deviation=False, threshold=self.threshold)

        samples = self._recent(connection, queue)
        if not samples["duration"]:
            return DeviationReport(has_deviation=False, threshold=self.threshold)

        report = self._compare(baseline, samples)
        if report.has_deviation:
            logger.warning(
                "BASELINE_DEVIATION connection=%s queue=%s metric=%s observed=%.2f baseline=%.2f deviation=%.2f",
                connection, queue, report.metric, report.observed, report.baseline, report.deviation,
            )
        return report

    def should_recalculate(self, connection: str, queue: str) -> bool:
        return self.detect(connection, queue).has_deviation

    def interval_for_confidence(self, confidence: float) -> int:
        if confidence < 0.5:
            return self.intervals["low_confidence"]
        if confidence < 0.7:
            return self.intervals["medium_confidence"]
        if confidence < 0.9:
            return self.intervals["high_confidence"]
        return self.intervals["very_high_confidence"]

    def recommended_interval_minutes(self, connection: str, queue: str) -> int:
        baseline = self._baselines.get_baseline(connection, queue)
        if baseline is None:
            return self.intervals["no_baseline"]
        if self.detect(connection, queue).has_deviation:
            return self.trigger_interval_minutes
        return self.interval_for_confidence(aged_confidence(baseline, self._clock.now()))

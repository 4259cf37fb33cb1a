"""Baselines de coste por job con decay exponencial y confianza por volumen.

Por cada job class:
    observado  = medias de las últimas N muestras (duración, memoria, cpu%)
    nuevo      = decay * previo + (1 - decay) * observado   (sin previo: observado)
    confianza  = min(1, muestras / objetivo)

La confianza depende sólo del volumen, no de la varianza: muchos datos
ruidosos reportan confianza alta.

El baseline de cola es la media de los de sus job classes ponderada por nº de
muestras; su sample_count es la suma.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.clock import Clock, SystemClock
from ..core.domain.baseline import BaselineEstimate
from ..core.domain.identity import JobIdentity, QueueRef
from ..discovery.registry import QueueDiscovery
from ..recording.job_repository import JobMetricsRepository
from .repository import BaselineRepository

logger = logging.getLogger(__name__)

SIGNIFICANT_CHANGE_RATIO = 0.2
# Una cola que deja de producir muestras pierde la mitad de la confianza por día
CONFIDENCE_HALF_LIFE_SECONDS = 86400


@dataclass(frozen=True)
class Observation:
    avg_duration_ms: float
    memory_mb_per_job: float
    cpu_percent_per_job: float
    sample_count: int


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def cpu_percent(avg_cpu_time_ms: float, avg_duration_ms: float) -> float:
    if avg_duration_ms <= 0:
        return 0.0
    return 100.0 * avg_cpu_time_ms / avg_duration_ms


def confidence_for(sample_count: int, target_sample_size: int) -> float:
    if sample_count <= 0 or target_sample_size <= 0:
        return 0.0
    return min(1.0, sample_count / float(target_sample_size))


def aged_confidence(
    baseline: BaselineEstimate, now: float, half_life_seconds: float = CONFIDENCE_HALF_LIFE_SECONDS
) -> float:
    """Confianza del baseline descontada por su antigüedad."""
    age = max(0.0, now - baseline.calculated_at)
    if half_life_seconds <= 0:
        return baseline.confidence_score
    return baseline.confidence_score * 0.5 ** (age / half_life_seconds)


def blend(previous: float, observed: float, decay_factor: float) -> float:
    return decay_factor * previous + (1.0 - decay_factor) * observed


def _relative_change(previous: float, current: float) -> float:
    if previous <= 0:
        return 0.0 if current <= 0 else float("inf")
    return abs(current - previous) / previous


def is_significant_change(previous: Optional[BaselineEstimate], current: BaselineEstimate) -> bool:
    if previous is None:
        return False
    return any(
        _relative_change(before, after) > SIGNIFICANT_CHANGE_RATIO
        for before, after in (
            (previous.avg_duration_ms, current.avg_duration_ms),
            (previous.cpu_percent_per_job, current.cpu_percent_per_job),
            (previous.memory_mb_per_job, current.memory_mb_per_job),
        )
    )


class BaselineEstimator:
    def __init__(
        self,
        jobs: JobMetricsRepository,
        discovery: QueueDiscovery,
        baselines: BaselineRepository,
        clock: Optional[Clock] = None,
        decay_factor: float = 0.1,
        target_sample_size: int = 200,
        max_samples: int = 1000,
    ):
        self._jobs = jobs
        self._discovery = discovery
        self._baselines = baselines
        self._clock = clock or SystemClock()
        self.decay_factor = decay_factor
        self.target_sample_size = target_sample_size
        self.max_samples = max_samples

    def observe(self, identity: JobIdentity) -> Optional[Observation]:
        durations = self._jobs.get_duration_samples(identity, self.max_samples)
        if not durations:
            return None
        memory = self._jobs.get_memory_samples(identity, self.max_samples)
        cpu = self._jobs.get_cpu_time_samples(identity, self.max_samples)

        avg_duration = _mean(durations)
        return Observation(
            avg_duration_ms=avg_duration,
            memory_mb_per_job=_mean(memory),
            cpu_percent_per_job=cpu_percent(_mean(cpu), avg_duration),
            sample_count=len(durations),
        )

    def confidence(self, sample_count: int) -> float:
        return confidence_for(sample_count, self.target_sample_size)

    def calculate_for_job_class(self, identity: JobIdentity) -> Optional[BaselineEstimate]:
        """Estimación nueva (sin guardar) para una job class; None sin muestras."""
        observed = self.observe(identity)
        if observed is None:
            return None

        previous = self._baselines.get_job_class_baseline(
            identity.connection, identity.queue, identity.job_class
        )
        if previous is None:
            duration = observed.avg_duration_ms
            memory = observed.memory_mb_per_job
            cpu = observed.cpu_percent_per_job
        else:
            duration = blend(previous.avg_duration_ms, observed.avg_duration_ms, self.decay_factor)
            memory = blend(previous.memory_mb_per_job, observed.memory_mb_per_job, self.decay_factor)
            cpu = blend(previous.cpu_percent_per_job, observed.cpu_percent_per_job, self.decay_factor)

        return BaselineEstimate(
            connection=identity.connection,
            queue=identity.queue,
            job_class=identity.job_class,
            cpu_percent_per_job=cpu,
            memory_mb_per_job=memory,
            avg_duration_ms=duration,
            sample_count=observed.sample_count,
            confidence_score=self.confidence(observed.sample_count),
            calculated_at=self._clock.now(),
        )

    def combine(self, connection: str, queue: str, per_class: List[BaselineEstimate]) -> Optional[BaselineEstimate]:
        total = sum(b.sample_count for b in per_class)
        if total <= 0:
            return None

        def weighted(attr: str) -> float:
            return sum(getattr(b, attr) * b.sample_count for b in per_class) / total

        return BaselineEstimate(
            connection=connection,
            queue=queue,
            cpu_percent_per_job=weighted("cpu_percent_per_job"),
            memory_mb_per_job=weighted("memory_mb_per_job"),
            avg_duration_ms=weighted("avg_duration_ms"),
            sample_count=total,
            confidence_score=self.confidence(total),
            calculated_at=self._clock.now(),
        )

    def calculate_for_queue(self, connection: str, queue: str, persist: bool = True) -> Optional[BaselineEstimate]:
        """Recalcula y (por defecto) guarda los baselines de la cola.

        None cuando ninguna job class de la cola tiene muestras: es "sin
        datos", no un error.
        """
        ref = QueueRef(connection, queue)
        per_class: List[BaselineEstimate] = []

        for identity in self._discovery.jobs_for_queue(ref.connection, ref.queue):
            estimate = self.calculate_for_job_class(identity)
            if estimate is None:
                continue
            per_class.append(estimate)

        queue_baseline = self.combine(ref.connection, ref.queue, per_class)
        if queue_baseline is None:
            return None

        if persist:
            for estimate in per_class:
                self._baselines.store(estimate)
            self._baselines.store(queue_baseline)
        return queue_baseline

    def calculate_all(self) -> Dict[str, float]:
        """Recalcula todas las colas descubiertas; una cola que falla no para el resto."""
        queues_processed = 0
        calculated = 0
        significant = 0
        confidences: List[float] = []

        for ref in self._discovery.list_queues():
            queues_processed += 1
            try:
                previous = self._baselines.get_baseline(ref.connection, ref.queue)
                baseline = self.calculate_for_queue(ref.connection, ref.queue)
            except Exception as e:
                logger.exception(
                    "BASELINE_FAILED connection=%s queue=%s err=%s", ref.connection, ref.queue, e
                )
                continue
            if baseline is None:
                continue

            calculated += 1
            confidences.append(baseline.confidence_score)
            if is_significant_change(previous, baseline):
                significant += 1
                logger.info(
                    "BASELINE_SIGNIFICANT_CHANGE queue=%s avg_ms=%.2f->%.2f",
                    ref.member, previous.avg_duration_ms, baseline.avg_duration_ms,
                )

        return {
            "queues_processed": queues_processed,
            "baselines_calculated": calculated,
            "significant_changes": significant,
            "avg_confidence": round(sum(confidences) / len(confidences), 3) if confidences else 0.0,
        }

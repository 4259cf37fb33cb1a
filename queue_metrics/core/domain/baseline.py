"""Baseline estimate value object."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Dict, Optional

from .job import _float, _int

RELIABLE_MIN_SAMPLES = 50
RELIABLE_MIN_CONFIDENCE = 0.7
MS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class BaselineEstimate:
    """Decayed running estimate of per-job resource cost.

    ``job_class`` is None for the queue-level (aggregated) baseline.
    """

    connection: str
    queue: str
    cpu_percent_per_job: float
    memory_mb_per_job: float
    avg_duration_ms: float
    sample_count: int
    confidence_score: float
    calculated_at: float
    job_class: Optional[str] = None

    def is_reliable(self) -> bool:
        return (
            self.sample_count >= RELIABLE_MIN_SAMPLES
            and self.confidence_score >= RELIABLE_MIN_CONFIDENCE
        )

    def needs_more_samples(self) -> bool:
        return self.sample_count < 100

    def estimate_capacity(self, available_cpu_percent: float, available_memory_mb: float) -> int:
        """Jobs per hour the given resources could sustain. 0 on degenerate input."""
        if (
            self.cpu_percent_per_job <= 0
            or self.memory_mb_per_job <= 0
            or self.avg_duration_ms <= 0
        ):
            return 0
        if available_cpu_percent <= 0 or available_memory_mb <= 0:
            return 0

        cpu_bound = math.floor(available_cpu_percent / self.cpu_percent_per_job)
        memory_bound = math.floor(available_memory_mb / self.memory_mb_per_job)
        parallel = min(cpu_bound, memory_bound)
        return int(math.floor(parallel * MS_PER_HOUR / self.avg_duration_ms))

    def with_job_class(self, job_class: Optional[str]) -> "BaselineEstimate":
        return replace(self, job_class=job_class)

    def to_hash(self) -> Dict[str, str]:
        return {
            "connection": self.connection,
            "queue": self.queue,
            "job_class": self.job_class or "",
            "cpu_percent_per_job": repr(self.cpu_percent_per_job),
            "memory_mb_per_job": repr(self.memory_mb_per_job),
            "avg_duration_ms": repr(self.avg_duration_ms),
            "sample_count": str(self.sample_count),
            "confidence_score": repr(self.confidence_score),
            "calculated_at": repr(self.calculated_at),
        }

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> "BaselineEstimate":
        return cls(
            connection=data.get("connection", ""),
            queue=data.get("queue", ""),
            job_class=data.get("job_class") or None,
            cpu_percent_per_job=_float(data, "cpu_percent_per_job"),
            memory_mb_per_job=_float(data, "memory_mb_per_job"),
            avg_duration_ms=_float(data, "avg_duration_ms"),
            sample_count=_int(data, "sample_count"),
            confidence_score=min(1.0, max(0.0, _float(data, "confidence_score"))),
            calculated_at=_float(data, "calculated_at"),
        )

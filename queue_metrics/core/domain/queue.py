"""Queue-level data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional

from .job import _float, _int, _opt_float


@dataclass(frozen=True)
class QueueAggregate:
    """Snapshot written wholesale on every aggregation cycle.

    ``throughput_per_minute`` and ``avg_duration_ms`` come from the trailing
    60 second window while ``failure_rate`` uses lifetime totals. Both signals
    are kept side by side on purpose; do not "fix" one to match the other.
    """

    connection: str
    queue: str
    throughput_per_minute: float = 0.0
    avg_duration_ms: float = 0.0
    failure_rate: float = 0.0
    total_processed: int = 0
    total_failed: int = 0
    last_processed_at: Optional[float] = None
    depth: int = 0
    oldest_job_age: int = 0
    active_workers: int = 0
    recorded_at: float = 0.0

    def to_hash(self) -> Dict[str, str]:
        data = asdict(self)
        return {k: ("" if v is None else str(v)) for k, v in data.items()}

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> "QueueAggregate":
        return cls(
            connection=data.get("connection", ""),
            queue=data.get("queue", ""),
            throughput_per_minute=_float(data, "throughput_per_minute"),
            avg_duration_ms=_float(data, "avg_duration_ms"),
            failure_rate=_float(data, "failure_rate"),
            total_processed=_int(data, "total_processed"),
            total_failed=_int(data, "total_failed"),
            last_processed_at=_opt_float(data, "last_processed_at"),
            depth=_int(data, "depth"),
            oldest_job_age=_int(data, "oldest_job_age"),
            active_workers=_int(data, "active_workers"),
            recorded_at=_float(data, "recorded_at"),
        )


@dataclass(frozen=True)
class QueueDepth:
    """What a QueueInspector reports for one queue."""

    depth: int = 0
    oldest_job_age: int = 0


@dataclass(frozen=True)
class QueueHealth:
    status: str  # "healthy" | "warning" | "critical" | "unknown"
    score: float

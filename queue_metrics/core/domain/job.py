"""Job-level data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from .identity import JobIdentity


def _int(data: Dict[str, str], name: str) -> int:
    try:
        return int(float(data.get(name, 0) or 0))
    except (TypeError, ValueError):
        return 0


def _float(data: Dict[str, str], name: str) -> float:
    try:
        return float(data.get(name, 0.0) or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _opt_float(data: Dict[str, str], name: str) -> Optional[float]:
    raw = data.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class JobAggregate:
    """Lifetime counters for one JobIdentity."""

    identity: JobIdentity
    total_processed: int = 0
    total_failed: int = 0
    total_started: int = 0
    total_retries: int = 0
    total_timeouts: int = 0
    total_exceptions: int = 0
    total_duration_ms: float = 0.0
    total_memory_mb: float = 0.0
    total_cpu_time_ms: float = 0.0
    last_processed_at: Optional[float] = None
    last_failed_at: Optional[float] = None
    last_timeout_at: Optional[float] = None
    last_event_at: Optional[float] = None
    last_exception: Optional[str] = None

    @classmethod
    def from_hash(cls, identity: JobIdentity, data: Dict[str, str]) -> "JobAggregate":
        return cls(
            identity=identity,
            total_processed=_int(data, "total_processed"),
            total_failed=_int(data, "total_failed"),
            total_started=_int(data, "total_started"),
            total_retries=_int(data, "total_retries"),
            total_timeouts=_int(data, "total_timeouts"),
            total_exceptions=_int(data, "total_exceptions"),
            total_duration_ms=_float(data, "total_duration_ms"),
            total_memory_mb=_float(data, "total_memory_mb"),
            total_cpu_time_ms=_float(data, "total_cpu_time_ms"),
            last_processed_at=_opt_float(data, "last_processed_at"),
            last_failed_at=_opt_float(data, "last_failed_at"),
            last_timeout_at=_opt_float(data, "last_timeout_at"),
            last_event_at=_opt_float(data, "last_event_at"),
            last_exception=data.get("last_exception") or None,
        )

    @property
    def total_jobs(self) -> int:
        return self.total_processed + self.total_failed

    @property
    def failure_rate(self) -> float:
        """Failure rate in percent over lifetime totals."""
        if self.total_jobs == 0:
            return 0.0
        return self.total_failed / self.total_jobs * 100.0

    @property
    def avg_duration_ms(self) -> float:
        if self.total_processed == 0:
            return 0.0
        return self.total_duration_ms / self.total_processed

    @property
    def last_activity_at(self) -> Optional[float]:
        """Último evento de cualquier tipo; lo usa el cleanup por edad."""
        candidates = (self.last_processed_at, self.last_failed_at, self.last_timeout_at, self.last_event_at)
        stamps = [s for s in candidates if s is not None]
        return max(stamps) if stamps else None


@dataclass(frozen=True)
class InFlightJob:
    """Marker between job start and completion/failure."""

    job_id: str
    identity: JobIdentity
    started_at: float


@dataclass(frozen=True)
class DurationStats:
    avg: float = 0.0
    min: float = 0.0
    max: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    stddev: float = 0.0


@dataclass(frozen=True)
class MemoryStats:
    avg: float = 0.0
    peak: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


@dataclass(frozen=True)
class ThroughputStats:
    per_minute: float = 0.0
    per_hour: float = 0.0
    per_day: float = 0.0


@dataclass(frozen=True)
class FailureInfo:
    count: int = 0
    rate: float = 0.0
    last_failed_at: Optional[float] = None
    last_exception: Optional[str] = None


@dataclass(frozen=True)
class WindowStats:
    window_seconds: int
    jobs_processed: int
    avg_duration_ms: float
    throughput_per_minute: float


@dataclass(frozen=True)
class JobMetricsReport:
    """Point-in-time statistics for one JobIdentity."""

    identity: JobIdentity
    aggregate: JobAggregate
    duration: DurationStats
    memory: MemoryStats
    throughput: ThroughputStats
    failures: FailureInfo
    windows: List[WindowStats] = field(default_factory=list)
    calculated_at: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["identity"] = {
            "connection": self.identity.connection,
            "queue": self.identity.queue,
            "job_class": self.identity.job_class,
        }
        data["aggregate"].pop("identity", None)
        return data

"""Worker heartbeat models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .job import _float, _int, _opt_float


class WorkerState(str, Enum):
    """Estados del worker."""
    IDLE = "idle"
    BUSY = "busy"
    CRASHED = "crashed"
    STOPPED = "stopped"

    @property
    def is_active(self) -> bool:
        return self in (WorkerState.IDLE, WorkerState.BUSY)


@dataclass(frozen=True)
class WorkerHeartbeat:
    worker_id: str
    connection: str
    queue: str
    state: WorkerState
    last_heartbeat: float
    last_state_change: float
    current_job_id: Optional[str] = None
    current_job_class: Optional[str] = None
    idle_time_seconds: float = 0.0
    busy_time_seconds: float = 0.0
    jobs_processed: int = 0
    pid: int = 0
    hostname: str = ""
    memory_usage_mb: float = 0.0
    cpu_usage_percent: float = 0.0
    peak_memory_usage_mb: float = 0.0

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> Optional["WorkerHeartbeat"]:
        worker_id = data.get("worker_id")
        if not worker_id:
            return None
        try:
            state = WorkerState(data.get("state", ""))
        except ValueError:
            return None
        last_heartbeat = _float(data, "last_heartbeat")
        return cls(
            worker_id=worker_id,
            connection=data.get("connection", ""),
            queue=data.get("queue", ""),
            state=state,
            last_heartbeat=last_heartbeat,
            last_state_change=_opt_float(data, "last_state_change") or last_heartbeat,
            current_job_id=data.get("current_job_id") or None,
            current_job_class=data.get("current_job_class") or None,
            idle_time_seconds=_float(data, "idle_time_seconds"),
            busy_time_seconds=_float(data, "busy_time_seconds"),
            jobs_processed=_int(data, "jobs_processed"),
            pid=_int(data, "pid"),
            hostname=data.get("hostname", ""),
            memory_usage_mb=_float(data, "memory_usage_mb"),
            cpu_usage_percent=_float(data, "cpu_usage_percent"),
            peak_memory_usage_mb=_float(data, "peak_memory_usage_mb"),
        )

    def seconds_since_last_heartbeat(self, now: float) -> float:
        return max(0.0, now - self.last_heartbeat)

    def is_stale(self, threshold_seconds: float, now: float) -> bool:
        return now - self.last_heartbeat > threshold_seconds

    @property
    def utilization(self) -> float:
        """Fracción del tiempo contabilizado en estado busy."""
        total = self.idle_time_seconds + self.busy_time_seconds
        if total <= 0:
            return 0.0
        return self.busy_time_seconds / total

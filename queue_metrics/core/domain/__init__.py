"""Domain models and contracts."""

from .baseline import BaselineEstimate
from .errors import (
    ConfigurationError,
    InvalidMetricsInput,
    QueueMetricsError,
    ScriptError,
    StoreConnectionError,
    StoreError,
)
from .identity import JobIdentity, QueueRef
from .job import (
    DurationStats,
    FailureInfo,
    InFlightJob,
    JobAggregate,
    JobMetricsReport,
    MemoryStats,
    ThroughputStats,
    WindowStats,
)
from .queue import QueueAggregate, QueueDepth, QueueHealth
from .worker import WorkerHeartbeat, WorkerState

__all__ = [
    "BaselineEstimate",
    "ConfigurationError",
    "DurationStats",
    "FailureInfo",
    "InFlightJob",
    "InvalidMetricsInput",
    "JobAggregate",
    "JobIdentity",
    "JobMetricsReport",
    "MemoryStats",
    "QueueAggregate",
    "QueueDepth",
    "QueueHealth",
    "QueueMetricsError",
    "QueueRef",
    "ScriptError",
    "StoreConnectionError",
    "StoreError",
    "ThroughputStats",
    "WindowStats",
    "WorkerHeartbeat",
    "WorkerState",
]

"""Ingesta de eventos de jobs: validación, hooks, escritura atómica y lectura."""

from .hooks import AFTER_RECORD, BEFORE_RECORD, HookRegistry
from .ingestion import MetricsIngestor
from .job_repository import JobMetricsRepository
from .payloads import (
    HeartbeatPayload,
    JobCompletedPayload,
    JobExceptionPayload,
    JobFailedPayload,
    JobRetryPayload,
    JobStartedPayload,
    JobTimeoutPayload,
    ValidationResult,
    validate_payload,
)
from .recorder import SampleRecorder

__all__ = [
    "AFTER_RECORD",
    "BEFORE_RECORD",
    "HeartbeatPayload",
    "HookRegistry",
    "JobCompletedPayload",
    "JobExceptionPayload",
    "JobFailedPayload",
    "JobMetricsRepository",
    "JobRetryPayload",
    "JobStartedPayload",
    "JobTimeoutPayload",
    "MetricsIngestor",
    "SampleRecorder",
    "ValidationResult",
    "validate_payload",
]

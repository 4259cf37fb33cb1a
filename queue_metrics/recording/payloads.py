"""Validación de payloads en la frontera de ingesta.

Los eventos llegan como dicts desde el sistema de jobs; aquí se convierten en
modelos pydantic tipados. Nada sin validar pasa de ``MetricsIngestor``.

Formato (camelCase o snake_case):
{
    "jobId": "8f1c...",
    "connection": "redis",
    "queue": "default",
    "jobClass": "App\\Jobs\\SendEmail",
    "durationMs": 120.5,
    "memoryMb": 18.2,
    "cpuTimeMs": 40.0,
    "hostname": "worker-01"
}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.domain.identity import SEPARATOR, JobIdentity
from ..core.domain.worker import WorkerState

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)


class _Payload(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
        frozen=True,
    )


class _JobPayload(_Payload):
    job_id: str = Field(..., alias="jobId", min_length=1)
    connection: str = Field(..., min_length=1, max_length=255)
    queue: str = Field(..., min_length=1, max_length=255)
    job_class: str = Field(..., alias="jobClass", min_length=1, max_length=255)

    @field_validator("connection", "queue")
    @classmethod
    def no_separator(cls, v: str) -> str:
        if SEPARATOR in v:
            raise ValueError(f"must not contain '{SEPARATOR}'")
        return v

    @property
    def identity(self) -> JobIdentity:
        return JobIdentity(self.connection, self.queue, self.job_class)


class JobStartedPayload(_JobPayload):
    started_at: Optional[float] = Field(default=None, alias="startedAt", ge=0, allow_inf_nan=False)


class JobCompletedPayload(_JobPayload):
    duration_ms: float = Field(..., alias="durationMs", ge=0, allow_inf_nan=False)
    memory_mb: float = Field(..., alias="memoryMb", ge=0, allow_inf_nan=False)
    cpu_time_ms: float = Field(default=0.0, alias="cpuTimeMs", ge=0, allow_inf_nan=False)
    completed_at: Optional[float] = Field(default=None, alias="completedAt", ge=0, allow_inf_nan=False)
    hostname: Optional[str] = None


class JobFailedPayload(_JobPayload):
    exception: str = ""
    failed_at: Optional[float] = Field(default=None, alias="failedAt", ge=0, allow_inf_nan=False)
    hostname: Optional[str] = None


class JobRetryPayload(_JobPayload):
    attempt: int = Field(default=1, ge=1)
    retry_requested_at: Optional[float] = Field(
        default=None, alias="retryRequestedAt", ge=0, allow_inf_nan=False
    )


class JobTimeoutPayload(_JobPayload):
    timed_out_at: Optional[float] = Field(default=None, alias="timedOutAt", ge=0, allow_inf_nan=False)


class JobExceptionPayload(_JobPayload):
    exception_class: str = Field(..., alias="exceptionClass", min_length=1)
    message: str = ""
    occurred_at: Optional[float] = Field(default=None, alias="occurredAt", ge=0, allow_inf_nan=False)


class HeartbeatPayload(_Payload):
    worker_id: str = Field(..., alias="workerId", min_length=1)
    connection: str = Field(..., min_length=1)
    queue: str = Field(..., min_length=1)
    state: WorkerState = WorkerState.IDLE
    current_job_id: Optional[str] = Field(default=None, alias="currentJobId")
    current_job_class: Optional[str] = Field(default=None, alias="currentJobClass")
    pid: int = Field(default=0, ge=0)
    hostname: str = ""
    memory_usage_mb: float = Field(default=0.0, alias="memoryUsageMb", ge=0, allow_inf_nan=False)
    cpu_usage_percent: float = Field(default=0.0, alias="cpuUsagePercent", ge=0, allow_inf_nan=False)

    @field_validator("state", mode="before")
    @classmethod
    def normalize_state(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


@dataclass
class ValidationResult:
    """Resultado de validación."""

    valid: bool
    payload: Optional[BaseModel] = None
    errors: List[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None


def _format_errors(exc: ValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "payload"
        errors.append(f"{location}: {err.get('msg', 'invalid')}")
    return errors


def validate_payload(model: Type[P], data: Any) -> ValidationResult:
    """Valida un dict crudo contra ``model``. Nunca lanza."""
    if not isinstance(data, dict):
        return ValidationResult(valid=False, errors=[f"payload must be a dict, got {type(data).__name__}"])
    try:
        return ValidationResult(valid=True, payload=model.model_validate(data))
    except ValidationError as e:
        errors = _format_errors(e)
        logger.warning("[PAYLOAD] %s rejected: %s", model.__name__, "; ".join(errors))
        return ValidationResult(valid=False, errors=errors)

"""Identidades estables para agregación: (connection, queue[, job_class])."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidMetricsInput

# Connection and queue names become key segments and discovery members, so
# they cannot carry the separator. Job classes are always the last segment.
SEPARATOR = ":"
MAX_NAME_LENGTH = 255


def _validate_name(field: str, value: object, allow_separator: bool = False) -> str:
    if not isinstance(value, str):
        raise InvalidMetricsInput(field, f"expected string, got {type(value).__name__}")
    value = value.strip()
    if not value:
        raise InvalidMetricsInput(field, "must not be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise InvalidMetricsInput(field, f"longer than {MAX_NAME_LENGTH} chars")
    if not allow_separator and SEPARATOR in value:
        raise InvalidMetricsInput(field, f"must not contain '{SEPARATOR}'")
    return value


def validate_job_id(job_id: object) -> str:
    return _validate_name("job_id", job_id, allow_separator=True)


def validate_non_negative(field: str, value: object) -> float:
    """Rechaza negativos, NaN e infinitos en lugar de corregirlos."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidMetricsInput(field, f"expected number, got {type(value).__name__}")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise InvalidMetricsInput(field, "must be finite")
    if value < 0:
        raise InvalidMetricsInput(field, f"must be >= 0, got {value}")
    return value


@dataclass(frozen=True)
class QueueRef:
    """A (connection, queue) pair."""

    connection: str
    queue: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "connection", _validate_name("connection", self.connection))
        object.__setattr__(self, "queue", _validate_name("queue", self.queue))

    @property
    def member(self) -> str:
        return f"{self.connection}{SEPARATOR}{self.queue}"

    @classmethod
    def parse(cls, member: str) -> Optional["QueueRef"]:
        parts = member.split(SEPARATOR, 1)
        if len(parts) != 2:
            return None
        try:
            return cls(parts[0], parts[1])
        except InvalidMetricsInput:
            return None


@dataclass(frozen=True)
class JobIdentity:
    """The (connection, queue, job_class) triple keying job-level aggregation."""

    connection: str
    queue: str
    job_class: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "connection", _validate_name("connection", self.connection))
        object.__setattr__(self, "queue", _validate_name("queue", self.queue))
        object.__setattr__(
            self, "job_class", _validate_name("job_class", self.job_class, allow_separator=True)
        )

    @property
    def queue_ref(self) -> QueueRef:
        return QueueRef(self.connection, self.queue)

    @property
    def member(self) -> str:
        return SEPARATOR.join((self.connection, self.queue, self.job_class))

    @classmethod
    def parse(cls, member: str) -> Optional["JobIdentity"]:
        parts = member.split(SEPARATOR, 2)
        if len(parts) != 3:
            return None
        try:
            return cls(*parts)
        except InvalidMetricsInput:
            return None

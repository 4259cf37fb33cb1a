"""Health score de una cola a partir de su último snapshot."""

from __future__ import annotations

from typing import Optional

from ..core.domain.queue import QueueAggregate, QueueHealth
from .repository import QueueMetricsRepository

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"
UNKNOWN = "unknown"

# Penalizaciones (puntos sobre 100)
DEPTH_THRESHOLD = 100
AGE_THRESHOLD_SECONDS = 300
MAX_DEPTH_PENALTY = 30.0
MAX_AGE_PENALTY = 30.0
MAX_FAILURE_PENALTY = 20.0
NO_WORKERS_PENALTY = 20.0


def health_score(aggregate: QueueAggregate) -> float:
    score = 100.0

    if aggregate.depth > DEPTH_THRESHOLD:
        score -= min(MAX_DEPTH_PENALTY, (aggregate.depth - DEPTH_THRESHOLD) / 10)

    if aggregate.oldest_job_age > AGE_THRESHOLD_SECONDS:
        score -= min(MAX_AGE_PENALTY, (aggregate.oldest_job_age - AGE_THRESHOLD_SECONDS) / 60)

    score -= min(MAX_FAILURE_PENALTY, aggregate.failure_rate)

    if aggregate.active_workers == 0 and aggregate.depth > 0:
        score -= NO_WORKERS_PENALTY

    return max(0.0, score)


def classify(score: float) -> str:
    if score >= 80.0:
        return HEALTHY
    if score >= 50.0:
        return WARNING
    return CRITICAL


def evaluate(aggregate: Optional[QueueAggregate]) -> QueueHealth:
    if aggregate is None:
        return QueueHealth(status=UNKNOWN, score=0.0)
    score = health_score(aggregate)
    return QueueHealth(status=classify(score), score=round(score, 2))


def get_health_status(queues: QueueMetricsRepository, connection: str, queue: str) -> QueueHealth:
    return evaluate(queues.get_latest_metrics(connection, queue))

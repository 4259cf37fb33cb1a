"""Fixtures compartidas: store en memoria + reloj congelado."""

from typing import Any, Dict

import pytest

from common.config import Settings
from queue_metrics.core.clock import FrozenClock
from queue_metrics.core.domain.identity import JobIdentity
from queue_metrics.core.store.keys import MetricsKeyBuilder
from queue_metrics.core.store.memory_store import InMemoryKeyValueStore
from queue_metrics.service import QueueMetricsService

T0 = 1_700_000_000.0


@pytest.fixture
def clock() -> FrozenClock:
    """Reloj fijo en T0; los tests lo avanzan a mano."""
    return FrozenClock(T0)


@pytest.fixture
def store(clock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def keys() -> MetricsKeyBuilder:
    return MetricsKeyBuilder(prefix="test_metrics")


@pytest.fixture
def settings() -> Settings:
    return Settings(storage_driver="memory", key_prefix="test_metrics")


@pytest.fixture
def service(settings, store, clock) -> QueueMetricsService:
    """Servicio completo cableado contra el store en memoria."""
    return QueueMetricsService.build(settings=settings, store=store, clock=clock)


@pytest.fixture
def identity() -> JobIdentity:
    return JobIdentity("redis", "default", "App\\Jobs\\SendEmail")


@pytest.fixture
def completed_payload() -> Dict[str, Any]:
    """Payload de job completado tal como lo envía el sistema de jobs."""
    return {
        "jobId": "job-1",
        "connection": "redis",
        "queue": "default",
        "jobClass": "App\\Jobs\\SendEmail",
        "durationMs": 120.5,
        "memoryMb": 18.2,
        "cpuTimeMs": 40.0,
        "hostname": "worker-01",
    }

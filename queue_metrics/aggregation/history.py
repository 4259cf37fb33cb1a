"""Profundidad de cola (colaborador externo) e histórico de throughput/depth.

Los puntos se guardan como JSON en sorted sets con score = timestamp y se
podan a las últimas 24 h en cada escritura.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional, Protocol, Tuple

from ..core.clock import Clock, SystemClock
from ..core.domain.queue import QueueDepth
from ..core.store.interface import KeyValueStore
from ..core.store.keys import MetricsKeyBuilder

logger = logging.getLogger(__name__)

HISTORY_RETENTION_SECONDS = 86400


class QueueInspector(Protocol):
    """Lo que el sistema de colas sabe de sí mismo (tamaño, job más antiguo)."""

    def depth(self, connection: str, queue: str) -> QueueDepth:
        ...


class NullQueueInspector:
    def depth(self, connection: str, queue: str) -> QueueDepth:
        return QueueDepth()


class QueueHistoryRecorder:
    def __init__(self, store: KeyValueStore, keys: MetricsKeyBuilder, clock: Optional[Clock] = None):
        self._store = store
        self._keys = keys
        self._clock = clock or SystemClock()

    def _append(self, key: str, point: dict) -> None:
        now = self._clock.now()
        member = json.dumps(dict(point, timestamp=now), sort_keys=True)
        with self._store.transaction() as tx:
            tx.zadd(key, {member: now})
            tx.zremrangebyscore(key, "-inf", now - HISTORY_RETENTION_SECONDS)
            tx.expire(key, HISTORY_RETENTION_SECONDS * 2)

    def record_throughput_history(self, connection: str, queue: str, jobs_processed: int) -> None:
        self._append(
            self._keys.throughput_history(connection, queue),
            {"jobs_processed": int(jobs_processed)},
        )

    def record_depth_history(self, connection: str, queue: str, depth: int, oldest_job_age: int = 0) -> None:
        self._append(
            self._keys.depth_history(connection, queue),
            {"depth": int(depth), "oldest_job_age": int(oldest_job_age)},
        )

    def _series(self, key: str, field: str, period_seconds: int) -> List[Tuple[float, float]]:
        since = self._clock.now() - period_seconds
        points = []
        for member, score in self._store.zrangebyscore(key, since, "+inf", withscores=True):
            try:
                points.append((float(score), float(json.loads(member)[field])))
            except (ValueError, KeyError, TypeError):
                logger.debug("HISTORY_POINT_SKIPPED key=%s member=%r", key, member)
        return points

    def get_throughput_history(self, connection: str, queue: str, period_seconds: int = 3600) -> List[Tuple[float, float]]:
        return self._series(self._keys.throughput_history(connection, queue), "jobs_processed", period_seconds)

    def get_depth_history(self, connection: str, queue: str, period_seconds: int = 3600) -> List[Tuple[float, float]]:
        return self._series(self._keys.depth_history(connection, queue), "depth", period_seconds)

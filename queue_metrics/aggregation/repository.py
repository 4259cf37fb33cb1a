"""Snapshots de QueueAggregate: último valor + serie temporal acotada."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import List, Optional, Tuple

from ..core.clock import Clock, SystemClock
from ..core.domain.identity import QueueRef
from ..core.domain.queue import QueueAggregate
from ..core.store.interface import KeyValueStore
from ..core.store.keys import AGGREGATED, MetricsKeyBuilder

logger = logging.getLogger(__name__)

SNAPSHOT_HISTORY_LIMIT = 1000


class QueueMetricsRepository:
    def __init__(self, store: KeyValueStore, keys: MetricsKeyBuilder, clock: Optional[Clock] = None):
        self._store = store
        self._keys = keys
        self._clock = clock or SystemClock()

    def record_snapshot(self, aggregate: QueueAggregate) -> None:
        """Sobrescribe el snapshot completo (campos a cero incluidos)."""
        key = self._keys.queue_snapshot(aggregate.connection, aggregate.queue)
        series_key = self._keys.queue_snapshots(aggregate.connection, aggregate.queue)
        ttl = self._keys.ttl(AGGREGATED)
        point = json.dumps(asdict(aggregate), sort_keys=True)

        with self._store.transaction() as tx:
            tx.delete(key)
            tx.hset(key, aggregate.to_hash())
            tx.expire(key, ttl)
            tx.zadd(series_key, {point: aggregate.recorded_at})
            tx.zremrangebyrank(series_key, 0, -(SNAPSHOT_HISTORY_LIMIT + 1))
            tx.expire(series_key, ttl)

    def get_latest_metrics(self, connection: str, queue: str) -> Optional[QueueAggregate]:
        ref = QueueRef(connection, queue)
        data = self._store.hgetall(self._keys.queue_snapshot(ref.connection, ref.queue))
        if not data:
            return None
        return QueueAggregate.from_hash(data)

    def get_snapshot_history(self, connection: str, queue: str, since: float) -> List[Tuple[float, dict]]:
        series_key = self._keys.queue_snapshots(connection, queue)
        points = []
        for member, score in self._store.zrangebyscore(series_key, since, "+inf", withscores=True):
            try:
                points.append((float(score), json.loads(member)))
            except ValueError:
                continue
        return points

    def cleanup(self, older_than_seconds: float) -> int:
        now = self._clock.now()
        deleted = 0
        for key in self._store.scan_keys(self._keys.key("queue_snapshot", "*")):
            recorded_at = self._store.hget(key, "recorded_at")
            try:
                age = now - float(recorded_at)
            except (TypeError, ValueError):
                continue
            if age > older_than_seconds:
                ref = QueueRef.parse(self._keys.strip(key, "queue_snapshot"))
                doomed = [key]
                if ref is not None:
                    doomed.append(self._keys.queue_snapshots(ref.connection, ref.queue))
                self._store.delete(*doomed)
                deleted += 1
        if deleted:
            logger.info("QUEUE_SNAPSHOTS_CLEANED count=%d", deleted)
        return deleted

"""Persistencia de BaselineEstimate (cola y job class)."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..core.clock import Clock, SystemClock
from ..core.domain.baseline import BaselineEstimate
from ..core.domain.identity import JobIdentity, QueueRef
from ..core.store.interface import KeyValueStore
from ..core.store.keys import BASELINE, MetricsKeyBuilder

logger = logging.getLogger(__name__)


class BaselineRepository:
    def __init__(self, store: KeyValueStore, keys: MetricsKeyBuilder, clock: Optional[Clock] = None):
        self._store = store
        self._keys = keys
        self._clock = clock or SystemClock()

    def _key_for(self, baseline: BaselineEstimate) -> str:
        if baseline.job_class:
            return self._keys.job_baseline(baseline.connection, baseline.queue, baseline.job_class)
        return self._keys.baseline(baseline.connection, baseline.queue)

    def store(self, baseline: BaselineEstimate) -> None:
        key = self._key_for(baseline)
        with self._store.transaction() as tx:
            tx.delete(key)
            tx.hset(key, baseline.to_hash())
            tx.expire(key, self._keys.ttl(BASELINE))

    def _load(self, key: str) -> Optional[BaselineEstimate]:
        data = self._store.hgetall(key)
        if not data:
            return None
        return BaselineEstimate.from_hash(data)

    def get_baseline(self, connection: str, queue: str) -> Optional[BaselineEstimate]:
        ref = QueueRef(connection, queue)
        return self._load(self._keys.baseline(ref.connection, ref.queue))

    def get_job_class_baseline(self, connection: str, queue: str, job_class: str) -> Optional[BaselineEstimate]:
        identity = JobIdentity(connection, queue, job_class)
        return self._load(self._keys.job_baseline(identity.connection, identity.queue, identity.job_class))

    def get_job_class_baselines(self, connection: str, queue: str) -> List[BaselineEstimate]:
        pattern = self._keys.key("baseline_job", connection, queue, "*")
        baselines = [b for b in (self._load(k) for k in self._store.scan_keys(pattern)) if b is not None]
        return sorted(baselines, key=lambda b: b.job_class or "")

    def has_recent_baseline(self, connection: str, queue: str, max_age_seconds: float) -> bool:
        baseline = self.get_baseline(connection, queue)
        if baseline is None:
            return False
        return self._clock.now() - baseline.calculated_at <= max_age_seconds

    def delete(self, connection: str, queue: str) -> int:
        """Borra el baseline de la cola y los de sus job classes."""
        ref = QueueRef(connection, queue)
        doomed = [self._keys.baseline(ref.connection, ref.queue)]
        doomed += self._store.scan_keys(self._keys.key("baseline_job", ref.connection, ref.queue, "*"))
        return self._store.delete(*doomed)

    def cleanup(self, older_than_seconds: float) -> int:
        now = self._clock.now()
        deleted = 0
        for pattern in (self._keys.key("baseline", "*"), self._keys.key("baseline_job", "*")):
            for key in self._store.scan_keys(pattern):
                calculated_at = self._store.hget(key, "calculated_at")
                try:
                    age = now - float(calculated_at)
                except (TypeError, ValueError):
                    continue
                if age > older_than_seconds:
                    deleted += self._store.delete(key)
        if deleted:
            logger.info("BASELINES_CLEANED count=%d", deleted)
        return deleted

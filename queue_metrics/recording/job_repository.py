"""Lectura de agregados y series de muestras por JobIdentity."""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

from ..core.clock import Clock, SystemClock
from ..core.domain.identity import JobIdentity
from ..core.domain.job import InFlightJob, JobAggregate
from ..core.store.interface import KeyValueStore
from ..core.store.keys import MetricsKeyBuilder
from ..discovery.registry import QueueDiscovery
from .recorder import sample_value

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_LIMIT = 1000


class JobMetricsRepository:
    def __init__(
        self,
        store: KeyValueStore,
        keys: MetricsKeyBuilder,
        discovery: QueueDiscovery,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._keys = keys
        self._discovery = discovery
        self._clock = clock or SystemClock()

    def get_metrics(self, identity: JobIdentity) -> Optional[JobAggregate]:
        """None si la tupla nunca registró nada (o expiró)."""
        data = self._store.hgetall(self._keys.job_metrics(identity))
        if not data:
            return None
        return JobAggregate.from_hash(identity, data)

    # ------------------------------------------------------------------
    # samples (orden cronológico, más antiguo primero)
    # ------------------------------------------------------------------

    def _samples(self, key: str, limit: int) -> List[float]:
        if limit <= 0:
            return []
        values = []
        for member in self._store.zrange(key, -limit, -1):
            value = sample_value(member)
            if value is None:
                logger.warning("SAMPLE_UNPARSEABLE key=%s member=%r", key, member)
                continue
            values.append(value)
        return values

    def get_duration_samples(self, identity: JobIdentity, limit: int = DEFAULT_SAMPLE_LIMIT) -> List[float]:
        return self._samples(self._keys.durations(identity), limit)

    def get_memory_samples(self, identity: JobIdentity, limit: int = DEFAULT_SAMPLE_LIMIT) -> List[float]:
        return self._samples(self._keys.memory(identity), limit)

    def get_cpu_time_samples(self, identity: JobIdentity, limit: int = DEFAULT_SAMPLE_LIMIT) -> List[float]:
        return self._samples(self._keys.cpu(identity), limit)

    def get_duration_samples_since(self, identity: JobIdentity, since: float) -> List[float]:
        """Valores de duración con timestamp en [since, now]."""
        members = self._store.zrangebyscore(
            self._keys.durations(identity), since, self._clock.now()
        )
        return [v for v in (sample_value(m) for m in members) if v is not None]

    # ------------------------------------------------------------------
    # auxiliary
    # ------------------------------------------------------------------

    def get_in_flight(self, job_id: str) -> Optional[InFlightJob]:
        data = self._store.hgetall(self._keys.in_flight(job_id))
        if not data:
            return None
        try:
            identity = JobIdentity(data["connection"], data["queue"], data["job_class"])
            return InFlightJob(job_id=job_id, identity=identity, started_at=float(data["started_at"]))
        except (KeyError, ValueError) as e:
            logger.warning("IN_FLIGHT_CORRUPT job_id=%s err=%s", job_id, e)
            return None

    def get_retry_events(self, identity: JobIdentity, limit: int = 100) -> List[dict]:
        events = []
        for member in self._store.zrange(self._keys.retries(identity), -limit, -1):
            try:
                events.append(json.loads(member))
            except ValueError:
                continue
        return events

    def get_exception_counts(self, identity: JobIdentity) -> Dict[str, int]:
        data = self._store.hgetall(self._keys.exceptions(identity))
        counts = {}
        for exception_class, raw in data.items():
            try:
                counts[exception_class] = int(raw)
            except ValueError:
                continue
        return dict(sorted(counts.items(), key=lambda item: item[1], reverse=True))

    def get_queued_count(self, identity: JobIdentity, window_seconds: int) -> int:
        now = self._clock.now()
        return self._store.zcount(self._keys.queued(identity), now - window_seconds, now)

    def get_hostname_job_metrics(self, hostname: str) -> Dict[JobIdentity, dict]:
        """Contadores por tupla para un servidor concreto."""
        pattern = self._keys.key("server_jobs", hostname, "*")
        metrics: Dict[JobIdentity, dict] = {}

        for key in self._store.scan_keys(pattern):
            identity = JobIdentity.parse(self._keys.strip(key, "server_jobs", hostname))
            if identity is None:
                continue
            data = self._store.hgetall(key)
            processed = int(float(data.get("total_processed", 0) or 0))
            failed = int(float(data.get("total_failed", 0) or 0))
            duration = float(data.get("total_duration_ms", 0.0) or 0.0)
            total = processed + failed

            metrics[identity] = {
                "total_processed": processed,
                "total_failed": failed,
                "total_duration_ms": duration,
                "failure_rate": round(failed / total * 100, 2) if total else 0.0,
                "avg_duration_ms": round(duration / processed, 2) if processed else 0.0,
            }
        return metrics

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    def cleanup(self, older_than_seconds: float) -> int:
        """Borra agregados cuya última actividad supera la edad dada.

        Red de seguridad además del TTL del store. Devuelve nº de tuplas borradas.
        """
        now = self._clock.now()
        deleted = 0

        for key in self._store.scan_keys(self._keys.key("jobs", "*")):
            identity = JobIdentity.parse(self._keys.strip(key, "jobs"))
            if identity is None:
                continue
            aggregate = JobAggregate.from_hash(identity, self._store.hgetall(key))
            last_activity = aggregate.last_activity_at
            if last_activity is None or now - last_activity <= older_than_seconds:
                continue

            self._store.delete(
                key,
                self._keys.durations(identity),
                self._keys.memory(identity),
                self._keys.cpu(identity),
                self._keys.retries(identity),
                self._keys.exceptions(identity),
                self._keys.queued(identity),
            )
            self._discovery.forget_job(identity)
            deleted += 1
            logger.info("JOB_METRICS_CLEANED job=%s age=%.0f", identity.member, now - last_activity)

        return deleted

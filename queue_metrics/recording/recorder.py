"""Escritura de eventos del ciclo de vida de un job.

Cada llamada es UNA transacción del store: contadores del JobAggregate,
series de muestras, marcador in-flight, agregado por hostname y marcado de
discovery se aplican juntos o no se aplica nada. Las entradas se validan
antes de abrir la transacción; un valor inválido nunca llega a una suma.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Optional

from ..core.clock import Clock, SystemClock
from ..core.domain.identity import JobIdentity, validate_job_id, validate_non_negative
from ..core.store.interface import KeyValueStore, StoreTransaction
from ..core.store.keys import AGGREGATED, RAW, MetricsKeyBuilder
from ..discovery.registry import QueueDiscovery
from .hooks import AFTER_RECORD, BEFORE_RECORD, HookRegistry

logger = logging.getLogger(__name__)


def sample_member(job_id: str, at: float, value: float) -> str:
    """Miembro del sorted set de muestras; el valor es siempre el último segmento."""
    return f"{job_id}:{at!r}:{value!r}"


def sample_value(member: str) -> Optional[float]:
    try:
        return float(member.rsplit(":", 1)[1])
    except (IndexError, ValueError):
        return None


class SampleRecorder:
    """Registra start / completion / failure y eventos auxiliares por JobIdentity."""

    def __init__(
        self,
        store: KeyValueStore,
        keys: MetricsKeyBuilder,
        discovery: QueueDiscovery,
        clock: Optional[Clock] = None,
        hooks: Optional[HookRegistry] = None,
        sample_cap: int = 1000,
        exception_max_length: int = 1000,
    ):
        self._store = store
        self._keys = keys
        self._discovery = discovery
        self._clock = clock or SystemClock()
        self._hooks = hooks or HookRegistry()
        self._sample_cap = sample_cap
        self._exception_max_length = exception_max_length

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _at(self, field: str, value: Optional[float]) -> float:
        if value is None:
            return self._clock.now()
        return validate_non_negative(field, value)

    def _truncate(self, text: Optional[str]) -> str:
        return (text or "")[: self._exception_max_length]

    def _touch_aggregate(self, tx: StoreTransaction, metrics_key: str) -> None:
        # EXPIRE sobre una clave inexistente no hace nada: siempre después de escribir
        tx.expire(metrics_key, self._keys.ttl(AGGREGATED))

    def _append_sample(self, tx: StoreTransaction, key: str, member: str, at: float) -> None:
        tx.zadd(key, {member: at})
        # Deja sólo los N más recientes
        tx.zremrangebyrank(key, 0, -(self._sample_cap + 1))
        tx.expire(key, self._keys.ttl(RAW))

    def _record_hostname(
        self,
        tx: StoreTransaction,
        hostname: str,
        identity: JobIdentity,
        duration_ms: float,
        success: bool,
        at: float,
    ) -> None:
        key = self._keys.server_jobs(hostname, identity)
        if success:
            tx.hincrby(key, "total_processed", 1)
            tx.hincrbyfloat(key, "total_duration_ms", duration_ms)
        else:
            tx.hincrby(key, "total_failed", 1)
        tx.hset(key, {"last_updated_at": at})
        tx.expire(key, self._keys.ttl(RAW))

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def record_start(self, job_id: str, identity: JobIdentity, started_at: Optional[float] = None) -> None:
        job_id = validate_job_id(job_id)
        at = self._at("started_at", started_at)
        in_flight = self._keys.in_flight(job_id)

        with self._store.transaction() as tx:
            # Un start duplicado para el mismo job_id sobrescribe el marcador
            tx.delete(in_flight)
            tx.hset(in_flight, {
                "job_id": job_id,
                "connection": identity.connection,
                "queue": identity.queue,
                "job_class": identity.job_class,
                "started_at": at,
            })
            tx.expire(in_flight, self._keys.ttl(RAW))
            metrics_key = self._keys.job_metrics(identity)
            tx.hincrby(metrics_key, "total_started", 1)
            tx.hset(metrics_key, {"last_event_at": at})
            self._touch_aggregate(tx, metrics_key)
            self._discovery.mark_in(tx, identity)

        logger.debug("JOB_STARTED job_id=%s job=%s", job_id, identity.member)

    def record_completion(
        self,
        job_id: str,
        identity: JobIdentity,
        duration_ms: float,
        memory_mb: float,
        cpu_time_ms: float = 0.0,
        completed_at: Optional[float] = None,
        hostname: Optional[str] = None,
    ) -> None:
        data = {
            "job_id": job_id,
            "connection": identity.connection,
            "queue": identity.queue,
            "job_class": identity.job_class,
            "duration_ms": duration_ms,
            "memory_mb": memory_mb,
            "cpu_time_ms": cpu_time_ms,
            "hostname": hostname,
            "completed_at": completed_at if completed_at is not None else self._clock.now(),
        }
        data = self._hooks.run(BEFORE_RECORD, data)

        # Los hooks pueden reescribir cualquier campo: se valida lo que devuelven
        job_id = validate_job_id(data["job_id"])
        identity = JobIdentity(data["connection"], data["queue"], data["job_class"])
        duration = validate_non_negative("duration_ms", data["duration_ms"])
        memory = validate_non_negative("memory_mb", data["memory_mb"])
        cpu = validate_non_negative("cpu_time_ms", data.get("cpu_time_ms") or 0.0)
        at = validate_non_negative("completed_at", data["completed_at"])
        hostname = data.get("hostname") or None

        with self._store.transaction() as tx:
            metrics_key = self._keys.job_metrics(identity)
            tx.hincrby(metrics_key, "total_processed", 1)
            tx.hincrbyfloat(metrics_key, "total_duration_ms", duration)
            tx.hincrbyfloat(metrics_key, "total_memory_mb", memory)
            tx.hincrbyfloat(metrics_key, "total_cpu_time_ms", cpu)
            tx.hset(metrics_key, {"last_processed_at": at})
            self._touch_aggregate(tx, metrics_key)

            self._append_sample(tx, self._keys.durations(identity), sample_member(job_id, at, duration), at)
            self._append_sample(tx, self._keys.memory(identity), sample_member(job_id, at, memory), at)
            self._append_sample(tx, self._keys.cpu(identity), sample_member(job_id, at, cpu), at)

            if hostname:
                self._record_hostname(tx, hostname, identity, duration, True, at)

            tx.delete(self._keys.in_flight(job_id))
            self._discovery.mark_in(tx, identity)

        logger.debug(
            "JOB_COMPLETED job_id=%s job=%s duration_ms=%.2f memory_mb=%.2f",
            job_id, identity.member, duration, memory,
        )
        # La escritura ya está confirmada: un hook que falla no debe reportarla como fallida
        try:
            self._hooks.run(AFTER_RECORD, data)
        except Exception as e:
            logger.exception("AFTER_RECORD_HOOK_FAILED job_id=%s job=%s err=%s", job_id, identity.member, e)

    def record_failure(
        self,
        job_id: str,
        identity: JobIdentity,
        exception: Optional[str] = None,
        failed_at: Optional[float] = None,
        hostname: Optional[str] = None,
    ) -> None:
        job_id = validate_job_id(job_id)
        at = self._at("failed_at", failed_at)

        with self._store.transaction() as tx:
            metrics_key = self._keys.job_metrics(identity)
            tx.hincrby(metrics_key, "total_failed", 1)
            tx.hset(metrics_key, {
                "last_failed_at": at,
                "last_exception": self._truncate(exception),
            })
            self._touch_aggregate(tx, metrics_key)
            if hostname:
                self._record_hostname(tx, hostname, identity, 0.0, False, at)
            tx.delete(self._keys.in_flight(job_id))
            self._discovery.mark_in(tx, identity)

        logger.debug("JOB_FAILED job_id=%s job=%s", job_id, identity.member)

    # ------------------------------------------------------------------
    # auxiliary events
    # ------------------------------------------------------------------

    def record_retry_requested(
        self,
        job_id: str,
        identity: JobIdentity,
        attempt: int = 1,
        retry_requested_at: Optional[float] = None,
    ) -> None:
        job_id = validate_job_id(job_id)
        attempt = int(validate_non_negative("attempt", attempt))
        at = self._at("retry_requested_at", retry_requested_at)
        event = json.dumps({"job_id": job_id, "attempt": attempt, "at": at}, sort_keys=True)

        with self._store.transaction() as tx:
            metrics_key = self._keys.job_metrics(identity)
            tx.hincrby(metrics_key, "total_retries", 1)
            tx.hset(metrics_key, {"last_event_at": at})
            self._touch_aggregate(tx, metrics_key)
            self._append_sample(tx, self._keys.retries(identity), event, at)
            self._discovery.mark_in(tx, identity)

    def record_timeout(self, job_id: str, identity: JobIdentity, timed_out_at: Optional[float] = None) -> None:
        job_id = validate_job_id(job_id)
        at = self._at("timed_out_at", timed_out_at)

        with self._store.transaction() as tx:
            metrics_key = self._keys.job_metrics(identity)
            tx.hincrby(metrics_key, "total_timeouts", 1)
            tx.hset(metrics_key, {"last_timeout_at": at})
            self._touch_aggregate(tx, metrics_key)
            self._discovery.mark_in(tx, identity)

        logger.debug("JOB_TIMEOUT job_id=%s job=%s", job_id, identity.member)

    def record_exception(
        self,
        job_id: str,
        identity: JobIdentity,
        exception_class: str,
        message: str = "",
        occurred_at: Optional[float] = None,
    ) -> None:
        job_id = validate_job_id(job_id)
        at = self._at("occurred_at", occurred_at)
        exception_class = (exception_class or "").strip() or "UnknownException"
        exceptions_key = self._keys.exceptions(identity)

        with self._store.transaction() as tx:
            metrics_key = self._keys.job_metrics(identity)
            tx.hincrby(metrics_key, "total_exceptions", 1)
            tx.hset(metrics_key, {"last_event_at": at})
            self._touch_aggregate(tx, metrics_key)
            tx.hincrby(exceptions_key, exception_class[:255], 1)
            tx.expire(exceptions_key, self._keys.ttl(AGGREGATED))
            self._discovery.mark_in(tx, identity)

        logger.debug(
            "JOB_EXCEPTION job_id=%s job=%s class=%s message=%s",
            job_id, identity.member, exception_class, self._truncate(message)[:200],
        )

    def record_queued(
        self,
        identity: JobIdentity,
        queued_at: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> None:
        at = self._at("queued_at", queued_at)
        # Sin job_id, varios encolados en el mismo segundo no deben colapsar en un miembro
        member = validate_job_id(job_id) if job_id else f"{at!r}:{uuid.uuid4().hex}"

        with self._store.transaction() as tx:
            self._append_sample(tx, self._keys.queued(identity), member, at)
            self._discovery.mark_in(tx, identity)

"""Máquina de estados de workers: heartbeats, transiciones y staleness.

Estados idle / busy / crashed / stopped. Cada escritura es un script atómico
(read-modify-write) que contabiliza el tiempo desde la última contabilización
en el bucket del estado anterior (sólo idle y busy acumulan).
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from ..core.clock import Clock, SystemClock
from ..core.domain.errors import InvalidMetricsInput
from ..core.domain.identity import QueueRef, validate_non_negative
from ..core.domain.worker import WorkerHeartbeat, WorkerState
from ..core.store.interface import KeyValueStore
from ..core.store.keys import RAW, MetricsKeyBuilder
from ..core.store.scripts import TRANSITION_STATE, UPDATE_HEARTBEAT

logger = logging.getLogger(__name__)


def _state(value: Union[str, WorkerState]) -> WorkerState:
    try:
        return WorkerState(value.strip().lower() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidMetricsInput("state", f"unknown worker state {value!r}")


def _worker_id(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidMetricsInput("worker_id", "must be a non-empty string")
    return value.strip()


class WorkerHeartbeatTracker:
    def __init__(
        self,
        store: KeyValueStore,
        keys: MetricsKeyBuilder,
        clock: Optional[Clock] = None,
        stale_threshold_seconds: int = 60,
    ):
        self._store = store
        self._keys = keys
        self._clock = clock or SystemClock()
        self.stale_threshold_seconds = stale_threshold_seconds

    @property
    def ttl(self) -> int:
        return self._keys.ttl(RAW)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def record_heartbeat(
        self,
        worker_id: str,
        connection: str,
        queue: str,
        state: Union[str, WorkerState],
        current_job_id: Optional[str] = None,
        current_job_class: Optional[str] = None,
        pid: int = 0,
        hostname: str = "",
        memory_usage_mb: float = 0.0,
        cpu_usage_percent: float = 0.0,
    ) -> int:
        """Escribe el heartbeat completo. Devuelve jobs_processed tras la escritura."""
        worker_id = _worker_id(worker_id)
        ref = QueueRef(connection, queue)
        new_state = _state(state)
        pid = int(validate_non_negative("pid", pid))
        memory = validate_non_negative("memory_usage_mb", memory_usage_mb)
        cpu = validate_non_negative("cpu_usage_percent", cpu_usage_percent)

        result = self._store.run_script(
            UPDATE_HEARTBEAT,
            [self._keys.worker(worker_id), self._keys.worker_index()],
            [
                worker_id,
                ref.connection,
                ref.queue,
                new_state.value,
                current_job_id or "",
                current_job_class or "",
                pid,
                hostname or "",
                repr(memory),
                repr(cpu),
                repr(self._clock.now()),
                self.ttl,
            ],
        )
        logger.debug("WORKER_HEARTBEAT worker_id=%s state=%s queue=%s", worker_id, new_state.value, ref.member)
        return int(result)

    def transition_state(
        self,
        worker_id: str,
        new_state: Union[str, WorkerState],
        at: Optional[float] = None,
        stale_threshold_seconds: Optional[float] = None,
    ) -> bool:
        """Cambio de estado sin tocar uso de recursos. False si el worker no existe.

        Con ``stale_threshold_seconds`` el script vuelve a comprobar, dentro de la
        misma unidad atómica, que el worker sigue activo y sin heartbeat desde
        hace más del umbral; si no, no cambia nada y devuelve False.
        """
        worker_id = _worker_id(worker_id)
        new_state = _state(new_state)
        at = self._clock.now() if at is None else validate_non_negative("at", at)

        result = self._store.run_script(
            TRANSITION_STATE,
            [self._keys.worker(worker_id)],
            [
                new_state.value,
                repr(at),
                self.ttl,
                "" if stale_threshold_seconds is None else repr(float(stale_threshold_seconds)),
            ],
        )
        result = int(result)
        if result == -1:
            logger.debug("WORKER_TRANSITION_MISSING worker_id=%s", worker_id)
            return False
        if result == -2:
            logger.debug("WORKER_TRANSITION_SKIPPED worker_id=%s reason=not_stale", worker_id)
            return False
        logger.info("WORKER_TRANSITION worker_id=%s state=%s", worker_id, new_state.value)
        return True

    def mark_stopped(self, worker_id: str, at: Optional[float] = None) -> bool:
        return self.transition_state(worker_id, WorkerState.STOPPED, at)

    def remove_worker(self, worker_id: str) -> None:
        with self._store.transaction() as tx:
            tx.delete(self._keys.worker(worker_id))
            tx.zrem(self._keys.worker_index(), worker_id)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get_worker(self, worker_id: str) -> Optional[WorkerHeartbeat]:
        data = self._store.hgetall(self._keys.worker(worker_id))
        if not data:
            return None
        return WorkerHeartbeat.from_hash(data)

    def _all_workers(self) -> List[WorkerHeartbeat]:
        workers = []
        for worker_id in self._store.zrange(self._keys.worker_index(), 0, -1):
            worker = self.get_worker(worker_id)
            if worker is not None:
                workers.append(worker)
        return workers

    def get_active_workers(self, connection: Optional[str] = None, queue: Optional[str] = None) -> List[WorkerHeartbeat]:
        return [
            w for w in self._all_workers()
            if w.state.is_active
            and (connection is None or w.connection == connection)
            and (queue is None or w.queue == queue)
        ]

    def get_workers_by_state(self, state: Union[str, WorkerState]) -> List[WorkerHeartbeat]:
        wanted = _state(state)
        return [w for w in self._all_workers() if w.state == wanted]

    # ------------------------------------------------------------------
    # sweeps
    # ------------------------------------------------------------------

    def detect_staled_workers(self, threshold_seconds: Optional[int] = None) -> int:
        """Pasa a crashed los workers activos sin heartbeat en ``threshold``.

        Idempotente: un worker ya crashed no vuelve a contar.
        """
        threshold = self.stale_threshold_seconds if threshold_seconds is None else threshold_seconds
        now = self._clock.now()
        index_key = self._keys.worker_index()
        crashed = 0

        for worker_id, last_seen in self._store.zrange(index_key, 0, -1, withscores=True):
            if now - float(last_seen) <= threshold:
                continue
            try:
                worker = self.get_worker(worker_id)
                if worker is None:
                    # El hash expiró: limpiar el índice
                    self._store.zrem(index_key, worker_id)
                    continue
                if not worker.state.is_active or not worker.is_stale(threshold, now):
                    continue
                if self.transition_state(worker_id, WorkerState.CRASHED, now, stale_threshold_seconds=threshold):
                    crashed += 1
                    logger.warning(
                        "WORKER_CRASHED worker_id=%s queue=%s:%s silent_for=%.0fs",
                        worker_id, worker.connection, worker.queue, now - worker.last_heartbeat,
                    )
            except Exception as e:
                logger.exception("STALE_CHECK_FAILED worker_id=%s err=%s", worker_id, e)

        return crashed

    def cleanup(self, older_than_seconds: float) -> int:
        cutoff = self._clock.now() - older_than_seconds
        old = self._store.zrangebyscore(self._keys.worker_index(), "-inf", f"({cutoff!r}")
        for worker_id in old:
            self.remove_worker(worker_id)
        if old:
            logger.info("WORKERS_CLEANED count=%d", len(old))
        return len(old)

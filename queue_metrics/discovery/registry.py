"""Registro de tuplas conocidas (connection, queue[, job_class]).

Dos sorted sets con score = último timestamp visto:
- discovery:queues  miembros "connection:queue"
- discovery:jobs    miembros "connection:queue:job_class"

El score es la hora a la que se registró el evento (reloj del proceso).
Un miembro está vivo mientras su score sea >= now - TTL(aggregated).
Re-marcar sólo actualiza el score, así que el registro es idempotente.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..core.clock import Clock, SystemClock
from ..core.domain.identity import JobIdentity, QueueRef
from ..core.store.interface import KeyValueStore, StoreTransaction
from ..core.store.keys import AGGREGATED, MetricsKeyBuilder

logger = logging.getLogger(__name__)


class QueueDiscovery:
    def __init__(
        self,
        store: KeyValueStore,
        keys: MetricsKeyBuilder,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._keys = keys
        self._clock = clock or SystemClock()

    @property
    def ttl(self) -> int:
        return self._keys.ttl(AGGREGATED)

    # ------------------------------------------------------------------
    # marking
    # ------------------------------------------------------------------

    def mark_discovered(self, connection: str, queue: str) -> None:
        ref = QueueRef(connection, queue)
        with self._store.transaction() as tx:
            self._mark_queue(tx, ref, self._clock.now())

    def mark_job_discovered(self, connection: str, queue: str, job_class: str) -> None:
        identity = JobIdentity(connection, queue, job_class)
        with self._store.transaction() as tx:
            self.mark_in(tx, identity)

    def mark_in(self, tx: StoreTransaction, identity: JobIdentity) -> None:
        """Encola el marcado dentro de una transacción ajena (la del recorder).

        El score es la hora de registro, no la del evento: un evento reentregado
        con timestamp antiguo no debe sacar la tupla del registro.
        """
        at = self._clock.now()
        self._mark_queue(tx, identity.queue_ref, at)
        jobs_key = self._keys.discovered_jobs()
        tx.zadd(jobs_key, {identity.member: at})
        tx.expire(jobs_key, self.ttl)

    def _mark_queue(self, tx: StoreTransaction, ref: QueueRef, at: float) -> None:
        queues_key = self._keys.discovered_queues()
        tx.zadd(queues_key, {ref.member: at})
        tx.expire(queues_key, self.ttl)

    # ------------------------------------------------------------------
    # listing
    # ------------------------------------------------------------------

    def _live_members(self, key: str) -> List[str]:
        cutoff = self._clock.now() - self.ttl
        pruned = self._store.zremrangebyscore(key, "-inf", f"({cutoff!r}")
        if pruned:
            logger.debug("DISCOVERY_PRUNED key=%s count=%d", key, pruned)
        return self._store.zrangebyscore(key, cutoff, "+inf")

    def list_queues(self) -> List[QueueRef]:
        refs = []
        for member in self._live_members(self._keys.discovered_queues()):
            ref = QueueRef.parse(member)
            if ref is None:
                logger.warning("DISCOVERY_BAD_MEMBER kind=queue member=%r", member)
                continue
            refs.append(ref)
        return sorted(refs, key=lambda r: (r.connection, r.queue))

    def list_jobs(self) -> List[JobIdentity]:
        identities = []
        for member in self._live_members(self._keys.discovered_jobs()):
            identity = JobIdentity.parse(member)
            if identity is None:
                logger.warning("DISCOVERY_BAD_MEMBER kind=job member=%r", member)
                continue
            identities.append(identity)
        return sorted(identities, key=lambda i: (i.connection, i.queue, i.job_class))

    def jobs_for_queue(self, connection: str, queue: str) -> List[JobIdentity]:
        return [
            identity for identity in self.list_jobs()
            if identity.connection == connection and identity.queue == queue
        ]

    def forget_job(self, identity: JobIdentity) -> None:
        self._store.zrem(self._keys.discovered_jobs(), identity.member)

    def forget_queue(self, connection: str, queue: str) -> None:
        ref = QueueRef(connection, queue)
        self._store.zrem(self._keys.discovered_queues(), ref.member)
        doomed = [i.member for i in self.jobs_for_queue(ref.connection, ref.queue)]
        if doomed:
            self._store.zrem(self._keys.discovered_jobs(), *doomed)

"""Factory del key-value store según la configuración."""

from __future__ import annotations

import logging
from typing import Optional

from common.config import Settings, get_settings
from queue_metrics.core.clock import Clock, SystemClock
from queue_metrics.core.store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore

logger = logging.getLogger(__name__)


def get_store(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> KeyValueStore:
    settings = settings or get_settings()
    clock = clock or SystemClock()

    if settings.storage_driver == "memory":
        logger.info("[STORE] Using in-memory store")
        return InMemoryKeyValueStore(clock=clock)

    store = RedisKeyValueStore.from_url(
        settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
    )
    # Log sin contraseña
    host = settings.redis_url.split("@")[-1]
    if store.ping():
        logger.info("[STORE] Redis store ready url=%s prefix=%s", host, settings.key_prefix)
    else:
        # Primitivas single-attempt: cada llamada fallará con StoreConnectionError
        # hasta que Redis vuelva; no se cambia de backend en caliente.
        logger.warning("[STORE] Redis not reachable url=%s", host)
    return store

"""Key-value store: interfaz, implementaciones, claves y scripts."""

from .interface import KeyValueStore, StoreScript, StoreTransaction
from .keys import AGGREGATED, BASELINE, RAW, MetricsKeyBuilder
from .memory_store import InMemoryKeyValueStore
from .redis_store import RedisKeyValueStore, ScriptCache

__all__ = [
    "AGGREGATED",
    "BASELINE",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "MetricsKeyBuilder",
    "RAW",
    "RedisKeyValueStore",
    "ScriptCache",
    "StoreScript",
    "StoreTransaction",
]

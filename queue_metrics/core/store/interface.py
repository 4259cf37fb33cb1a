"""Abstract interface for the key-value store.

The engine only needs hash, sorted-set and string primitives with per-key
expiry, atomic increments, pattern enumeration, an all-or-nothing
transaction and server-side scripts for read-modify-write.

Implementations:
- RedisKeyValueStore: redis-py against a Redis server
- InMemoryKeyValueStore: single process, tests and local runs
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

Score = Union[float, str]
Member = Tuple[str, float]


@dataclass(frozen=True)
class StoreScript:
    """Atomic read-modify-write unit.

    ``lua`` runs on Redis. ``apply`` is the same logic for stores that
    execute scripts in-process; it receives the store, the keys and the
    string arguments exactly as EVAL would.
    """

    name: str
    lua: str
    apply: Callable[["KeyValueStore", Sequence[str], Sequence[str]], Any]


class StoreTransaction(ABC):
    """Write primitives queued inside ``KeyValueStore.transaction()``."""

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def delete(self, *keys: str) -> None:
        pass

    @abstractmethod
    def expire(self, key: str, seconds: int) -> None:
        pass

    @abstractmethod
    def hset(self, key: str, mapping: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def hincrby(self, key: str, field: str, amount: int = 1) -> None:
        pass

    @abstractmethod
    def hincrbyfloat(self, key: str, field: str, amount: float) -> None:
        pass

    @abstractmethod
    def zadd(self, key: str, mapping: Dict[str, float]) -> None:
        pass

    @abstractmethod
    def zrem(self, key: str, *members: str) -> None:
        pass

    @abstractmethod
    def zremrangebyrank(self, key: str, start: int, end: int) -> None:
        pass

    @abstractmethod
    def zremrangebyscore(self, key: str, min_score: Score, max_score: Score) -> None:
        pass


class KeyValueStore(ABC):
    """Abstract interface for the metrics key-value store."""

    # strings / keys
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def expire(self, key: str, seconds: int) -> bool:
        pass

    @abstractmethod
    def scan_keys(self, pattern: str) -> List[str]:
        """All live keys matching a glob pattern."""

    # hashes
    @abstractmethod
    def hgetall(self, key: str) -> Dict[str, str]:
        pass

    @abstractmethod
    def hget(self, key: str, field: str) -> Optional[str]:
        pass

    @abstractmethod
    def hset(self, key: str, mapping: Dict[str, Any]) -> int:
        pass

    @abstractmethod
    def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        pass

    @abstractmethod
    def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        pass

    # sorted sets
    @abstractmethod
    def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        pass

    @abstractmethod
    def zrange(self, key: str, start: int, end: int, withscores: bool = False) -> List[Any]:
        """Members by rank (ascending score), Redis index semantics."""

    @abstractmethod
    def zrangebyscore(
        self, key: str, min_score: Score, max_score: Score, withscores: bool = False
    ) -> List[Any]:
        pass

    @abstractmethod
    def zcount(self, key: str, min_score: Score, max_score: Score) -> int:
        pass

    @abstractmethod
    def zcard(self, key: str) -> int:
        pass

    @abstractmethod
    def zrem(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    def zremrangebyrank(self, key: str, start: int, end: int) -> int:
        pass

    @abstractmethod
    def zremrangebyscore(self, key: str, min_score: Score, max_score: Score) -> int:
        pass

    # atomicity
    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Context manager yielding a StoreTransaction.

        Everything queued is applied atomically when the block exits
        normally. If the block raises, nothing is applied.
        """

    @abstractmethod
    def run_script(self, script: StoreScript, keys: Sequence[str], args: Sequence[Any]) -> Any:
        pass

    # lifecycle
    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

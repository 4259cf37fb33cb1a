"""Key-value store en memoria.

Implementación para tests y despliegues de un solo proceso:
- Un dict por tipo de valor (hash / sorted set / string) en un único mapa.
- Expiración perezosa por clave contra el reloj inyectado.
- Un RLock global: transacciones y scripts se aplican con el lock tomado,
  así que ningún otro hilo ve un estado intermedio.
"""

from __future__ import annotations

import copy
import fnmatch
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..clock import Clock, SystemClock
from ..domain.errors import ScriptError, StoreError
from .interface import KeyValueStore, Score, StoreScript, StoreTransaction

logger = logging.getLogger(__name__)


class _Hash(dict):
    pass


class _ZSet(dict):
    pass


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _parse_bound(bound: Score) -> Tuple[float, bool]:
    """Devuelve (valor, exclusivo). Soporta '(10', '-inf', '+inf'."""
    if isinstance(bound, str):
        text = bound.strip()
        if text.startswith("("):
            return float(text[1:]), True
        return float(text), False
    return float(bound), False


def _rank_slice(items: List[Any], start: int, end: int) -> List[Any]:
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if end < 0:
        end = n + end
    if n == 0 or start > end or start >= n:
        return []
    end = min(end, n - 1)
    return items[start:end + 1]


class _MemoryTransaction(StoreTransaction):
    """Buffer de operaciones; se aplican en ``commit`` con el lock tomado."""

    def __init__(self, store: "InMemoryKeyValueStore"):
        self._store = store
        self._ops: List[Tuple[str, Callable[[], Any]]] = []

    def _queue(self, key: str, op: Callable[[], Any]) -> None:
        self._ops.append((key, op))

    def set(self, key, value, ttl=None):
        self._queue(key, lambda: self._store.set(key, value, ttl))

    def delete(self, *keys):
        for key in keys:
            self._queue(key, lambda key=key: self._store.delete(key))

    def expire(self, key, seconds):
        self._queue(key, lambda: self._store.expire(key, seconds))

    def hset(self, key, mapping):
        mapping = dict(mapping)
        self._queue(key, lambda: self._store.hset(key, mapping))

    def hincrby(self, key, field, amount=1):
        self._queue(key, lambda: self._store.hincrby(key, field, amount))

    def hincrbyfloat(self, key, field, amount):
        self._queue(key, lambda: self._store.hincrbyfloat(key, field, amount))

    def zadd(self, key, mapping):
        mapping = dict(mapping)
        self._queue(key, lambda: self._store.zadd(key, mapping))

    def zrem(self, key, *members):
        self._queue(key, lambda: self._store.zrem(key, *members))

    def zremrangebyrank(self, key, start, end):
        self._queue(key, lambda: self._store.zremrangebyrank(key, start, end))

    def zremrangebyscore(self, key, min_score, max_score):
        self._queue(key, lambda: self._store.zremrangebyscore(key, min_score, max_score))

    def commit(self) -> None:
        self._store._apply_atomically(self._ops)


class InMemoryKeyValueStore(KeyValueStore):
    """Implementación sencilla en memoria del KeyValueStore."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._data: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _alive(self, key: str) -> bool:
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= self._clock.now():
            self._data.pop(key, None)
            self._expires.pop(key, None)
            return False
        return key in self._data

    def _typed(self, key: str, kind: type, create: bool = False):
        if not self._alive(key):
            if not create:
                return None
            self._data[key] = kind()
            self._expires.pop(key, None)
        value = self._data[key]
        if not isinstance(value, kind):
            raise StoreError(f"WRONGTYPE key={key} holds {type(value).__name__}")
        return value

    def _sorted(self, key: str) -> List[Tuple[str, float]]:
        zset = self._typed(key, _ZSet) or {}
        return sorted(zset.items(), key=lambda item: (item[1], item[0]))

    def _drop_if_empty(self, key: str) -> None:
        value = self._data.get(key)
        if isinstance(value, dict) and not value:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def _apply_atomically(self, ops: List[Tuple[str, Callable[[], Any]]]) -> None:
        with self._lock:
            touched = {key for key, _ in ops}
            snapshot = {
                key: (copy.deepcopy(self._data[key]), self._expires.get(key))
                for key in touched
                if key in self._data
            }
            try:
                for _, op in ops:
                    op()
            except Exception:
                for key in touched:
                    self._data.pop(key, None)
                    self._expires.pop(key, None)
                for key, (value, deadline) in snapshot.items():
                    self._data[key] = value
                    if deadline is not None:
                        self._expires[key] = deadline
                raise

    # ------------------------------------------------------------------
    # strings / keys
    # ------------------------------------------------------------------

    def get(self, key):
        with self._lock:
            return self._typed(key, str)

    def set(self, key, value, ttl=None):
        with self._lock:
            self._data[key] = str(value)
            if ttl:
                self._expires[key] = self._clock.now() + ttl
            else:
                self._expires.pop(key, None)

    def delete(self, *keys):
        with self._lock:
            deleted = 0
            for key in keys:
                if self._alive(key):
                    deleted += 1
                self._data.pop(key, None)
                self._expires.pop(key, None)
            return deleted

    def exists(self, key):
        with self._lock:
            return self._alive(key)

    def expire(self, key, seconds):
        with self._lock:
            if not self._alive(key):
                return False
            self._expires[key] = self._clock.now() + seconds
            return True

    def scan_keys(self, pattern):
        with self._lock:
            return [
                key for key in list(self._data)
                if self._alive(key) and fnmatch.fnmatchcase(key, pattern)
            ]

    # ------------------------------------------------------------------
    # hashes
    # ------------------------------------------------------------------

    def hgetall(self, key):
        with self._lock:
            return dict(self._typed(key, _Hash) or {})

    def hget(self, key, field):
        with self._lock:
            return (self._typed(key, _Hash) or {}).get(field)

    def hset(self, key, mapping):
        with self._lock:
            data = self._typed(key, _Hash, create=True)
            added = 0
            for field, value in mapping.items():
                if field not in data:
                    added += 1
                data[field] = _format_number(value) if isinstance(value, float) else str(value)
            return added

    def hincrby(self, key, field, amount=1):
        with self._lock:
            data = self._typed(key, _Hash, create=True)
            try:
                current = int(data.get(field, "0"))
            except ValueError:
                raise StoreError(f"hash value is not an integer key={key} field={field}")
            current += int(amount)
            data[field] = str(current)
            return current

    def hincrbyfloat(self, key, field, amount):
        with self._lock:
            data = self._typed(key, _Hash, create=True)
            try:
                current = float(data.get(field, "0"))
            except ValueError:
                raise StoreError(f"hash value is not a float key={key} field={field}")
            current += float(amount)
            data[field] = _format_number(current)
            return current

    # ------------------------------------------------------------------
    # sorted sets
    # ------------------------------------------------------------------

    def zadd(self, key, mapping):
        with self._lock:
            zset = self._typed(key, _ZSet, create=True)
            added = 0
            for member, score in mapping.items():
                if member not in zset:
                    added += 1
                zset[str(member)] = float(score)
            return added

    def zrange(self, key, start, end, withscores=False):
        with self._lock:
            items = _rank_slice(self._sorted(key), start, end)
            return list(items) if withscores else [m for m, _ in items]

    def _in_range(self, key, min_score, max_score):
        low, low_excl = _parse_bound(min_score)
        high, high_excl = _parse_bound(max_score)
        result = []
        for member, score in self._sorted(key):
            if score < low or (low_excl and score == low):
                continue
            if score > high or (high_excl and score == high):
                continue
            result.append((member, score))
        return result

    def zrangebyscore(self, key, min_score, max_score, withscores=False):
        with self._lock:
            items = self._in_range(key, min_score, max_score)
            return items if withscores else [m for m, _ in items]

    def zcount(self, key, min_score, max_score):
        with self._lock:
            return len(self._in_range(key, min_score, max_score))

    def zcard(self, key):
        with self._lock:
            return len(self._typed(key, _ZSet) or {})

    def zrem(self, key, *members):
        with self._lock:
            zset = self._typed(key, _ZSet)
            if not zset:
                return 0
            removed = 0
            for member in members:
                if zset.pop(member, None) is not None:
                    removed += 1
            self._drop_if_empty(key)
            return removed

    def zremrangebyrank(self, key, start, end):
        with self._lock:
            doomed = _rank_slice(self._sorted(key), start, end)
            return self.zrem(key, *[m for m, _ in doomed]) if doomed else 0

    def zremrangebyscore(self, key, min_score, max_score):
        with self._lock:
            doomed = self._in_range(key, min_score, max_score)
            return self.zrem(key, *[m for m, _ in doomed]) if doomed else 0

    # ------------------------------------------------------------------
    # atomicity
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        tx = _MemoryTransaction(self)
        yield tx
        tx.commit()

    def run_script(self, script: StoreScript, keys: Sequence[str], args: Sequence[Any]) -> Any:
        str_args = [str(a) for a in args]
        with self._lock:
            try:
                return script.apply(self, list(keys), str_args)
            except StoreError:
                raise
            except Exception as e:
                raise ScriptError(script.name, str(e)) from e

    def flush(self) -> None:
        """Vacía el store (tests)."""
        with self._lock:
            self._data.clear()
            self._expires.clear()

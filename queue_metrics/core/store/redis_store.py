"""Key-value store sobre Redis (redis-py)."""

from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Sequence

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError, RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..domain.errors import ScriptError, StoreConnectionError, StoreError
from .interface import KeyValueStore, StoreScript, StoreTransaction

logger = logging.getLogger(__name__)

SCAN_COUNT = 100


def _translate_errors(method):
    """Convierte errores de redis-py en la jerarquía StoreError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(f"{method.__name__}: {e}") from e
        except RedisError as e:
            raise StoreError(f"{method.__name__}: {e}") from e

    return wrapper


class ScriptCache:
    """SHA cache de scripts Lua, uno por cliente.

    EVALSHA con el SHA cacheado; si Redis lo perdió (NOSCRIPT, p.ej. tras
    SCRIPT FLUSH o failover) se recarga una vez. ``invalidate`` se llama al
    reconectar.
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client
        self._shas: Dict[str, str] = {}

    def _load(self, script: StoreScript) -> str:
        sha = self._client.script_load(script.lua)
        self._shas[script.name] = sha
        logger.debug("[REDIS] Script loaded name=%s sha=%s", script.name, sha)
        return sha

    def run(self, script: StoreScript, keys: Sequence[str], args: Sequence[Any]) -> Any:
        sha = self._shas.get(script.name) or self._load(script)
        try:
            return self._client.evalsha(sha, len(keys), *keys, *args)
        except NoScriptError:
            sha = self._load(script)
            return self._client.evalsha(sha, len(keys), *keys, *args)

    def invalidate(self, client: Optional["redis.Redis"] = None) -> None:
        if client is not None:
            self._client = client
        self._shas.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._shas


class RedisTransaction(StoreTransaction):
    """MULTI/EXEC pipeline con la interfaz de StoreTransaction."""

    def __init__(self, pipe):
        self._pipe = pipe

    def set(self, key, value, ttl=None):
        self._pipe.set(key, value, ex=ttl)

    def delete(self, *keys):
        if keys:
            self._pipe.delete(*keys)

    def expire(self, key, seconds):
        self._pipe.expire(key, seconds)

    def hset(self, key, mapping):
        self._pipe.hset(key, mapping=mapping)

    def hincrby(self, key, field, amount=1):
        self._pipe.hincrby(key, field, amount)

    def hincrbyfloat(self, key, field, amount):
        self._pipe.hincrbyfloat(key, field, amount)

    def zadd(self, key, mapping):
        self._pipe.zadd(key, mapping)

    def zrem(self, key, *members):
        if members:
            self._pipe.zrem(key, *members)

    def zremrangebyrank(self, key, start, end):
        self._pipe.zremrangebyrank(key, start, end)

    def zremrangebyscore(self, key, min_score, max_score):
        self._pipe.zremrangebyscore(key, min_score, max_score)


class RedisKeyValueStore(KeyValueStore):
    """Gestiona el cliente Redis y expone las primitivas del store."""

    def __init__(self, client: "redis.Redis", url: Optional[str] = None, socket_timeout: float = 5.0):
        self._client = client
        self._url = url
        self._socket_timeout = socket_timeout
        self._scripts = ScriptCache(client)

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisKeyValueStore":
        return cls(cls._build_client(url, socket_timeout), url=url, socket_timeout=socket_timeout)

    @staticmethod
    def _build_client(url: str, socket_timeout: float) -> "redis.Redis":
        return redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @property
    def client(self) -> "redis.Redis":
        return self._client

    @property
    def scripts(self) -> ScriptCache:
        return self._scripts

    def ping(self) -> bool:
        try:
            self._client.ping()
            return True
        except RedisError as e:
            logger.warning("[REDIS] Ping failed: %s", e)
            return False

    def reconnect(self) -> None:
        """Nuevo cliente; el cache de scripts se invalida."""
        if self._url is None:
            raise StoreError("cannot reconnect a store built from an external client")
        self.close()
        self._client = self._build_client(self._url, self._socket_timeout)
        self._scripts.invalidate(self._client)
        logger.info("[REDIS] Reconnected: %s", self._url.split("@")[-1])

    def close(self) -> None:
        try:
            self._client.close()
        except RedisError as e:
            logger.debug("[REDIS] Close failed: %s", e)

    # strings / keys

    @_translate_errors
    def get(self, key):
        return self._client.get(key)

    @_translate_errors
    def set(self, key, value, ttl=None):
        self._client.set(key, value, ex=ttl)

    @_translate_errors
    def delete(self, *keys):
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    @_translate_errors
    def exists(self, key):
        return bool(self._client.exists(key))

    @_translate_errors
    def expire(self, key, seconds):
        return bool(self._client.expire(key, seconds))

    @_translate_errors
    def scan_keys(self, pattern):
        return list(self._client.scan_iter(match=pattern, count=SCAN_COUNT))

    # hashes

    @_translate_errors
    def hgetall(self, key):
        return dict(self._client.hgetall(key) or {})

    @_translate_errors
    def hget(self, key, field):
        return self._client.hget(key, field)

    @_translate_errors
    def hset(self, key, mapping):
        return int(self._client.hset(key, mapping=mapping))

    @_translate_errors
    def hincrby(self, key, field, amount=1):
        return int(self._client.hincrby(key, field, amount))

    @_translate_errors
    def hincrbyfloat(self, key, field, amount):
        return float(self._client.hincrbyfloat(key, field, amount))

    # sorted sets

    @_translate_errors
    def zadd(self, key, mapping):
        return int(self._client.zadd(key, mapping))

    @_translate_errors
    def zrange(self, key, start, end, withscores=False):
        return list(self._client.zrange(key, start, end, withscores=withscores))

    @_translate_errors
    def zrangebyscore(self, key, min_score, max_score, withscores=False):
        return list(self._client.zrangebyscore(key, min_score, max_score, withscores=withscores))

    @_translate_errors
    def zcount(self, key, min_score, max_score):
        return int(self._client.zcount(key, min_score, max_score))

    @_translate_errors
    def zcard(self, key):
        return int(self._client.zcard(key))

    @_translate_errors
    def zrem(self, key, *members):
        if not members:
            return 0
        return int(self._client.zrem(key, *members))

    @_translate_errors
    def zremrangebyrank(self, key, start, end):
        return int(self._client.zremrangebyrank(key, start, end))

    @_translate_errors
    def zremrangebyscore(self, key, min_score, max_score):
        return int(self._client.zremrangebyscore(key, min_score, max_score))

    # atomicity

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        pipe = self._client.pipeline(transaction=True)
        try:
            yield RedisTransaction(pipe)
            pipe.execute()
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(f"transaction: {e}") from e
        except RedisError as e:
            raise StoreError(f"transaction: {e}") from e
        finally:
            pipe.reset()

    def run_script(self, script, keys, args):
        try:
            return self._scripts.run(script, keys, args)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(f"{script.name}: {e}") from e
        except RedisError as e:
            raise ScriptError(script.name, str(e)) from e

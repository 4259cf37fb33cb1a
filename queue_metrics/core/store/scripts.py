"""Atomic read-modify-write scripts for worker heartbeats.

Each script carries its Lua source for Redis and a Python twin that the
in-memory store runs under its lock. Both must stay in sync.
"""

from __future__ import annotations

from typing import Dict, Sequence

from .interface import KeyValueStore, StoreScript

_ACTIVE_BUCKETS = {"idle": "idle_time_seconds", "busy": "busy_time_seconds"}


UPDATE_HEARTBEAT_LUA = """
-- KEYS[1]: worker hash, KEYS[2]: worker index (sorted set)
-- ARGV: worker_id, connection, queue, state, current_job_id, current_job_class,
--       pid, hostname, memory_usage_mb, cpu_usage_percent, now, ttl
local workerKey = KEYS[1]
local indexKey = KEYS[2]
local newState = ARGV[4]
local currentJobId = ARGV[5]
local memoryUsageMb = tonumber(ARGV[9])
local now = tonumber(ARGV[11])
local ttl = tonumber(ARGV[12])

local raw = redis.call('HGETALL', workerKey)
local existing = {}
for i = 1, #raw, 2 do
    existing[raw[i]] = raw[i + 1]
end

local previousState = existing['state']
local lastHeartbeat = tonumber(existing['last_heartbeat']) or now
local accountedAt = tonumber(existing['accounted_at']) or lastHeartbeat
local idleTime = tonumber(existing['idle_time_seconds']) or 0
local busyTime = tonumber(existing['busy_time_seconds']) or 0
local jobsProcessed = tonumber(existing['jobs_processed']) or 0
local peakMemory = tonumber(existing['peak_memory_usage_mb']) or 0
local lastStateChange = tonumber(existing['last_state_change']) or now

local elapsed = math.max(0, now - accountedAt)
if previousState == 'idle' then
    idleTime = idleTime + elapsed
elseif previousState == 'busy' then
    busyTime = busyTime + elapsed
end

if previousState == 'busy' and newState == 'idle' and currentJobId == '' then
    jobsProcessed = jobsProcessed + 1
end

if previousState ~= newState then
    lastStateChange = now
end

redis.call('HSET', workerKey,
    'worker_id', ARGV[1],
    'connection', ARGV[2],
    'queue', ARGV[3],
    'state', newState,
    'last_heartbeat', now,
    'accounted_at', now,
    'last_state_change', lastStateChange,
    'current_job_id', currentJobId,
    'current_job_class', ARGV[6],
    'idle_time_seconds', idleTime,
    'busy_time_seconds', busyTime,
    'jobs_processed', jobsProcessed,
    'pid', ARGV[7],
    'hostname', ARGV[8],
    'memory_usage_mb', memoryUsageMb,
    'cpu_usage_percent', tonumber(ARGV[10]),
    'peak_memory_usage_mb', math.max(peakMemory, memoryUsageMb)
)
redis.call('ZADD', indexKey, now, ARGV[1])
redis.call('EXPIRE', workerKey, ttl)
redis.call('EXPIRE', indexKey, ttl)
return jobsProcessed
"""


TRANSITION_STATE_LUA = """
-- KEYS[1]: worker hash
-- ARGV: new_state, at, ttl[, stale_threshold]
-- Con stale_threshold sólo transiciona si el worker sigue activo y callado
local workerKey = KEYS[1]
local newState = ARGV[1]
local at = tonumber(ARGV[2])
local ttl = tonumber(ARGV[3])
local staleThreshold = tonumber(ARGV[4])

if redis.call('EXISTS', workerKey) == 0 then
    return -1
end

local raw = redis.call('HGETALL', workerKey)
local existing = {}
for i = 1, #raw, 2 do
    existing[raw[i]] = raw[i + 1]
end

local previousState = existing['state']
if staleThreshold then
    local lastHeartbeat = tonumber(existing['last_heartbeat']) or at
    if (previousState ~= 'idle' and previousState ~= 'busy') or at - lastHeartbeat <= staleThreshold then
        return -2
    end
end
local accountedAt = tonumber(existing['accounted_at']) or tonumber(existing['last_heartbeat']) or at
local idleTime = tonumber(existing['idle_time_seconds']) or 0
local busyTime = tonumber(existing['busy_time_seconds']) or 0
local jobsProcessed = tonumber(existing['jobs_processed']) or 0
local lastStateChange = tonumber(existing['last_state_change']) or at

local elapsed = math.max(0, at - accountedAt)
if previousState == 'idle' then
    idleTime = idleTime + elapsed
elseif previousState == 'busy' then
    busyTime = busyTime + elapsed
end

if previousState == 'busy' and newState == 'idle' then
    jobsProcessed = jobsProcessed + 1
end

if previousState ~= newState then
    lastStateChange = at
end

redis.call('HSET', workerKey,
    'state', newState,
    'accounted_at', at,
    'last_state_change', lastStateChange,
    'idle_time_seconds', idleTime,
    'busy_time_seconds', busyTime,
    'jobs_processed', jobsProcessed
)
if newState ~= 'busy' then
    redis.call('HSET', workerKey, 'current_job_id', '', 'current_job_class', '')
end
redis.call('EXPIRE', workerKey, ttl)
return jobsProcessed
"""


def _num(data: Dict[str, str], name: str, default: float) -> float:
    try:
        return float(data[name])
    except (KeyError, TypeError, ValueError):
        return default


def _accumulate(existing: Dict[str, str], at: float) -> Dict[str, float]:
    """Suma el tiempo transcurrido al bucket del estado anterior."""
    previous = existing.get("state")
    last_heartbeat = _num(existing, "last_heartbeat", at)
    accounted_at = _num(existing, "accounted_at", last_heartbeat)
    buckets = {
        "idle_time_seconds": _num(existing, "idle_time_seconds", 0.0),
        "busy_time_seconds": _num(existing, "busy_time_seconds", 0.0),
    }
    bucket = _ACTIVE_BUCKETS.get(previous)
    if bucket is not None:
        buckets[bucket] += max(0.0, at - accounted_at)
    return buckets


def _update_heartbeat(store: KeyValueStore, keys: Sequence[str], args: Sequence[str]) -> int:
    worker_key, index_key = keys[0], keys[1]
    (worker_id, connection, queue, new_state, current_job_id, current_job_class,
     pid, hostname, memory_mb, cpu_pct, now, ttl) = args[:12]
    now_f = float(now)
    memory_f = float(memory_mb)

    existing = store.hgetall(worker_key)
    previous = existing.get("state")
    buckets = _accumulate(existing, now_f)

    jobs_processed = int(_num(existing, "jobs_processed", 0))
    if previous == "busy" and new_state == "idle" and current_job_id == "":
        jobs_processed += 1

    last_state_change = _num(existing, "last_state_change", now_f)
    if previous != new_state:
        last_state_change = now_f

    store.hset(worker_key, {
        "worker_id": worker_id,
        "connection": connection,
        "queue": queue,
        "state": new_state,
        "last_heartbeat": now_f,
        "accounted_at": now_f,
        "last_state_change": last_state_change,
        "current_job_id": current_job_id,
        "current_job_class": current_job_class,
        "idle_time_seconds": buckets["idle_time_seconds"],
        "busy_time_seconds": buckets["busy_time_seconds"],
        "jobs_processed": jobs_processed,
        "pid": pid,
        "hostname": hostname,
        "memory_usage_mb": memory_f,
        "cpu_usage_percent": float(cpu_pct),
        "peak_memory_usage_mb": max(_num(existing, "peak_memory_usage_mb", 0.0), memory_f),
    })
    store.zadd(index_key, {worker_id: now_f})
    store.expire(worker_key, int(ttl))
    store.expire(index_key, int(ttl))
    return jobs_processed


def _transition_state(store: KeyValueStore, keys: Sequence[str], args: Sequence[str]) -> int:
    worker_key = keys[0]
    new_state, at, ttl = args[0], float(args[1]), int(args[2])
    stale_threshold = float(args[3]) if len(args) > 3 and args[3] != "" else None

    if not store.exists(worker_key):
        return -1

    existing = store.hgetall(worker_key)
    previous = existing.get("state")
    if stale_threshold is not None:
        last_heartbeat = _num(existing, "last_heartbeat", at)
        if previous not in _ACTIVE_BUCKETS or at - last_heartbeat <= stale_threshold:
            return -2
    buckets = _accumulate(existing, at)

    jobs_processed = int(_num(existing, "jobs_processed", 0))
    if previous == "busy" and new_state == "idle":
        jobs_processed += 1

    last_state_change = _num(existing, "last_state_change", at)
    if previous != new_state:
        last_state_change = at

    update = {
        "state": new_state,
        "accounted_at": at,
        "last_state_change": last_state_change,
        "idle_time_seconds": buckets["idle_time_seconds"],
        "busy_time_seconds": buckets["busy_time_seconds"],
        "jobs_processed": jobs_processed,
    }
    if new_state != "busy":
        update["current_job_id"] = ""
        update["current_job_class"] = ""
    store.hset(worker_key, update)
    store.expire(worker_key, ttl)
    return jobs_processed


UPDATE_HEARTBEAT = StoreScript("update_worker_heartbeat", UPDATE_HEARTBEAT_LUA, _update_heartbeat)
TRANSITION_STATE = StoreScript("transition_worker_state", TRANSITION_STATE_LUA, _transition_state)

from .heartbeat import WorkerHeartbeatTracker
from .identity import derive_worker_id

__all__ = ["WorkerHeartbeatTracker", "derive_worker_id"]

"""Key layout and retention tiers."""

from __future__ import annotations

from typing import Dict

from ..domain.errors import ConfigurationError
from ..domain.identity import JobIdentity

RAW = "raw"
AGGREGATED = "aggregated"
BASELINE = "baseline"

DEFAULT_TTLS: Dict[str, int] = {
    RAW: 3600,
    AGGREGATED: 604800,
    BASELINE: 2592000,
}


class MetricsKeyBuilder:
    """Builds ``prefix:kind:segment...`` keys and resolves TTL tiers.

    Attributes:
        prefix: Prefijo común de todas las claves
        ttls: TTL en segundos por tier (raw / aggregated / baseline)
    """

    def __init__(self, prefix: str = "queue_metrics", ttls: Dict[str, int] = None):
        self.prefix = prefix
        self.ttls = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update(ttls)

    @classmethod
    def from_settings(cls, settings) -> "MetricsKeyBuilder":
        return cls(
            prefix=settings.key_prefix,
            ttls={
                RAW: settings.ttl_raw,
                AGGREGATED: settings.ttl_aggregated,
                BASELINE: settings.ttl_baseline,
            },
        )

    def key(self, *segments: str) -> str:
        return ":".join((self.prefix,) + tuple(segments))

    def ttl(self, tier: str) -> int:
        try:
            return self.ttls[tier]
        except KeyError:
            raise ConfigurationError(f"Unknown TTL tier {tier!r}")

    def strip(self, key: str, *segments: str) -> str:
        """Remainder of ``key`` after ``prefix:segments:``."""
        head = self.key(*segments) + ":"
        return key[len(head):] if key.startswith(head) else key

    # job level
    def job_metrics(self, identity: JobIdentity) -> str:
        return self.key("jobs", identity.connection, identity.queue, identity.job_class)

    def durations(self, identity: JobIdentity) -> str:
        return self.key("durations", identity.connection, identity.queue, identity.job_class)

    def memory(self, identity: JobIdentity) -> str:
        return self.key("memory", identity.connection, identity.queue, identity.job_class)

    def cpu(self, identity: JobIdentity) -> str:
        return self.key("cpu", identity.connection, identity.queue, identity.job_class)

    def retries(self, identity: JobIdentity) -> str:
        return self.key("retries", identity.connection, identity.queue, identity.job_class)

    def exceptions(self, identity: JobIdentity) -> str:
        return self.key("exceptions", identity.connection, identity.queue, identity.job_class)

    def queued(self, identity: JobIdentity) -> str:
        return self.key("queued", identity.connection, identity.queue, identity.job_class)

    def server_jobs(self, hostname: str, identity: JobIdentity) -> str:
        return self.key(
            "server_jobs", hostname, identity.connection, identity.queue, identity.job_class
        )

    def in_flight(self, job_id: str) -> str:
        return self.key("job", job_id)

    # queue level
    def queue_snapshot(self, connection: str, queue: str) -> str:
        return self.key("queue_snapshot", connection, queue)

    def queue_snapshots(self, connection: str, queue: str) -> str:
        return self.key("queue_snapshots", connection, queue)

    def throughput_history(self, connection: str, queue: str) -> str:
        return self.key("throughput_history", connection, queue)

    def depth_history(self, connection: str, queue: str) -> str:
        return self.key("queue_depth_history", connection, queue)

    def baseline(self, connection: str, queue: str) -> str:
        return self.key("baseline", connection, queue)

    def job_baseline(self, connection: str, queue: str, job_class: str) -> str:
        return self.key("baseline_job", connection, queue, job_class)

    # discovery
    def discovered_queues(self) -> str:
        return self.key("discovery", "queues")

    def discovered_jobs(self) -> str:
        return self.key("discovery", "jobs")

    # workers
    def worker(self, worker_id: str) -> str:
        return self.key("worker", worker_id)

    def worker_index(self) -> str:
        return self.key("workers", "all")

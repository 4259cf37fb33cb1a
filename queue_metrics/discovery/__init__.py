from .registry import QueueDiscovery

__all__ = ["QueueDiscovery"]

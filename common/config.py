from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv

from queue_metrics.core.domain.errors import ConfigurationError


_TRUE_VALUES = {"1", "true", "yes", "on"}
_DRIVERS = ("redis", "memory")


def _default_env_file() -> str:
    # By default look for a .env next to where the process was started.
    return str(Path.cwd() / ".env")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    enabled: bool = True

    storage_driver: str = "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0
    key_prefix: str = "queue_metrics"

    # Retention tiers (seconds)
    ttl_raw: int = 3600
    ttl_aggregated: int = 604800
    ttl_baseline: int = 2592000

    sample_cap: int = 1000
    exception_max_length: int = 1000

    stale_threshold_seconds: int = 60

    baseline_decay_factor: float = 0.1
    baseline_target_sample_size: int = 200
    baseline_max_samples: int = 1000
    baseline_deviation_enabled: bool = True
    baseline_deviation_threshold: float = 2.0
    baseline_deviation_trigger_minutes: int = 5

    # Recalculation interval (minutes) by confidence band
    baseline_intervals: Dict[str, int] = field(default_factory=lambda: {
        "no_baseline": 1,
        "low_confidence": 5,
        "medium_confidence": 10,
        "high_confidence": 30,
        "very_high_confidence": 60,
    })

    windows: Tuple[int, ...] = (60, 300, 900, 3600, 86400)

    def __post_init__(self) -> None:
        if self.storage_driver not in _DRIVERS:
            raise ConfigurationError(
                f"QUEUE_METRICS_STORAGE must be one of {_DRIVERS}, got {self.storage_driver!r}"
            )
        if not 0.0 <= self.baseline_decay_factor < 1.0:
            raise ConfigurationError(
                f"QUEUE_METRICS_BASELINE_DECAY_FACTOR must be in [0, 1), got {self.baseline_decay_factor}"
            )
        if self.baseline_deviation_threshold <= 0:
            raise ConfigurationError(
                f"QUEUE_METRICS_BASELINE_DEVIATION_THRESHOLD must be > 0, got {self.baseline_deviation_threshold}"
            )
        for name in ("ttl_raw", "ttl_aggregated", "ttl_baseline", "sample_cap", "baseline_target_sample_size"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0")

    def ttl(self, tier: str) -> int:
        """TTL en segundos para un tier de retención (raw/aggregated/baseline)."""
        try:
            return {
                "raw": self.ttl_raw,
                "aggregated": self.ttl_aggregated,
                "baseline": self.ttl_baseline,
            }[tier]
        except KeyError:
            raise ConfigurationError(f"Unknown TTL tier {tier!r}")


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("QUEUE_METRICS_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        enabled=_env_bool("QUEUE_METRICS_ENABLED", True),
        storage_driver=os.getenv("QUEUE_METRICS_STORAGE", "redis").strip().lower(),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        redis_socket_timeout=_env_float("QUEUE_METRICS_REDIS_TIMEOUT", 5.0),
        key_prefix=os.getenv("QUEUE_METRICS_PREFIX", "queue_metrics"),
        ttl_raw=_env_int("QUEUE_METRICS_TTL_RAW", 3600),
        ttl_aggregated=_env_int("QUEUE_METRICS_TTL_AGGREGATED", 604800),
        ttl_baseline=_env_int("QUEUE_METRICS_TTL_BASELINE", 2592000),
        sample_cap=_env_int("QUEUE_METRICS_SAMPLE_CAP", 1000),
        exception_max_length=_env_int("QUEUE_METRICS_EXCEPTION_MAX_LENGTH", 1000),
        stale_threshold_seconds=_env_int("QUEUE_METRICS_STALE_THRESHOLD", 60),
        baseline_decay_factor=_env_float("QUEUE_METRICS_BASELINE_DECAY_FACTOR", 0.1),
        baseline_target_sample_size=_env_int("QUEUE_METRICS_BASELINE_TARGET_SAMPLES", 200),
        baseline_max_samples=_env_int("QUEUE_METRICS_BASELINE_MAX_SAMPLES", 1000),
        baseline_deviation_enabled=_env_bool("QUEUE_METRICS_BASELINE_DEVIATION_ENABLED", True),
        baseline_deviation_threshold=_env_float("QUEUE_METRICS_BASELINE_DEVIATION_THRESHOLD", 2.0),
        baseline_deviation_trigger_minutes=_env_int("QUEUE_METRICS_BASELINE_DEVIATION_TRIGGER", 5),
    )

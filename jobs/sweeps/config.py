"""Sweep runner configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SweepConfig:
    """Configuración del sweep runner."""
    sleep_seconds: float = 60.0
    once: bool = False
    stale_threshold_seconds: Optional[int] = None
    cleanup_older_than_seconds: Optional[int] = None
    skip_baselines: bool = False

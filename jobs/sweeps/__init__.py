"""Sweeps periódicos del motor de métricas.

Modules:
- config: SweepConfig dataclass
- runner: SweepRunner (run_once): agregación por cola, histórico, baselines
  adaptativos, detección de workers caídos y limpieza opcional
- cli: CLI entry point (main)
"""

from .config import SweepConfig
from .runner import SweepResult, SweepRunner
from .cli import main

__all__ = ["SweepConfig", "SweepResult", "SweepRunner", "main"]

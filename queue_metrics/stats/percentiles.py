"""Estadísticos sobre un conjunto acotado de muestras.

- Percentiles por nearest-rank: valor en la posición ceil(p/100 * n) del
  array ordenado ascendente, sin interpolación.
- stddev poblacional (divide por N).
- Lista vacía: todo 0.0. Un único valor: ese valor en avg/min/max/percentiles,
  stddev 0.0.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np


@dataclass(frozen=True)
class SampleSummary:
    count: int = 0
    avg: float = 0.0
    min: float = 0.0
    max: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    stddev: float = 0.0


def _sorted(samples: Iterable[float]) -> np.ndarray:
    return np.sort(np.asarray(list(samples), dtype=float))


def _nearest_rank(ordered: np.ndarray, p: float) -> float:
    n = ordered.shape[0]
    if n == 0:
        return 0.0
    index = max(0, math.ceil(p / 100.0 * n) - 1)
    return float(ordered[min(index, n - 1)])


def percentile(samples: Sequence[float], p: float) -> float:
    if not 0 < p <= 100:
        raise ValueError(f"percentile must be in (0, 100], got {p}")
    return _nearest_rank(_sorted(samples), p)


def summarize(samples: Iterable[float]) -> SampleSummary:
    ordered = _sorted(samples)
    n = ordered.shape[0]
    if n == 0:
        return SampleSummary()

    return SampleSummary(
        count=int(n),
        avg=float(np.mean(ordered)),
        min=float(ordered[0]),
        max=float(ordered[-1]),
        p50=_nearest_rank(ordered, 50),
        p95=_nearest_rank(ordered, 95),
        p99=_nearest_rank(ordered, 99),
        stddev=float(np.std(ordered)) if n > 1 else 0.0,
    )


class PercentileCalculator:
    """Fachada con las funciones de arriba, para inyectar donde hace falta."""

    def percentile(self, samples: Sequence[float], p: float) -> float:
        return percentile(samples, p)

    def summarize(self, samples: Iterable[float]) -> SampleSummary:
        return summarize(samples)

    def mean(self, samples: Sequence[float]) -> float:
        return float(np.mean(samples)) if len(samples) else 0.0

"""Tendencia lineal (mínimos cuadrados) sobre el histórico de una cola."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..core.clock import Clock, SystemClock
from .history import QueueHistoryRecorder

logger = logging.getLogger(__name__)

SLOPE_EPSILON = 0.1

INCREASING = "increasing"
DECREASING = "decreasing"
STABLE = "stable"


@dataclass(frozen=True)
class LinearTrend:
    slope: float = 0.0
    intercept: float = 0.0
    r_squared: float = 0.0

    @property
    def direction(self) -> str:
        if self.slope > SLOPE_EPSILON:
            return INCREASING
        if self.slope < -SLOPE_EPSILON:
            return DECREASING
        return STABLE


@dataclass(frozen=True)
class TrendReport:
    connection: str
    queue: str
    metric: str
    period_seconds: int
    sample_count: int
    current: float
    average: float
    min: float
    max: float
    std_dev: float
    trend: LinearTrend
    forecast: float
    analyzed_at: float


def fit_linear_trend(points: Sequence[Tuple[float, float]]) -> LinearTrend:
    """Ajuste y = slope * (t - t0) + intercept, con t en segundos."""
    if len(points) < 2:
        return LinearTrend()

    t = np.asarray([p[0] for p in points], dtype=float)
    y = np.asarray([p[1] for p in points], dtype=float)
    x = t - t[0]
    if np.allclose(x, x[0]):
        return LinearTrend()

    slope, intercept = np.polyfit(x, y, 1)
    predicted = slope * x + intercept
    ss_total = float(np.sum((y - y.mean()) ** 2))
    ss_residual = float(np.sum((y - predicted) ** 2))
    r_squared = 1.0 - ss_residual / ss_total if ss_total > 0 else 0.0

    return LinearTrend(
        slope=float(slope),
        intercept=float(intercept),
        r_squared=max(0.0, min(1.0, r_squared)),
    )


def forecast_next(points: Sequence[Tuple[float, float]], interval_seconds: int) -> float:
    if not points:
        return 0.0
    if len(points) < 2:
        return float(points[0][1])
    trend = fit_linear_trend(points)
    next_x = points[-1][0] - points[0][0] + interval_seconds
    return max(0.0, trend.slope * next_x + trend.intercept)


class TrendAnalyzer:
    def __init__(self, history: QueueHistoryRecorder, clock: Optional[Clock] = None):
        self._history = history
        self._clock = clock or SystemClock()

    def _report(
        self,
        connection: str,
        queue: str,
        metric: str,
        points: List[Tuple[float, float]],
        period_seconds: int,
        interval_seconds: int,
    ) -> Optional[TrendReport]:
        if not points:
            return None
        values = np.asarray([p[1] for p in points], dtype=float)
        return TrendReport(
            connection=connection,
            queue=queue,
            metric=metric,
            period_seconds=period_seconds,
            sample_count=len(points),
            current=float(values[-1]),
            average=round(float(values.mean()), 2),
            min=float(values.min()),
            max=float(values.max()),
            std_dev=round(float(values.std()), 2),
            trend=fit_linear_trend(points),
            forecast=round(forecast_next(points, interval_seconds), 2),
            analyzed_at=self._clock.now(),
        )

    def analyze_queue_depth_trend(
        self, connection: str, queue: str, period_seconds: int = 3600, interval_seconds: int = 60
    ) -> Optional[TrendReport]:
        """None si no hay histórico en el periodo."""
        points = self._history.get_depth_history(connection, queue, period_seconds)
        return self._report(connection, queue, "depth", points, period_seconds, interval_seconds)

    def analyze_throughput_trend(
        self, connection: str, queue: str, period_seconds: int = 3600, interval_seconds: int = 60
    ) -> Optional[TrendReport]:
        points = self._history.get_throughput_history(connection, queue, period_seconds)
        return self._report(connection, queue, "jobs_processed", points, period_seconds, interval_seconds)

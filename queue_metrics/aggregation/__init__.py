"""Agregación en ventana, snapshots de cola, histórico, salud y tendencias."""

from .health import evaluate, get_health_status, health_score
from .history import NullQueueInspector, QueueHistoryRecorder, QueueInspector
from .job_metrics import JobMetricsCalculator
from .repository import QueueMetricsRepository
from .trends import LinearTrend, TrendAnalyzer, TrendReport, fit_linear_trend
from .windowed import WindowedAggregator

__all__ = [
    "JobMetricsCalculator",
    "LinearTrend",
    "NullQueueInspector",
    "QueueHistoryRecorder",
    "QueueInspector",
    "QueueMetricsRepository",
    "TrendAnalyzer",
    "TrendReport",
    "WindowedAggregator",
    "evaluate",
    "fit_linear_trend",
    "get_health_status",
    "health_score",
]

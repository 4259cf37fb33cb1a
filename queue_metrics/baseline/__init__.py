"""Baselines de coste por job: estimación, persistencia y desviación."""

from .deviation import DeviationDetector, DeviationReport, is_significant_deviation, relative_deviation
from .estimator import BaselineEstimator, blend, confidence_for, is_significant_change
from .repository import BaselineRepository

__all__ = [
    "BaselineEstimator",
    "BaselineRepository",
    "DeviationDetector",
    "DeviationReport",
    "blend",
    "confidence_for",
    "is_significant_change",
    "is_significant_deviation",
    "relative_deviation",
]

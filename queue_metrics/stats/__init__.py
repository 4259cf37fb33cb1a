from .percentiles import PercentileCalculator, SampleSummary, percentile, summarize

__all__ = ["PercentileCalculator", "SampleSummary", "percentile", "summarize"]

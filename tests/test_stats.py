"""Tests de estadísticos por nearest-rank.

Ejecutar:
    pytest tests/test_stats.py -v
"""

import pytest

from queue_metrics.stats.percentiles import PercentileCalculator, SampleSummary, percentile, summarize


class TestSummarize:
    """Resumen de muestras."""

    def test_five_samples(self):
        summary = summarize([50, 10, 40, 20, 30])
        assert summary.count == 5
        assert summary.p50 == 30.0
        assert summary.min == 10.0
        assert summary.max == 50.0
        assert summary.avg == 30.0
        assert summary.p95 == 50.0
        assert summary.p99 == 50.0

    def test_population_stddev(self):
        # [2,4,4,4,5,5,7,9]: stddev poblacional = 2
        assert summarize([2, 4, 4, 4, 5, 5, 7, 9]).stddev == pytest.approx(2.0)

    def test_empty(self):
        assert summarize([]) == SampleSummary()

    def test_single_value(self):
        summary = summarize([42.0])
        assert (summary.avg, summary.min, summary.max) == (42.0, 42.0, 42.0)
        assert (summary.p50, summary.p95, summary.p99) == (42.0, 42.0, 42.0)
        assert summary.stddev == 0.0


class TestPercentile:
    """Nearest-rank sin interpolación."""

    def test_nearest_rank_positions(self):
        samples = list(range(1, 101))
        assert percentile(samples, 50) == 50.0
        assert percentile(samples, 95) == 95.0
        assert percentile(samples, 99) == 99.0
        assert percentile(samples, 100) == 100.0

    def test_no_interpolation(self):
        assert percentile([10, 20], 50) == 10.0
        assert percentile([10, 20, 30, 40], 50) == 20.0

    def test_small_percentile_clamps_to_first(self):
        assert percentile([5, 1, 3], 1) == 1.0

    @pytest.mark.parametrize("p", [0, -5, 101])
    def test_out_of_range(self, p):
        with pytest.raises(ValueError):
            percentile([1, 2, 3], p)

    def test_empty(self):
        assert percentile([], 50) == 0.0

    def test_calculator_facade(self):
        calc = PercentileCalculator()
        assert calc.percentile([10, 20, 30, 40, 50], 50) == 30.0
        assert calc.mean([]) == 0.0
        assert calc.summarize([1.0]).p99 == 1.0

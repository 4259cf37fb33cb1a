"""Tests de baselines: estimación con decay, confianza, desviación e intervalos.

Ejecutar:
    pytest tests/test_baseline.py -v
"""

import pytest

from queue_metrics.baseline.deviation import DeviationDetector, is_significant_deviation, relative_deviation
from queue_metrics.baseline.estimator import (
    aged_confidence,
    blend,
    confidence_for,
    cpu_percent,
    is_significant_change,
)
from queue_metrics.core.domain.baseline import BaselineEstimate
from queue_metrics.core.domain.identity import JobIdentity

A = JobIdentity("redis", "default", "JobA")
B = JobIdentity("redis", "default", "JobB")


def _record(service, identity, count, duration=100.0, memory=10.0, cpu=5.0, prefix="j"):
    for i in range(count):
        service.recorder.record_completion(f"{prefix}-{identity.job_class}-{i}", identity, duration, memory, cpu)


def _estimate(**overrides):
    data = dict(
        connection="redis",
        queue="default",
        cpu_percent_per_job=10.0,
        memory_mb_per_job=50.0,
        avg_duration_ms=1000.0,
        sample_count=100,
        confidence_score=0.5,
        calculated_at=0.0,
    )
    data.update(overrides)
    return BaselineEstimate(**data)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

class TestBaselineMath:
    """Funciones puras del estimador."""

    def test_blend(self):
        assert blend(100.0, 200.0, 0.1) == pytest.approx(190.0)
        assert blend(100.0, 200.0, 0.0) == 200.0

    def test_confidence_monotonic_and_capped(self):
        scores = [confidence_for(n, 200) for n in range(0, 400)]
        assert all(a <= b for a, b in zip(scores, scores[1:]))
        assert confidence_for(50, 200) == 0.25
        assert confidence_for(200, 200) == 1.0
        assert confidence_for(10_000, 200) == 1.0
        assert confidence_for(0, 200) == 0.0

    def test_cpu_percent(self):
        assert cpu_percent(5.0, 100.0) == 5.0
        assert cpu_percent(5.0, 0.0) == 0.0

    def test_aged_confidence_half_life(self):
        baseline = _estimate(confidence_score=0.8, calculated_at=1000.0)
        assert aged_confidence(baseline, 1000.0) == pytest.approx(0.8)
        assert aged_confidence(baseline, 1000.0 + 86400) == pytest.approx(0.4)

    def test_significant_change(self):
        previous = _estimate(avg_duration_ms=100.0)
        assert is_significant_change(previous, _estimate(avg_duration_ms=119.0)) is False
        assert is_significant_change(previous, _estimate(avg_duration_ms=121.0)) is True
        assert is_significant_change(None, previous) is False


class TestBaselineEstimate:
    """Fiabilidad y capacidad."""

    def test_reliability_bar(self):
        assert _estimate(sample_count=50, confidence_score=0.7).is_reliable() is True
        assert _estimate(sample_count=49, confidence_score=0.9).is_reliable() is False
        assert _estimate(sample_count=500, confidence_score=0.69).is_reliable() is False

    def test_capacity(self):
        baseline = _estimate(cpu_percent_per_job=10.0, memory_mb_per_job=50.0, avg_duration_ms=1000.0)
        # min(100/10, 200/50) = 4 en paralelo, 3600 jobs/h cada uno
        assert baseline.estimate_capacity(100.0, 200.0) == 14400

    @pytest.mark.parametrize("overrides,cpu,mem", [
        ({"cpu_percent_per_job": 0.0}, 100.0, 200.0),
        ({"avg_duration_ms": 0.0}, 100.0, 200.0),
        ({}, 0.0, 200.0),
        ({}, 100.0, -1.0),
    ])
    def test_capacity_degenerate(self, overrides, cpu, mem):
        assert _estimate(**overrides).estimate_capacity(cpu, mem) == 0

    def test_hash_roundtrip_keeps_job_class(self):
        baseline = _estimate(job_class="JobA")
        assert BaselineEstimate.from_hash(baseline.to_hash()) == baseline
        assert BaselineEstimate.from_hash(_estimate().to_hash()).job_class is None


# =============================================================================
# ESTIMATOR
# =============================================================================

class TestBaselineEstimator:
    """Cálculo por job class y agregado por cola."""

    def test_first_estimate_uses_observation(self, service, clock):
        _record(service, A, 50)
        baseline = service.estimator.calculate_for_queue("redis", "default")

        assert baseline.avg_duration_ms == pytest.approx(100.0)
        assert baseline.memory_mb_per_job == pytest.approx(10.0)
        assert baseline.cpu_percent_per_job == pytest.approx(5.0)
        assert baseline.sample_count == 50
        assert baseline.confidence_score == pytest.approx(0.25)
        assert baseline.calculated_at == clock.now()
        assert baseline.job_class is None
        assert service.baselines.get_baseline("redis", "default") == baseline

    def test_decay_blend_with_previous(self, service):
        service.baselines.store(_estimate(
            job_class="JobA", avg_duration_ms=100.0, memory_mb_per_job=10.0, cpu_percent_per_job=5.0,
        ))
        _record(service, A, 20, duration=200.0, memory=20.0, cpu=10.0)

        job_baseline = service.estimator.calculate_for_job_class(A)
        assert job_baseline.avg_duration_ms == pytest.approx(190.0)
        assert job_baseline.memory_mb_per_job == pytest.approx(19.0)
        assert job_baseline.cpu_percent_per_job == pytest.approx(0.1 * 5.0 + 0.9 * 5.0)

        queue_baseline = service.estimator.calculate_for_queue("redis", "default")
        assert queue_baseline.avg_duration_ms == pytest.approx(190.0)
        assert service.baselines.get_job_class_baseline("redis", "default", "JobA").avg_duration_ms == pytest.approx(190.0)

    def test_queue_baseline_is_sample_weighted(self, service):
        _record(service, A, 30, duration=100.0)
        _record(service, B, 10, duration=300.0)

        baseline = service.estimator.calculate_for_queue("redis", "default")

        assert baseline.avg_duration_ms == pytest.approx((30 * 100 + 10 * 300) / 40)
        assert baseline.sample_count == 40
        assert baseline.confidence_score == pytest.approx(0.2)
        classes = service.baselines.get_job_class_baselines("redis", "default")
        assert [b.job_class for b in classes] == ["JobA", "JobB"]

    def test_no_samples_is_none(self, service):
        service.discovery.mark_job_discovered("redis", "default", "JobA")
        assert service.estimator.calculate_for_queue("redis", "default") is None
        assert service.baselines.get_baseline("redis", "default") is None

    def test_persist_false(self, service):
        _record(service, A, 5)
        assert service.estimator.calculate_for_queue("redis", "default", persist=False) is not None
        assert service.baselines.get_baseline("redis", "default") is None

    def test_max_samples_window(self, service, clock):
        service.estimator.max_samples = 10
        for i in range(20):
            clock.advance(1)
            service.recorder.record_completion(f"j{i}", A, 100.0 if i < 10 else 300.0, 1.0)
        assert service.estimator.observe(A).avg_duration_ms == pytest.approx(300.0)

    def test_calculate_all(self, service):
        _record(service, A, 10)
        service.discovery.mark_discovered("redis", "idle")

        summary = service.estimator.calculate_all()
        assert summary["queues_processed"] == 2
        assert summary["baselines_calculated"] == 1
        assert summary["significant_changes"] == 0
        assert summary["avg_confidence"] == pytest.approx(0.05)

        _record(service, A, 10, duration=1000.0, prefix="slow")
        assert service.estimator.calculate_all()["significant_changes"] == 1


class TestBaselineRepository:
    """Persistencia y TTL."""

    def test_has_recent_baseline(self, service, clock):
        service.baselines.store(_estimate(calculated_at=clock.now()))
        assert service.baselines.has_recent_baseline("redis", "default", 60) is True
        clock.advance(120)
        assert service.baselines.has_recent_baseline("redis", "default", 60) is False

    def test_baseline_ttl(self, service, clock):
        service.baselines.store(_estimate(calculated_at=clock.now()))
        clock.advance(2592001)
        assert service.baselines.get_baseline("redis", "default") is None

    def test_delete_removes_job_classes(self, service):
        service.baselines.store(_estimate())
        service.baselines.store(_estimate(job_class="JobA"))
        assert service.baselines.delete("redis", "default") == 2
        assert service.baselines.get_job_class_baselines("redis", "default") == []

    def test_cleanup(self, service, clock):
        service.baselines.store(_estimate(calculated_at=clock.now() - 1000))
        service.baselines.store(_estimate(queue="fresh", calculated_at=clock.now()))
        assert service.baselines.cleanup(500) == 1
        assert service.baselines.get_baseline("redis", "fresh") is not None


# =============================================================================
# DEVIATION
# =============================================================================

class TestDeviation:
    """Desviación relativa y frecuencia de recálculo."""

    def test_relative_rule(self):
        assert relative_deviation(300.0, 100.0) == pytest.approx(2.0)
        assert is_significant_deviation(300.0, 100.0, 2.0) is True
        assert is_significant_deviation(299.0, 100.0, 2.0) is False

    def test_zero_baseline_never_deviates(self):
        assert relative_deviation(1000.0, 0.0) is None
        assert is_significant_deviation(1000.0, 0.0, 2.0) is False

    def test_detects_duration_spike(self, service, clock):
        _record(service, A, 100, duration=100.0, memory=10.0, cpu=10.0)
        service.estimator.calculate_for_queue("redis", "default")
        clock.advance(10)
        _record(service, A, 100, duration=400.0, memory=10.0, cpu=40.0, prefix="slow")

        report = service.deviation.detect("redis", "default")

        assert report.has_deviation is True
        assert report.metric == "avg_duration_ms"
        assert report.deviation == pytest.approx(3.0)
        assert service.deviation.should_recalculate("redis", "default") is True

    def test_no_deviation_within_threshold(self, service):
        _record(service, A, 100, duration=100.0)
        service.estimator.calculate_for_queue("redis", "default")
        report = service.deviation.detect("redis", "default")
        assert report.has_deviation is False

    def test_disabled(self, service, clock):
        detector = DeviationDetector(service.jobs, service.discovery, service.baselines, clock, enabled=False)
        _record(service, A, 10)
        service.estimator.calculate_for_queue("redis", "default")
        _record(service, A, 100, duration=10000.0, prefix="slow")
        assert detector.detect("redis", "default").has_deviation is False

    @pytest.mark.parametrize("confidence,minutes", [
        (0.0, 5), (0.49, 5), (0.5, 10), (0.69, 10), (0.7, 30), (0.89, 30), (0.9, 60), (1.0, 60),
    ])
    def test_interval_bands(self, service, confidence, minutes):
        assert service.deviation.interval_for_confidence(confidence) == minutes

    def test_recommended_interval(self, service, clock):
        assert service.deviation.recommended_interval_minutes("redis", "default") == 1

        _record(service, A, 150)
        service.estimator.calculate_for_queue("redis", "default")
        # confianza 0.75
        assert service.deviation.recommended_interval_minutes("redis", "default") == 30

        clock.advance(10)
        _record(service, A, 100, duration=1000.0, prefix="slow")
        assert service.deviation.recommended_interval_minutes("redis", "default") == 5

    def test_recommended_interval_decays_with_age(self, service, clock):
        _record(service, A, 150)
        service.estimator.calculate_for_queue("redis", "default")
        clock.advance(86400)
        # Muestras expiradas; confianza 0.75 -> 0.375 tras un día
        assert service.deviation.recommended_interval_minutes("redis", "default") == 5

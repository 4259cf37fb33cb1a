"""Tests de la máquina de estados de workers.

Ejecutar:
    pytest tests/test_workers.py -v
"""

import pytest

from queue_metrics.core.domain.errors import InvalidMetricsInput
from queue_metrics.core.domain.worker import WorkerState
from queue_metrics.workers.identity import derive_worker_id


# =============================================================================
# TIME ACCOUNTING
# =============================================================================

class TestTimeAccounting:
    """El tiempo transcurrido va al bucket del estado anterior."""

    def test_idle_busy_idle(self, service, clock):
        workers = service.workers
        workers.record_heartbeat("w1", "redis", "default", "idle")

        clock.advance(10)
        workers.record_heartbeat("w1", "redis", "default", "busy", current_job_id="job-1", current_job_class="X")
        worker = workers.get_worker("w1")
        assert worker.idle_time_seconds == pytest.approx(10.0)
        assert worker.busy_time_seconds == 0.0
        assert worker.jobs_processed == 0
        assert worker.current_job_id == "job-1"

        clock.advance(5)
        processed = workers.record_heartbeat("w1", "redis", "default", "idle")
        worker = workers.get_worker("w1")
        assert processed == 1
        assert worker.idle_time_seconds == pytest.approx(10.0)
        assert worker.busy_time_seconds == pytest.approx(5.0)
        assert worker.jobs_processed == 1
        assert worker.current_job_id is None
        assert worker.utilization == pytest.approx(5 / 15)

    def test_busy_to_idle_with_job_attached_does_not_count(self, service, clock):
        workers = service.workers
        workers.record_heartbeat("w1", "redis", "default", "busy", current_job_id="job-1")
        clock.advance(3)
        assert workers.record_heartbeat("w1", "redis", "default", "idle", current_job_id="job-2") == 0

    def test_last_state_change(self, service, clock):
        workers = service.workers
        workers.record_heartbeat("w1", "redis", "default", "idle")
        start = clock.now()
        clock.advance(30)
        workers.record_heartbeat("w1", "redis", "default", "idle")
        worker = workers.get_worker("w1")
        assert worker.last_state_change == start
        assert worker.last_heartbeat == clock.now()

    def test_transition_then_heartbeat_no_double_count(self, service, clock):
        workers = service.workers
        workers.record_heartbeat("w1", "redis", "default", "busy", current_job_id="job-1")
        clock.advance(7)
        assert workers.transition_state("w1", "idle") is True

        worker = workers.get_worker("w1")
        assert worker.busy_time_seconds == pytest.approx(7.0)
        assert worker.jobs_processed == 1
        assert worker.current_job_id is None

        clock.advance(3)
        workers.record_heartbeat("w1", "redis", "default", "idle")
        worker = workers.get_worker("w1")
        assert worker.idle_time_seconds == pytest.approx(3.0)
        assert worker.busy_time_seconds == pytest.approx(7.0)
        assert worker.jobs_processed == 1

    def test_peak_memory(self, service):
        workers = service.workers
        workers.record_heartbeat("w1", "redis", "default", "idle", memory_usage_mb=64.0)
        workers.record_heartbeat("w1", "redis", "default", "idle", memory_usage_mb=32.0)
        worker = workers.get_worker("w1")
        assert worker.memory_usage_mb == 32.0
        assert worker.peak_memory_usage_mb == 64.0


# =============================================================================
# STATES
# =============================================================================

class TestStates:
    """Transiciones y consultas por estado."""

    def test_transition_missing_worker(self, service):
        assert service.workers.transition_state("ghost", "idle") is False
        assert service.workers.get_worker("ghost") is None

    def test_invalid_state(self, service):
        with pytest.raises(InvalidMetricsInput):
            service.workers.record_heartbeat("w1", "redis", "default", "sleeping")

    def test_invalid_worker_id(self, service):
        with pytest.raises(InvalidMetricsInput):
            service.workers.record_heartbeat("", "redis", "default", "idle")

    def test_mark_stopped(self, service):
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        assert service.workers.mark_stopped("w1") is True
        assert service.workers.get_worker("w1").state is WorkerState.STOPPED
        assert service.workers.get_active_workers() == []

    def test_active_workers_by_queue(self, service):
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        service.workers.record_heartbeat("w2", "redis", "default", "busy")
        service.workers.record_heartbeat("w3", "redis", "emails", "idle")

        assert {w.worker_id for w in service.workers.get_active_workers()} == {"w1", "w2", "w3"}
        assert {w.worker_id for w in service.workers.get_active_workers("redis", "default")} == {"w1", "w2"}
        assert [w.worker_id for w in service.workers.get_workers_by_state("busy")] == ["w2"]

    def test_remove_worker(self, service):
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        service.workers.remove_worker("w1")
        assert service.workers.get_worker("w1") is None
        assert service.workers.get_active_workers() == []


# =============================================================================
# STALENESS
# =============================================================================

class TestStaleDetection:
    """Workers sin heartbeat pasan a crashed una sola vez."""

    def test_detect_is_idempotent(self, service, clock):
        service.workers.record_heartbeat("w1", "redis", "default", "busy", current_job_id="job-1")
        service.workers.record_heartbeat("w2", "redis", "default", "idle")
        clock.advance(61)
        service.workers.record_heartbeat("w2", "redis", "default", "idle")

        assert service.workers.detect_staled_workers(60) == 1
        assert service.workers.detect_staled_workers(60) == 0

        crashed = service.workers.get_worker("w1")
        assert crashed.state is WorkerState.CRASHED
        assert crashed.busy_time_seconds == pytest.approx(61.0)
        assert service.workers.get_worker("w2").state is WorkerState.IDLE

    def test_threshold_is_strict(self, service, clock):
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        clock.advance(60)
        assert service.workers.detect_staled_workers(60) == 0
        clock.advance(1)
        assert service.workers.detect_staled_workers(60) == 1

    def test_default_threshold_from_settings(self, service, clock):
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        clock.advance(service.settings.stale_threshold_seconds + 1)
        assert service.workers.detect_staled_workers() == 1

    def test_stopped_workers_are_not_crashed(self, service, clock):
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        service.workers.mark_stopped("w1")
        clock.advance(120)
        assert service.workers.detect_staled_workers(60) == 0

    def test_heartbeat_revives_crashed_worker(self, service, clock):
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        clock.advance(61)
        service.workers.detect_staled_workers(60)
        service.workers.record_heartbeat("w1", "redis", "default", "idle")
        assert service.workers.get_worker("w1").state is WorkerState.IDLE

    def test_heartbeat_between_read_and_transition_wins(self, service, clock, monkeypatch):
        """Un heartbeat que llega tras la lectura no se pisa con crashed."""
        workers = service.workers
        workers.record_heartbeat("w1", "redis", "default", "busy", current_job_id="job-1")
        clock.advance(61)
        read_worker = workers.get_worker

        def read_then_heartbeat(worker_id):
            worker = read_worker(worker_id)
            workers.record_heartbeat(worker_id, "redis", "default", "busy", current_job_id="job-2")
            return worker

        monkeypatch.setattr(workers, "get_worker", read_then_heartbeat)
        assert workers.detect_staled_workers(60) == 0
        monkeypatch.undo()

        worker = workers.get_worker("w1")
        assert worker.state is WorkerState.BUSY
        assert worker.last_heartbeat == clock.now()
        assert worker.current_job_id == "job-2"

    def test_guarded_transition_requires_stale_active_worker(self, service, clock):
        workers = service.workers
        workers.record_heartbeat("w1", "redis", "default", "idle")
        clock.advance(30)
        assert workers.transition_state("w1", "crashed", stale_threshold_seconds=60) is False
        assert workers.get_worker("w1").state is WorkerState.IDLE

        workers.mark_stopped("w1")
        clock.advance(120)
        assert workers.transition_state("w1", "crashed", stale_threshold_seconds=60) is False
        assert workers.get_worker("w1").state is WorkerState.STOPPED

    def test_cleanup(self, service, clock):
        service.workers.record_heartbeat("old", "redis", "default", "idle")
        clock.advance(1000)
        service.workers.record_heartbeat("new", "redis", "default", "idle")
        assert service.workers.cleanup(500) == 1
        assert service.workers.get_worker("old") is None
        assert service.workers.get_worker("new") is not None


# =============================================================================
# IDENTITY
# =============================================================================

class TestWorkerIdentity:
    def test_plain(self):
        assert derive_worker_id("web-01", 4242) == "worker_web-01_4242"

    def test_supervised(self):
        assert derive_worker_id("web-01", 4242, supervisor="emails") == "worker_emails_web-01_4242"

    def test_unsafe_characters(self):
        assert derive_worker_id("my host:1", 7) == "worker_my-host-1_7"

    def test_defaults_to_current_process(self):
        worker_id = derive_worker_id()
        assert worker_id.startswith("worker_")
        assert worker_id.split("_")[-1].isdigit()

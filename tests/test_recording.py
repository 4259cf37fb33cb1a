"""Tests de registro de eventos de jobs, discovery y hooks.

Ejecutar:
    pytest tests/test_recording.py -v
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from queue_metrics.core.domain.errors import InvalidMetricsInput
from queue_metrics.core.domain.identity import JobIdentity, QueueRef
from queue_metrics.recording.hooks import AFTER_RECORD, BEFORE_RECORD, HookRegistry
from queue_metrics.recording.recorder import SampleRecorder, sample_member, sample_value


# =============================================================================
# SAMPLE MEMBERS
# =============================================================================

class TestSampleMembers:
    """El valor es siempre el último segmento del miembro."""

    def test_value_parsed_from_last_segment(self):
        member = sample_member("job:with:colons", 1700000000.5, 120.25)
        assert sample_value(member) == 120.25

    def test_unparseable_member(self):
        assert sample_value("garbage") is None
        assert sample_value("a:b:not-a-number") is None


# =============================================================================
# DISCOVERY
# =============================================================================

class TestDiscovery:
    """Registro de tuplas conocidas."""

    def test_mark_is_idempotent(self, service):
        for _ in range(10):
            service.discovery.mark_discovered("redis", "default")
        assert service.discovery.list_queues() == [QueueRef("redis", "default")]

    def test_job_discovery_marks_queue(self, service):
        service.discovery.mark_job_discovered("redis", "emails", "SendEmail")
        assert service.discovery.list_queues() == [QueueRef("redis", "emails")]
        assert service.discovery.list_jobs() == [JobIdentity("redis", "emails", "SendEmail")]

    def test_listing_is_sorted(self, service):
        service.discovery.mark_discovered("sqs", "b")
        service.discovery.mark_discovered("redis", "z")
        service.discovery.mark_discovered("redis", "a")
        refs = service.discovery.list_queues()
        assert [(r.connection, r.queue) for r in refs] == [("redis", "a"), ("redis", "z"), ("sqs", "b")]

    def test_stale_members_are_pruned(self, service, clock):
        service.discovery.mark_discovered("redis", "old")
        clock.advance(service.discovery.ttl - 10)
        service.discovery.mark_discovered("redis", "fresh")
        clock.advance(20)
        assert service.discovery.list_queues() == [QueueRef("redis", "fresh")]

    def test_jobs_for_queue(self, service):
        service.discovery.mark_job_discovered("redis", "default", "A")
        service.discovery.mark_job_discovered("redis", "default", "B")
        service.discovery.mark_job_discovered("redis", "other", "C")
        jobs = service.discovery.jobs_for_queue("redis", "default")
        assert [j.job_class for j in jobs] == ["A", "B"]

    def test_forget_queue_drops_its_jobs(self, service):
        service.discovery.mark_job_discovered("redis", "default", "A")
        service.discovery.mark_job_discovered("redis", "other", "C")
        service.discovery.forget_queue("redis", "default")
        assert service.discovery.list_queues() == [QueueRef("redis", "other")]
        assert [j.job_class for j in service.discovery.list_jobs()] == ["C"]

    def test_separator_rejected(self, service):
        with pytest.raises(InvalidMetricsInput):
            service.discovery.mark_discovered("redis:bad", "default")

    def test_late_event_keeps_tuple_listed(self, service, identity, clock):
        """Un evento reentregado con timestamp antiguo no saca la cola del registro."""
        service.recorder.record_completion("j1", identity, 100.0, 1.0)
        service.recorder.record_failure("j0", identity, "boom", failed_at=clock.now() - 8 * 86400)

        assert service.discovery.list_queues() == [identity.queue_ref]
        assert service.discovery.list_jobs() == [identity]

    def test_old_event_is_discovered_at_record_time(self, service, identity, clock):
        service.recorder.record_completion("j1", identity, 100.0, 1.0, completed_at=clock.now() - 8 * 86400)

        assert service.jobs.get_metrics(identity).total_processed == 1
        assert service.discovery.list_jobs() == [identity]


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestRecorderLifecycle:
    """start / completion / failure."""

    def test_start_creates_in_flight_marker(self, service, identity, clock):
        service.recorder.record_start("job-1", identity)

        in_flight = service.jobs.get_in_flight("job-1")
        assert in_flight is not None
        assert in_flight.identity == identity
        assert in_flight.started_at == clock.now()
        assert service.jobs.get_metrics(identity).total_started == 1
        assert service.discovery.list_jobs() == [identity]

    def test_completion_updates_everything_together(self, service, identity, clock):
        service.recorder.record_start("job-1", identity)
        service.recorder.record_completion("job-1", identity, 120.0, 16.0, 30.0)

        metrics = service.jobs.get_metrics(identity)
        assert metrics.total_processed == 1
        assert metrics.total_duration_ms == 120.0
        assert metrics.total_memory_mb == 16.0
        assert metrics.total_cpu_time_ms == 30.0
        assert metrics.last_processed_at == clock.now()
        assert service.jobs.get_duration_samples(identity) == [120.0]
        assert service.jobs.get_memory_samples(identity) == [16.0]
        assert service.jobs.get_cpu_time_samples(identity) == [30.0]
        assert service.jobs.get_in_flight("job-1") is None

    def test_completion_without_start(self, service, identity):
        service.recorder.record_completion("job-x", identity, 50.0, 1.0)
        assert service.jobs.get_metrics(identity).total_processed == 1

    def test_failure(self, service, identity, clock):
        service.recorder.record_start("job-1", identity)
        service.recorder.record_failure("job-1", identity, "RuntimeException: boom")

        metrics = service.jobs.get_metrics(identity)
        assert metrics.total_failed == 1
        assert metrics.last_failed_at == clock.now()
        assert metrics.last_exception == "RuntimeException: boom"
        assert service.jobs.get_in_flight("job-1") is None
        # Un fallo no agrega muestras de duración
        assert service.jobs.get_duration_samples(identity) == []

    def test_exception_text_truncated(self, service, identity):
        service.recorder.record_failure("job-1", identity, "x" * 5000)
        assert len(service.jobs.get_metrics(identity).last_exception) == 1000

    def test_samples_are_chronological(self, service, identity, clock):
        for duration in (30.0, 10.0, 20.0):
            clock.advance(1)
            service.recorder.record_completion(f"job-{duration}", identity, duration, 1.0)
        assert service.jobs.get_duration_samples(identity) == [30.0, 10.0, 20.0]
        assert service.jobs.get_duration_samples(identity, limit=2) == [10.0, 20.0]

    def test_samples_since(self, service, identity, clock):
        service.recorder.record_completion("old", identity, 10.0, 1.0)
        clock.advance(100)
        service.recorder.record_completion("new", identity, 20.0, 1.0)
        assert service.jobs.get_duration_samples_since(identity, clock.now() - 60) == [20.0]

    def test_aggregate_gets_aggregated_ttl(self, service, identity, clock):
        service.recorder.record_completion("job-1", identity, 10.0, 1.0)
        clock.advance(3601)
        # Muestras (raw) expiradas, agregado (aggregated) vivo
        assert service.jobs.get_duration_samples(identity) == []
        assert service.jobs.get_metrics(identity).total_processed == 1
        clock.advance(604800)
        assert service.jobs.get_metrics(identity) is None

    def test_missing_metrics_is_none(self, service, identity):
        assert service.jobs.get_metrics(identity) is None


class TestRecorderValidation:
    """Entradas inválidas se rechazan antes de escribir nada."""

    @pytest.mark.parametrize("duration", [-1.0, float("nan"), float("inf")])
    def test_invalid_duration(self, service, identity, duration):
        with pytest.raises(InvalidMetricsInput):
            service.recorder.record_completion("job-1", identity, duration, 1.0)
        assert service.jobs.get_metrics(identity) is None
        assert service.discovery.list_queues() == []

    def test_empty_job_id(self, service, identity):
        with pytest.raises(InvalidMetricsInput):
            service.recorder.record_start("  ", identity)

    def test_empty_job_class(self):
        with pytest.raises(InvalidMetricsInput):
            JobIdentity("redis", "default", "")

    def test_non_numeric_memory(self, service, identity):
        with pytest.raises(InvalidMetricsInput):
            service.recorder.record_completion("job-1", identity, 10.0, "12")


class TestSampleCap:
    """Las series quedan acotadas a las N muestras más recientes."""

    def test_oldest_samples_trimmed(self, store, keys, clock, service, identity):
        recorder = SampleRecorder(store, keys, service.discovery, clock, sample_cap=5)
        for i in range(8):
            clock.advance(1)
            recorder.record_completion(f"job-{i}", identity, float(i), 1.0)

        assert store.zcard(keys.durations(identity)) == 5
        assert service.jobs.get_duration_samples(identity) == [3.0, 4.0, 5.0, 6.0, 7.0]
        assert service.jobs.get_metrics(identity).total_processed == 8


class TestConcurrentCompletions:
    """Sin actualizaciones perdidas bajo concurrencia."""

    def test_thousand_concurrent_completions(self, service, identity, store, keys):
        def complete(i):
            service.recorder.record_completion(f"job-{i}", identity, 100.0, 10.0, 5.0)

        with ThreadPoolExecutor(max_workers=16) as pool:
            list(pool.map(complete, range(1000)))

        metrics = service.jobs.get_metrics(identity)
        assert metrics.total_processed == 1000
        assert metrics.total_duration_ms == pytest.approx(100000.0)
        assert store.zcard(keys.durations(identity)) == 1000


# =============================================================================
# AUXILIARY EVENTS
# =============================================================================

class TestAuxiliaryEvents:
    """Retries, timeouts, excepciones, encolados y agregados por hostname."""

    def test_retry_events(self, service, identity):
        service.recorder.record_retry_requested("job-1", identity, attempt=1)
        service.recorder.record_retry_requested("job-1", identity, attempt=2)

        assert service.jobs.get_metrics(identity).total_retries == 2
        events = service.jobs.get_retry_events(identity)
        assert [e["attempt"] for e in events] == [1, 2]

    def test_timeout(self, service, identity, clock):
        service.recorder.record_timeout("job-1", identity)
        metrics = service.jobs.get_metrics(identity)
        assert metrics.total_timeouts == 1
        assert metrics.last_timeout_at == clock.now()

    def test_exception_counts_sorted(self, service, identity):
        for cls in ("TimeoutException", "ModelNotFound", "TimeoutException"):
            service.recorder.record_exception("job-1", identity, cls, "msg")
        assert service.jobs.get_exception_counts(identity) == {"TimeoutException": 2, "ModelNotFound": 1}
        assert service.jobs.get_metrics(identity).total_exceptions == 3

    def test_queued_count_in_window(self, service, identity, clock):
        service.recorder.record_queued(identity, queued_at=clock.now() - 120, job_id="old")
        service.recorder.record_queued(identity, job_id="a")
        service.recorder.record_queued(identity, job_id="b")
        assert service.jobs.get_queued_count(identity, 60) == 2

    def test_queued_without_job_id_same_timestamp(self, service, identity, clock):
        """Encolados sin job_id en el mismo segundo cuentan por separado."""
        for _ in range(5):
            service.recorder.record_queued(identity, queued_at=clock.now())
        assert service.jobs.get_queued_count(identity, 60) == 5

    def test_hostname_metrics(self, service, identity):
        service.recorder.record_completion("j1", identity, 100.0, 1.0, hostname="worker-01")
        service.recorder.record_completion("j2", identity, 300.0, 1.0, hostname="worker-01")
        service.recorder.record_failure("j3", identity, "boom", hostname="worker-01")
        service.recorder.record_completion("j4", identity, 50.0, 1.0, hostname="worker-02")

        metrics = service.jobs.get_hostname_job_metrics("worker-01")
        assert metrics[identity] == {
            "total_processed": 2,
            "total_failed": 1,
            "total_duration_ms": 400.0,
            "failure_rate": 33.33,
            "avg_duration_ms": 200.0,
        }


class TestJobCleanup:
    def test_cleanup_removes_idle_tuples(self, service, identity, clock):
        other = JobIdentity("redis", "default", "Other")
        service.recorder.record_completion("j1", identity, 10.0, 1.0)
        clock.advance(1000)
        service.recorder.record_completion("j2", other, 10.0, 1.0)

        assert service.jobs.cleanup(500) == 1
        assert service.jobs.get_metrics(identity) is None
        assert service.jobs.get_metrics(other) is not None
        assert service.discovery.list_jobs() == [other]

    @pytest.mark.parametrize("event", ["start", "timeout", "retry", "exception"])
    def test_cleanup_counts_any_event_as_activity(self, service, identity, clock, event):
        record = {
            "start": lambda: service.recorder.record_start("j1", identity),
            "timeout": lambda: service.recorder.record_timeout("j1", identity),
            "retry": lambda: service.recorder.record_retry_requested("j1", identity, attempt=1),
            "exception": lambda: service.recorder.record_exception("j1", identity, "RuntimeError"),
        }[event]
        record()
        assert service.jobs.get_metrics(identity).last_activity_at == clock.now()

        clock.advance(2 * 86400)
        assert service.jobs.cleanup(86400) == 1
        assert service.jobs.get_metrics(identity) is None


# =============================================================================
# HOOKS
# =============================================================================

class TestHooks:
    """Transformaciones ordenadas antes/después de persistir."""

    def test_priority_order_is_stable(self):
        registry = HookRegistry()
        calls = []

        def make(name):
            def hook(data):
                calls.append(name)
                return data
            return hook

        registry.register(BEFORE_RECORD, make("late"), priority=200)
        registry.register(BEFORE_RECORD, make("first"), priority=10)
        registry.register(BEFORE_RECORD, make("second"), priority=10)
        registry.run(BEFORE_RECORD, {})

        assert calls == ["first", "second", "late"]

    def test_unknown_context(self):
        with pytest.raises(ValueError):
            HookRegistry().register("during_record", lambda d: d)

    def test_hook_must_return_dict(self):
        registry = HookRegistry()
        registry.register(BEFORE_RECORD, lambda d: None)
        with pytest.raises(TypeError):
            registry.run(BEFORE_RECORD, {"a": 1})

    def test_before_record_rewrites_sample(self, service, identity):
        service.hooks.register(BEFORE_RECORD, lambda d: dict(d, duration_ms=d["duration_ms"] * 2))
        service.recorder.record_completion("job-1", identity, 50.0, 1.0)
        assert service.jobs.get_duration_samples(identity) == [100.0]

    def test_hook_output_is_validated(self, service, identity):
        service.hooks.register(BEFORE_RECORD, lambda d: dict(d, duration_ms=-5))
        with pytest.raises(InvalidMetricsInput):
            service.recorder.record_completion("job-1", identity, 50.0, 1.0)
        assert service.jobs.get_metrics(identity) is None

    def test_after_record_sees_final_data(self, service, identity):
        seen = []
        service.hooks.register(AFTER_RECORD, lambda d: seen.append(d["duration_ms"]) or d)
        service.recorder.record_completion("job-1", identity, 42.0, 1.0)
        assert seen == [42.0]

    def test_after_record_failure_does_not_fail_write(self, service, identity):
        def broken(data):
            raise RuntimeError("exporter down")

        service.hooks.register(AFTER_RECORD, broken)
        service.recorder.record_completion("job-1", identity, 42.0, 1.0)
        assert service.jobs.get_metrics(identity).total_processed == 1

    def test_ingestor_reports_success_when_after_hook_fails(self, service, completed_payload):
        def broken(data):
            raise RuntimeError("exporter down")

        service.hooks.register(AFTER_RECORD, broken)
        assert service.ingestor.job_completed(completed_payload) is True

"""Frontera con el sistema de jobs.

Recibe dicts crudos (o payloads ya validados), los valida con pydantic y llama
al recorder / tracker. Un fallo de métricas nunca debe marcar un job como
fallido: todo error se registra en log y se devuelve False.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Type, Union

from pydantic import BaseModel

from ..workers.heartbeat import WorkerHeartbeatTracker
from .payloads import (
    HeartbeatPayload,
    JobCompletedPayload,
    JobExceptionPayload,
    JobFailedPayload,
    JobRetryPayload,
    JobStartedPayload,
    JobTimeoutPayload,
    validate_payload,
)
from .recorder import SampleRecorder

logger = logging.getLogger(__name__)

Raw = Union[dict, BaseModel]


class MetricsIngestor:
    def __init__(
        self,
        recorder: SampleRecorder,
        workers: Optional[WorkerHeartbeatTracker] = None,
        enabled: bool = True,
    ):
        self._recorder = recorder
        self._workers = workers
        self.enabled = enabled

    def _dispatch(self, event: str, model: Type[BaseModel], data: Raw, action: Callable[[Any], Any]) -> bool:
        if not self.enabled:
            return False

        if isinstance(data, model):
            payload = data
        else:
            result = validate_payload(model, data)
            if not result.valid:
                logger.warning("[INGEST] %s rejected: %s", event, result.error)
                return False
            payload = result.payload

        try:
            action(payload)
            return True
        except Exception as e:
            logger.warning("[INGEST] %s failed: %s: %s", event, type(e).__name__, e)
            return False

    def job_started(self, data: Raw) -> bool:
        return self._dispatch(
            "job_started", JobStartedPayload, data,
            lambda p: self._recorder.record_start(p.job_id, p.identity, p.started_at),
        )

    def job_completed(self, data: Raw) -> bool:
        return self._dispatch(
            "job_completed", JobCompletedPayload, data,
            lambda p: self._recorder.record_completion(
                p.job_id, p.identity, p.duration_ms, p.memory_mb, p.cpu_time_ms,
                completed_at=p.completed_at, hostname=p.hostname,
            ),
        )

    def job_failed(self, data: Raw) -> bool:
        return self._dispatch(
            "job_failed", JobFailedPayload, data,
            lambda p: self._recorder.record_failure(
                p.job_id, p.identity, p.exception, failed_at=p.failed_at, hostname=p.hostname,
            ),
        )

    def job_retry_requested(self, data: Raw) -> bool:
        return self._dispatch(
            "job_retry_requested", JobRetryPayload, data,
            lambda p: self._recorder.record_retry_requested(
                p.job_id, p.identity, p.attempt, p.retry_requested_at,
            ),
        )

    def job_timed_out(self, data: Raw) -> bool:
        return self._dispatch(
            "job_timed_out", JobTimeoutPayload, data,
            lambda p: self._recorder.record_timeout(p.job_id, p.identity, p.timed_out_at),
        )

    def job_exception(self, data: Raw) -> bool:
        return self._dispatch(
            "job_exception", JobExceptionPayload, data,
            lambda p: self._recorder.record_exception(
                p.job_id, p.identity, p.exception_class, p.message, p.occurred_at,
            ),
        )

    def heartbeat(self, data: Raw) -> bool:
        if self._workers is None:
            logger.debug("[INGEST] heartbeat ignored: no worker tracker wired")
            return False
        return self._dispatch(
            "heartbeat", HeartbeatPayload, data,
            lambda p: self._workers.record_heartbeat(
                p.worker_id, p.connection, p.queue, p.state,
                current_job_id=p.current_job_id,
                current_job_class=p.current_job_class,
                pid=p.pid,
                hostname=p.hostname,
                memory_usage_mb=p.memory_usage_mb,
                cpu_usage_percent=p.cpu_usage_percent,
            ),
        )

    def worker_stopped(self, worker_id: str) -> bool:
        if not self.enabled or self._workers is None:
            return False
        try:
            return self._workers.mark_stopped(worker_id)
        except Exception as e:
            logger.warning("[INGEST] worker_stopped failed worker_id=%s: %s", worker_id, e)
            return False

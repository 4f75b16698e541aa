"""Unit tests for the Celery-backed job queue."""

from __future__ import annotations

from datetime import timedelta
from typing import List, Tuple

import pytest

from docrag.services.job_queue import (
    RUN_JOB_TASK,
    JobHandler,
    JobQueue,
    JobRecord,
    JobResult,
    backoff_seconds,
    create_celery_app,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptedHandler(JobHandler):
    """Returns queued results in order; raises when the script says so."""

    def __init__(self, script: List[object]) -> None:
        self.script = list(script)
        self.runs: List[int] = []
        self.failures: List[Tuple[str, str]] = []

    async def run(self, job: JobRecord) -> JobResult:
        self.runs.append(job.attempts)
        outcome = self.script.pop(0) if self.script else JobResult.success()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def on_failed(self, job: JobRecord, error: str) -> None:
        self.failures.append((job.id, error))


@pytest.fixture
def queue(settings) -> JobQueue:
    queue = JobQueue(create_celery_app(settings), default_max_attempts=3, default_backoff_delay_ms=0, ping_timeout=0.1)
    yield queue
    queue.celery.close()


def _handler(queue: JobQueue, *script) -> ScriptedHandler:
    handler = ScriptedHandler(list(script))
    queue.register("scripted", handler)
    return handler


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestBackoff:
    def test_delay_doubles_per_attempt(self) -> None:
        assert backoff_seconds(1000, 1) == 1.0
        assert backoff_seconds(1000, 2) == 2.0
        assert backoff_seconds(1000, 3) == 4.0

    def test_zero_delay_stays_zero(self) -> None:
        assert backoff_seconds(0, 5) == 0.0


class TestCeleryApp:
    def test_runs_are_acknowledged_late(self, settings) -> None:
        app = create_celery_app(settings)

        assert app.conf.task_acks_late is True
        assert app.conf.task_reject_on_worker_lost is True
        assert app.conf.worker_prefetch_multiplier == 1

    def test_worker_settings_follow_config(self, settings) -> None:
        app = create_celery_app(settings.model_copy(update={
            "job_concurrency": 7,
            "job_worker_pool": "solo",
            "job_result_retention_seconds": 3600,
        }))

        assert app.conf.worker_concurrency == 7
        assert app.conf.worker_pool == "solo"
        assert app.conf.result_expires == timedelta(hours=1)
        assert app.conf.task_serializer == "json"

    def test_run_job_task_is_registered(self, queue: JobQueue) -> None:
        assert queue.task.name == RUN_JOB_TASK
        assert queue.celery.tasks[RUN_JOB_TASK] is queue.task


class TestEnqueue:
    def test_unknown_job_type_is_rejected(self, queue: JobQueue) -> None:
        with pytest.raises(ValueError):
            queue.enqueue("nobody-handles-this", {})

    def test_job_id_is_kept(self, queue: JobQueue) -> None:
        _handler(queue)

        assert queue.enqueue("scripted", {"n": 1}, job_id="job-1") == "job-1"

    def test_job_kwargs_default_to_queue_settings(self, queue: JobQueue) -> None:
        assert queue.job_kwargs("scripted", {"n": 1}) == {
            "job_type": "scripted",
            "payload": {"n": 1},
            "max_attempts": 3,
            "backoff_delay_ms": 0,
        }
        assert queue.job_kwargs("scripted", {}, max_attempts=5, backoff_delay_ms=250)["backoff_delay_ms"] == 250

    def test_unknown_or_missing_job_is_not_active(self, queue: JobQueue) -> None:
        assert queue.is_active(None) is False
        assert queue.is_active("never-published") is False


class TestExecution:
    def test_successful_job_runs_once(self, queue: JobQueue) -> None:
        handler = _handler(queue, JobResult.success(done=True))

        queue.enqueue("scripted", {"n": 1})

        assert handler.runs == [1]
        assert handler.failures == []

    def test_retryable_failure_is_retried(self, queue: JobQueue) -> None:
        handler = _handler(queue, JobResult.failure("flaky", retryable=True), JobResult.success())

        queue.enqueue("scripted", {"n": 1})

        assert handler.runs == [1, 2]
        assert handler.failures == []

    def test_handler_exception_counts_as_retryable(self, queue: JobQueue) -> None:
        handler = _handler(queue, RuntimeError("connection reset"), JobResult.success())

        queue.enqueue("scripted", {"n": 1})

        assert handler.runs == [1, 2]
        assert handler.failures == []

    def test_exhausted_retries_report_failure_once(self, queue: JobQueue) -> None:
        handler = _handler(queue, *[JobResult.failure("still down", retryable=True)] * 3)

        job_id = queue.enqueue("scripted", {"n": 1})

        assert handler.runs == [1, 2, 3]
        assert handler.failures == [(job_id, "still down")]

    def test_terminal_failure_is_not_retried(self, queue: JobQueue) -> None:
        handler = _handler(queue, JobResult.failure("bad input", retryable=False))

        job_id = queue.enqueue("scripted", {"n": 1})

        assert handler.runs == [1]
        assert handler.failures == [(job_id, "bad input")]

    def test_per_job_attempt_limit(self, queue: JobQueue) -> None:
        handler = _handler(queue, JobResult.failure("down", retryable=True))

        queue.enqueue("scripted", {"n": 1}, max_attempts=1)

        assert handler.runs == [1]
        assert len(handler.failures) == 1

    def test_held_job_waits_for_a_worker(self, queue: JobQueue) -> None:
        handler = _handler(queue)
        queue.celery.conf.task_always_eager = False

        queue.enqueue("scripted", {"n": 1})

        assert handler.runs == []

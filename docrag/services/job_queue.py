"""
Ingestion job queue on top of Celery.

``JobQueue`` publishes one ``docrag.run_job`` task per job, using the job id as
the Celery task id. Workers (``celery -A docrag.worker worker``) run the
registered ``JobHandler``; Celery owns delivery, retries with exponential
backoff, late acknowledgement of interrupted runs and result retention.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from celery import Celery, Task, states

from ..core.config import Settings

logger = logging.getLogger(__name__)

RUN_JOB_TASK = "docrag.run_job"

# PENDING also means "unknown", so only states a worker reported count as active
ACTIVE_STATES = frozenset({states.RECEIVED, states.STARTED, states.RETRY})


@dataclass(frozen=True)
class JobRecord:
    """One delivery of a job, as seen by its handler."""
    id: str
    job_type: str
    payload: Dict[str, Any]
    attempts: int
    max_attempts: int
    backoff_delay_ms: int


@dataclass(frozen=True)
class JobResult:
    """What a handler reports back for one attempt."""
    ok: bool
    message: Optional[str] = None
    retryable: bool = False
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **data) -> "JobResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, message: str, retryable: bool) -> "JobResult":
        return cls(ok=False, message=message, retryable=retryable)


class JobHandler(ABC):
    """Executes jobs of one type."""

    @abstractmethod
    async def run(self, job: JobRecord) -> JobResult:
        ...

    async def on_failed(self, job: JobRecord, error: str) -> None:
        """Called once when a job has failed for good."""


class JobFailed(Exception):
    """Final failure of a job; Celery records the task as FAILURE."""


class RetryableJobError(Exception):
    """Failure of one attempt that the queue will retry."""


def backoff_seconds(backoff_delay_ms: int, attempt: int) -> float:
    """Delay before the next attempt: delay, delay*2, delay*4, ..."""
    return backoff_delay_ms * (2 ** max(attempt - 1, 0)) / 1000.0


def create_celery_app(settings: Settings) -> Celery:
    """Celery application for one container; never installed as the global current app."""
    app = Celery(
        "docrag",
        broker=settings.broker_url,
        backend=settings.result_backend,
        set_as_current=False,
    )
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_always_eager=settings.job_always_eager,
        task_track_started=True,
        # An interrupted run is redelivered instead of lost
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.job_concurrency,
        worker_pool=settings.job_worker_pool,
        result_expires=timedelta(seconds=settings.job_result_retention_seconds),
        broker_connection_retry_on_startup=True,
    )
    return app


class JobTask(Task):
    """Base class of the run-job task; reports final failures to the handler."""

    job_queue: "JobQueue" = None

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        job = self.job_queue.record_for(task_id, self.request.retries + 1, **kwargs)
        self.job_queue.report_failure(job, str(exc) or type(exc).__name__)


def _run_job(task: JobTask, job_type: str, payload: Dict[str, Any], max_attempts: int, backoff_delay_ms: int):
    queue = task.job_queue
    job = queue.record_for(
        task.request.id,
        task.request.retries + 1,
        job_type=job_type,
        payload=payload,
        max_attempts=max_attempts,
        backoff_delay_ms=backoff_delay_ms,
    )
    result = queue.execute(job)
    if result.ok:
        logger.info(f"Job {job.id} completed {result.data or ''}")
        return result.data

    message = result.message or "unknown error"
    if result.retryable and job.attempts < job.max_attempts:
        delay = backoff_seconds(job.backoff_delay_ms, job.attempts)
        logger.warning(
            f"Job {job.id} attempt {job.attempts}/{job.max_attempts} failed, retrying in {delay:.1f}s: {message}"
        )
        raise task.retry(exc=RetryableJobError(message), countdown=delay, max_retries=job.max_attempts - 1)

    logger.error(f"Job {job.id} failed after {job.attempts} attempt(s): {message}")
    raise JobFailed(message)


class JobQueue:
    """Durable, retryable job submission."""

    def __init__(
        self,
        celery: Celery,
        default_max_attempts: int = 3,
        default_backoff_delay_ms: int = 1000,
        ping_timeout: float = 1.0,
    ):
        self.celery = celery
        self.default_max_attempts = default_max_attempts
        self.default_backoff_delay_ms = default_backoff_delay_ms
        self.ping_timeout = ping_timeout
        self.handlers: Dict[str, JobHandler] = {}
        self.task: JobTask = celery.task(
            bind=True,
            base=JobTask,
            name=RUN_JOB_TASK,
            shared=False,
            lazy=False,
            job_queue=self,
        )(_run_job)

    def register(self, job_type: str, handler: JobHandler) -> None:
        self.handlers[job_type] = handler

    def job_kwargs(
        self,
        job_type: str,
        payload: Dict[str, Any],
        max_attempts: Optional[int] = None,
        backoff_delay_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Task arguments for one job."""
        return {
            "job_type": job_type,
            "payload": payload,
            "max_attempts": max_attempts or self.default_max_attempts,
            "backoff_delay_ms": self.default_backoff_delay_ms if backoff_delay_ms is None else backoff_delay_ms,
        }

    def enqueue(
        self,
        job_type: str,
        payload: Dict[str, Any],
        max_attempts: Optional[int] = None,
        backoff_delay_ms: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> str:
        """
        Publish a job and return its id.

        The message is handed to the broker before this returns. Blocking;
        call it off the event loop.
        """
        if job_type not in self.handlers:
            raise ValueError(f"No handler registered for job type {job_type}")
        job_id = job_id or str(uuid.uuid4())
        kwargs = self.job_kwargs(job_type, payload, max_attempts, backoff_delay_ms)
        self.task.apply_async(kwargs=kwargs, task_id=job_id)
        logger.info(f"Job {job_id} enqueued ({job_type}, max_attempts={kwargs['max_attempts']})")
        return job_id

    def remove(self, job_id: Optional[str]) -> None:
        """
        Revoke a job that has not started.

        Workers skip a revoked job when it is delivered; a running one is not
        interrupted.
        """
        if not job_id:
            return
        try:
            self.celery.control.revoke(job_id)
            logger.info(f"Job {job_id} revoked")
        except Exception as e:
            logger.warning(f"Could not revoke job {job_id}: {e}")

    def state(self, job_id: str) -> str:
        return self.celery.AsyncResult(job_id).state

    def is_active(self, job_id: Optional[str]) -> bool:
        """True while a worker holds the job or has scheduled a retry of it."""
        if not job_id:
            return False
        try:
            return self.state(job_id) in ACTIVE_STATES
        except Exception as e:
            logger.warning(f"Could not read state of job {job_id}: {e}")
            return False

    def workers_online(self) -> Optional[int]:
        """Number of workers answering a ping, or None if the broker is unreachable."""
        try:
            return len(self.celery.control.ping(timeout=self.ping_timeout) or [])
        except Exception as e:
            logger.error(f"Worker ping failed: {e}")
            return None

    def record_for(
        self,
        job_id: str,
        attempt: int,
        job_type: str,
        payload: Dict[str, Any],
        max_attempts: int,
        backoff_delay_ms: int,
    ) -> JobRecord:
        return JobRecord(
            id=job_id,
            job_type=job_type,
            payload=payload,
            attempts=attempt,
            max_attempts=max_attempts,
            backoff_delay_ms=backoff_delay_ms,
        )

    def execute(self, job: JobRecord) -> JobResult:
        """Run one attempt in a fresh event loop; handler exceptions count as retryable."""
        handler = self.handlers.get(job.job_type)
        if handler is None:
            return JobResult.failure(f"No handler registered for job type {job.job_type}", retryable=False)

        logger.info(f"Job {job.id} ({job.job_type}) attempt {job.attempts}/{job.max_attempts} started")
        try:
            return asyncio.run(handler.run(job))
        except Exception as e:
            logger.error(f"Job {job.id} handler raised: {e}", exc_info=True)
            return JobResult.failure(str(e) or type(e).__name__, retryable=True)

    def report_failure(self, job: JobRecord, error: str) -> None:
        handler = self.handlers.get(job.job_type)
        if handler is None:
            return
        try:
            asyncio.run(handler.on_failed(job, error))
        except Exception as e:
            logger.error(f"Failure hook for job {job.id} raised: {e}", exc_info=True)

"""
Celery worker entry point.

    celery -A docrag.worker worker --loglevel INFO

Concurrency and pool come from ``JOB_CONCURRENCY`` and ``JOB_WORKER_POOL``.
"""
from .core.config import get_settings
from .core.container import build_container
from .core.error_handler import setup_error_logging
from .main import configure_logging

settings = get_settings()
configure_logging(settings)
setup_error_logging(settings)

container = build_container(settings)
app = container.queue.celery

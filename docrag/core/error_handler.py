"""
Error reporting setup and the FastAPI exception handlers.

``ERROR_LOGGING=1`` appends JSON error records to ``ERROR_LOG_DIR/errors.log``
next to an ERROR-level log handler; ``ERROR_LOGGING=2`` reports to Sentry.
"""
import json
import logging
import traceback
from pathlib import Path
from typing import Any, Dict, Optional

import sentry_sdk
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from .config import Settings
from .database import utcnow
from .errors import DocragError

logger = logging.getLogger(__name__)

ERROR_LOG_NAME = "errors.log"


def _sentry_enabled(settings: Settings) -> bool:
    return settings.error_logging == 2 and bool(settings.sentry_dsn)


def setup_error_logging(settings: Settings):
    """Initialize error reporting for the configured destination."""
    if _sentry_enabled(settings):
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[FastApiIntegration(), SqlalchemyIntegration(), CeleryIntegration()],
            traces_sample_rate=0.1,
            environment="development" if settings.debug else "production",
        )
        logger.info("Sentry error logging initialized")
    elif settings.error_logging == 1:
        setup_file_logging(settings.error_log_dir)
        logger.info(f"File error logging initialized: {settings.error_log_dir}")
    else:
        logger.info("Error logging disabled")


def setup_file_logging(error_log_dir: str):
    """Send ERROR records of every logger to the error log file, once per file."""
    error_log_file = (Path(error_log_dir) / ERROR_LOG_NAME).resolve()
    error_log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    already_attached = any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == error_log_file
        for h in root_logger.handlers
    )
    if already_attached:
        return

    file_handler = logging.FileHandler(error_log_file)
    file_handler.setLevel(logging.ERROR)
    file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger.addHandler(file_handler)


def _error_record(error: Exception, request: Optional[Request], extra_data: Optional[dict]) -> Dict[str, Any]:
    record = {
        "timestamp": utcnow().isoformat(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
    }
    if request is not None:
        record["method"] = request.method
        record["url"] = str(request.url)
        record["client_ip"] = request.client.host if request.client else None
    record.update(extra_data or {})
    return record


def _report_to_sentry(error: Exception, request: Optional[Request], extra_data: Optional[dict]) -> None:
    with sentry_sdk.new_scope() as scope:
        if request is not None:
            scope.set_tag("method", request.method)
            scope.set_tag("url", str(request.url))
        if extra_data:
            scope.set_context("extra", extra_data)
        sentry_sdk.capture_exception(error)


def _append_to_file(error_log_dir: str, record: Dict[str, Any]) -> None:
    try:
        with open(Path(error_log_dir) / ERROR_LOG_NAME, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, indent=2) + "\n" + "-" * 80 + "\n")
    except OSError as e:
        logger.error(f"Failed to write error to log file: {e}")


def log_error(
    settings: Settings,
    error: Exception,
    request: Optional[Request] = None,
    extra_data: Optional[dict] = None
):
    """Report an error to the configured destination and the application log."""
    if _sentry_enabled(settings):
        _report_to_sentry(error, request, extra_data)
    elif settings.error_logging == 1:
        _append_to_file(settings.error_log_dir, _error_record(error, request, extra_data))

    logger.error(f"Error occurred: {error}", exc_info=error)


async def docrag_exception_handler(request: Request, exc: DocragError) -> JSONResponse:
    """Map the error taxonomy onto HTTP status codes."""
    if exc.status_code >= 500:
        log_error(request.app.state.settings, exc, request)
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: report the error and answer 500."""
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    settings: Settings = request.app.state.settings
    log_error(settings, exc, request)

    content: Dict[str, Any] = {"error": "An unexpected error occurred. Please try again later."}
    if settings.debug:
        content = {
            "error": "Internal Server Error",
            "detail": str(exc),
            "type": type(exc).__name__,
            "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
    return JSONResponse(status_code=500, content=content)


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Request validation failures are client errors (400)."""
    logger.info(f"Request validation failed for {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error": f"Validation Error: {exc}"})

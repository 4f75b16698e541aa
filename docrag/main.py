"""
Main FastAPI application entry point.

Serve with ``uvicorn docrag.asgi:app`` or ``uvicorn --factory docrag.main:create_app``.
Ingestion jobs run in a separate Celery worker: ``celery -A docrag.worker worker``.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .core.config import Settings, get_settings
from .core.container import Container, build_container
from .core.error_handler import (
    docrag_exception_handler,
    global_exception_handler,
    setup_error_logging,
    validation_exception_handler,
)
from .core.errors import DocragError
from .api.routes import chat, files, health

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """Create the application around one set of services."""
    settings = settings or get_settings()
    configure_logging(settings)
    setup_error_logging(settings)
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.project_name}")
        logger.info(f"Debug mode: {settings.debug}")
        logger.info(f"Upload directory: {settings.upload_dir}")
        logger.info(f"Vector store directory: {settings.chroma_persist_directory}")
        if settings.job_always_eager:
            logger.warning("Jobs run inline in the request; no worker is used")
        yield
        logger.info(f"Shutting down {settings.project_name}")

    app = FastAPI(
        title=settings.project_name,
        description="Document ingestion and retrieval-augmented chat",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DocragError, docrag_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(files.router, prefix=settings.api_prefix)
    app.include_router(chat.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        """Root endpoint with basic API information."""
        return {
            "message": "docrag API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": f"{settings.api_prefix}/health"
        }

    return app


if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(
        create_app(_settings),
        host="0.0.0.0",
        port=_settings.port,
        log_level=_settings.log_level.lower()
    )

"""
Health check and system status API routes.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.container import Container
from ...core.database import utcnow
from ..dependencies import get_container, get_database

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "service": "docrag",
    }


@router.get("/detailed")
async def detailed_health_check(
    db: Session = Depends(get_database),
    container: Container = Depends(get_container),
):
    """Detailed health check including all system components."""
    try:
        db.execute(text("SELECT 1"))
        db_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_healthy = False

    try:
        vector_healthy = container.vector_index.health_check()
    except Exception as e:
        logger.error(f"Vector index health check failed: {e}")
        vector_healthy = False

    document_counts = container.documents.count_by_status() if db_healthy else {}
    stalled = container.documents.count_stalled() if db_healthy else None
    if container.settings.job_always_eager:
        workers = "inline"
    else:
        workers_online = await asyncio.to_thread(container.queue.workers_online)
        workers = "unreachable" if workers_online is None else f"{workers_online} online"
    generator_healthy = container.generator.health_check()
    overall_healthy = db_healthy and vector_healthy

    health_status = {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": utcnow().isoformat(),
        "components": {
            "database": "healthy" if db_healthy else "unhealthy",
            "vector_index": "healthy" if vector_healthy else "unhealthy",
            "llm_service": "healthy" if generator_healthy else "unconfigured",
            "workers": workers,
        },
        "documents": document_counts,
        "stalled_documents": stalled,
    }

    if not overall_healthy:
        return JSONResponse(status_code=503, content=health_status)
    return health_status

"""
API dependencies for FastAPI routes.
"""
from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from ..core.container import Container
from ..core.database import get_db
from ..services.chat_service import ChatService
from ..services.document_service import DocumentService


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_database(request: Request) -> Generator[Session, None, None]:
    """Get database session dependency."""
    yield from get_db(get_container(request).session_factory)


def get_document_service(request: Request) -> DocumentService:
    return get_container(request).document_service


def get_chat_service(request: Request) -> ChatService:
    return get_container(request).chat_service

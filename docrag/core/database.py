"""
Database engine and session management.
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Declarative base for all docrag tables."""


def utcnow() -> datetime:
    """Naive UTC timestamp; every table stores UTC without an offset."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for the configured URL."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        # Workers and the request handlers share the engine across threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    return create_engine(database_url, pool_pre_ping=True, pool_size=10, max_overflow=20)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """Create all tables that don't exist yet."""
    # Import models so they register with the metadata
    from ..models import chat, document  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Yield a session and always close it."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()

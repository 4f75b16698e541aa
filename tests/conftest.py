"""Shared pytest fixtures for the docrag test suite."""

from __future__ import annotations

import asyncio
import math
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from docrag.core.config import Settings
from docrag.core.container import Container, build_container
from docrag.core.database import create_db_engine, create_session_factory, create_tables
from docrag.main import create_app
from docrag.services.ingestion import INGEST_JOB_TYPE
from docrag.services.llm_service import Generator
from docrag.services.vector_store import RetrievedChunk, VectorIndex

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class CountingEmbeddings(Embeddings):
    """Deterministic fake embeddings that count how often they are used."""

    def __init__(self, size: int = 32) -> None:
        self.inner = DeterministicFakeEmbedding(size=size)
        self.document_calls = 0
        self.embedded_texts = 0
        self.query_calls = 0

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.document_calls += 1
        self.embedded_texts += len(texts)
        return self.inner.embed_documents(texts)

    def embed_query(self, text: str) -> List[float]:
        self.query_calls += 1
        return self.inner.embed_query(text)


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorIndex(VectorIndex):
    """Vector index kept in dictionaries, with hooks for failure injection."""

    def __init__(self) -> None:
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail_upserts = 0
        self.before_upsert: Optional[Callable[[str, Sequence[Dict[str, Any]]], None]] = None
        self.searches: List[Dict[str, Any]] = []
        self.delete_threads: List[int] = []

    def collection_for(self, owner_id: str) -> str:
        return f"user-{owner_id}-docs"

    def upsert_chunks(self, collection, ids, vectors, texts, metadatas) -> None:
        if self.fail_upserts:
            self.fail_upserts -= 1
            raise ConnectionError("vector store unavailable")
        if self.before_upsert is not None:
            self.before_upsert(collection, metadatas)
        store = self.collections.setdefault(collection, {})
        for chunk_id, vector, text, metadata in zip(ids, vectors, texts, metadatas):
            store[chunk_id] = {"id": chunk_id, "vector": list(vector), "text": text, "metadata": dict(metadata)}

    def get_document_chunks(self, collection: str, document_id: str) -> List[Dict[str, Any]]:
        return [
            dict(item, metadata=dict(item["metadata"]))
            for item in self.collections.get(collection, {}).values()
            if item["metadata"].get("document_id") == document_id
        ]

    def delete_document_chunks(self, collection: str, document_id: str) -> None:
        self.delete_threads.append(threading.get_ident())
        store = self.collections.get(collection, {})
        for chunk_id in [k for k, v in store.items() if v["metadata"].get("document_id") == document_id]:
            del store[chunk_id]

    def search(self, collection, vector, k, owner_id, document_ids) -> List[RetrievedChunk]:
        self.searches.append({"collection": collection, "owner_id": owner_id, "document_ids": list(document_ids)})
        allowed = set(document_ids)
        candidates = [
            item for item in self.collections.get(collection, {}).values()
            if item["metadata"].get("owner_id") == owner_id and item["metadata"].get("document_id") in allowed
        ]
        scored = sorted(
            (RetrievedChunk(text=c["text"], metadata=dict(c["metadata"]), score=_cosine(vector, c["vector"]))
             for c in candidates),
            key=lambda chunk: chunk.score,
            reverse=True,
        )
        return scored[:k]

    def all_chunks(self) -> List[Dict[str, Any]]:
        return [item for store in self.collections.values() for item in store.values()]

    def chunks_of(self, document_id: str) -> List[Dict[str, Any]]:
        return [c for c in self.all_chunks() if c["metadata"].get("document_id") == document_id]


class StubGenerator(Generator):
    """Generator that records its calls and answers with a fixed template."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, query, context, history=None) -> str:
        self.calls.append({"query": query, "context": list(context), "history": list(history or [])})
        return f"Answer based on {len(context)} excerpts"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated to a temporary directory, with fake embeddings and jobs run inline."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'docrag.db'}",
        embedding_provider="fake",
        embedding_dimension=32,
        chroma_persist_directory=str(tmp_path / "chroma"),
        upload_dir=str(tmp_path / "uploads"),
        error_log_dir=str(tmp_path / "logs"),
        error_logging=0,
        broker_url="memory://",
        result_backend="cache+memory://",
        job_always_eager=True,
        job_worker_ping_timeout=0.1,
        job_backoff_delay_ms=0,
        job_max_attempts=3,
        chunk_size=100,
        chunk_overlap=20,
    )


@pytest.fixture
def session_factory(tmp_path: Path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'queue.db'}")
    create_tables(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def embeddings() -> CountingEmbeddings:
    return CountingEmbeddings(size=32)


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def container(settings, embeddings, vector_index, generator) -> Container:
    container = build_container(
        settings,
        embeddings=embeddings,
        vector_index=vector_index,
        generator=generator,
    )
    yield container
    container.close()


@pytest.fixture
def client(settings, container) -> TestClient:
    return TestClient(create_app(settings, container))


@pytest.fixture
def held(container) -> Callable[[], None]:
    """Stop running jobs inline; published jobs then wait in the in-memory broker."""

    def _hold() -> None:
        container.queue.celery.conf.task_always_eager = False

    return _hold


@pytest.fixture
def deliver(container) -> Callable[..., Any]:
    """Run a held job the way a worker would pick it up."""

    async def _deliver(document) -> Any:
        kwargs = container.queue.job_kwargs(
            INGEST_JOB_TYPE,
            {"document_id": document.id, "owner_id": document.owner_id, "blob_path": document.blob_path},
            max_attempts=container.settings.job_max_attempts,
            backoff_delay_ms=container.settings.job_backoff_delay_ms,
        )
        return await asyncio.to_thread(container.queue.task.apply, kwargs=kwargs, task_id=document.job_id)

    return _deliver

"""
Wiring of the docrag services.

Every collaborator is built here from one ``Settings`` instance and passed
on explicitly; tests swap in their own embeddings, vector index or generator.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from langchain_core.embeddings import Embeddings
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .database import create_db_engine, create_session_factory, create_tables
from ..services.blob_store import BlobStore, LocalBlobStore
from ..services.chat_service import ChatService
from ..services.chunker import TextChunker
from ..services.content_loader import ContentLoaderRegistry, default_loader_registry
from ..services.document_service import DocumentService
from ..services.document_store import DocumentRepository
from ..services.ingestion import INGEST_JOB_TYPE, IngestionPipeline
from ..services.job_queue import JobQueue, create_celery_app
from ..services.llm_service import Generator, LLMService
from ..services.retrieval import RetrievalService
from ..services.vector_store import ChromaVectorIndex, VectorIndex, build_embeddings

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    documents: DocumentRepository
    blob_store: BlobStore
    loaders: ContentLoaderRegistry
    embeddings: Embeddings
    vector_index: VectorIndex
    queue: JobQueue
    pipeline: IngestionPipeline
    document_service: DocumentService
    retrieval: RetrievalService
    generator: Generator
    chat_service: ChatService

    def close(self) -> None:
        self.queue.celery.close()
        self.engine.dispose()


def build_container(
    settings: Settings,
    embeddings: Optional[Embeddings] = None,
    vector_index: Optional[VectorIndex] = None,
    generator: Optional[Generator] = None,
    blob_store: Optional[BlobStore] = None,
) -> Container:
    """Build all services for one application instance."""
    engine = create_db_engine(settings.database_url)
    create_tables(engine)
    session_factory = create_session_factory(engine)

    documents = DocumentRepository(session_factory)
    blob_store = blob_store or LocalBlobStore(settings.upload_dir)
    loaders = default_loader_registry()
    embeddings = embeddings or build_embeddings(settings)
    vector_index = vector_index or ChromaVectorIndex(
        settings.chroma_persist_directory,
        collection_strategy=settings.collection_strategy,
        shared_collection_name=settings.shared_collection_name,
    )

    queue = JobQueue(
        create_celery_app(settings),
        default_max_attempts=settings.job_max_attempts,
        default_backoff_delay_ms=settings.job_backoff_delay_ms,
        ping_timeout=settings.job_worker_ping_timeout,
    )
    pipeline = IngestionPipeline(
        documents=documents,
        blob_store=blob_store,
        loaders=loaders,
        chunker=TextChunker(settings.chunk_size, settings.chunk_overlap),
        embeddings=embeddings,
        vector_index=vector_index,
        embedding_model=settings.embedding_model_id,
        embedding_batch_size=settings.embedding_batch_size,
        dedup_by_content_hash=settings.dedup_by_content_hash,
        lease_seconds=settings.job_lease_seconds,
    )
    queue.register(INGEST_JOB_TYPE, pipeline)

    document_service = DocumentService(
        documents=documents,
        blob_store=blob_store,
        queue=queue,
        vector_index=vector_index,
        max_file_size=settings.max_file_size,
        allowed_mime_types=settings.allowed_mime_types,
        job_max_attempts=settings.job_max_attempts,
        job_backoff_delay_ms=settings.job_backoff_delay_ms,
    )
    retrieval = RetrievalService(
        documents=documents,
        embeddings=embeddings,
        vector_index=vector_index,
        embedding_model=settings.embedding_model_id,
        default_k=settings.retrieval_top_k,
    )
    generator = generator or LLMService(settings)
    chat_service = ChatService(session_factory, retrieval, generator)

    logger.info(
        f"Services ready: embeddings={settings.embedding_model_id}, "
        f"collections={settings.collection_strategy}, broker={settings.broker_url.split(':')[0]}"
    )
    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        documents=documents,
        blob_store=blob_store,
        loaders=loaders,
        embeddings=embeddings,
        vector_index=vector_index,
        queue=queue,
        pipeline=pipeline,
        document_service=document_service,
        retrieval=retrieval,
        generator=generator,
        chat_service=chat_service,
    )

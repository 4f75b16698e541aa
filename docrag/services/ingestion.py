"""
Ingestion pipeline: drives a document from pending to processed or error.

The pipeline runs as the handler for ``ingest-document`` jobs:

    claim (processing) -> resolve metadata -> [copy twin] -> load -> chunk
    -> embed + index -> finalize (processed | error)

Every step returns a ``StepResult``; nothing a step raises escapes ``run()``.
Each write after the claim is fenced by the version the claim returned, so a
superseded or deleted document is never overwritten by a stale worker.
"""
import asyncio
import hashlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from ..core.database import utcnow
from ..core.errors import IngestError, IngestErrorKind, StepResult, TransientIngestionFailure
from ..models.document import Document as DocumentModel
from ..schemas.document import DocumentStatus, IngestionJobPayload
from .blob_store import BlobStore, safe_extension
from .chunker import TextChunker
from .content_loader import ContentLoaderRegistry, guess_mime_type
from .document_store import DocumentRepository
from .job_queue import JobHandler, JobRecord, JobResult
from .vector_store import VectorIndex, chunk_id

logger = logging.getLogger(__name__)

INGEST_JOB_TYPE = "ingest-document"


@dataclass(frozen=True)
class ResolvedFile:
    content: bytes
    extension: str
    mime_type: str
    content_hash: str


@dataclass(frozen=True)
class ProcessOutcome:
    chunk_count: int = 0
    collection_id: Optional[str] = None
    superseded: bool = False
    deduplicated_from: Optional[str] = None


SUPERSEDED = ProcessOutcome(superseded=True)


class IngestionPipeline(JobHandler):
    """Turns an uploaded document into indexed chunks."""

    def __init__(
        self,
        documents: DocumentRepository,
        blob_store: BlobStore,
        loaders: ContentLoaderRegistry,
        chunker: TextChunker,
        embeddings: Embeddings,
        vector_index: VectorIndex,
        embedding_model: str,
        embedding_batch_size: int = 64,
        dedup_by_content_hash: bool = True,
        lease_seconds: int = 15 * 60,
    ):
        self.documents = documents
        self.blob_store = blob_store
        self.loaders = loaders
        self.chunker = chunker
        self.embeddings = embeddings
        self.vector_index = vector_index
        self.embedding_model = embedding_model
        self.embedding_batch_size = embedding_batch_size
        self.dedup_by_content_hash = dedup_by_content_hash
        self.lease_seconds = lease_seconds

    async def run(self, job: JobRecord) -> JobResult:
        try:
            payload = IngestionJobPayload(**job.payload)
        except (TypeError, ValueError) as e:
            return JobResult.failure(f"Invalid ingestion payload: {e}", retryable=False)

        token = self.documents.claim_for_job(payload.document_id, job.id, job.attempts, self.lease_seconds)
        if token is None:
            logger.info(
                f"Job {job.id}: document {payload.document_id} is not waiting for it "
                f"or another run holds its lease, skipping"
            )
            return JobResult.success(skipped=True)
        logger.info(
            f"Document {payload.document_id} processing for user {payload.owner_id} "
            f"(attempt {job.attempts}/{job.max_attempts})"
        )

        result = await self._process(payload, token)
        if result.ok:
            outcome = result.value
            if outcome.superseded:
                return JobResult.success(skipped=True)
            return JobResult.success(
                document_id=payload.document_id,
                chunks=outcome.chunk_count,
                collection=outcome.collection_id,
                deduplicated_from=outcome.deduplicated_from,
            )

        error = result.error
        if error.retryable:
            # The document stays processing; the queue decides whether to retry
            self.documents.release_lease(payload.document_id, token)
            return JobResult.failure(error.message, retryable=True)

        self._finalize_error(payload.document_id, token, error)
        return JobResult.failure(error.message, retryable=False)

    async def on_failed(self, job: JobRecord, error: str) -> None:
        """Attempts are exhausted: record the error on the document."""
        document_id = job.payload.get("document_id")
        if document_id and self.documents.fail_for_job(document_id, job.id, error):
            logger.error(f"Document {document_id} marked as error after {job.attempts} attempt(s): {error}")

    async def _step(self, name: str, default_kind: IngestErrorKind, func: Callable, *args) -> StepResult:
        try:
            value = func(*args)
            if inspect.isawaitable(value):
                value = await value
            return StepResult.success(value)
        except Exception as e:
            error = IngestError.from_exception(e, default_kind)
            logger.warning(f"Step '{name}' failed ({error.kind.value}): {error.message}", exc_info=True)
            return StepResult.failure(error)

    async def _process(self, payload: IngestionJobPayload, token: int) -> StepResult:
        document = self.documents.get(payload.document_id)
        if document is None:
            return StepResult.success(SUPERSEDED)

        resolved = await self._step("resolve metadata", IngestErrorKind.TRANSIENT, self._resolve_file, payload.blob_path)
        if not resolved.ok:
            return resolved
        file: ResolvedFile = resolved.value

        # Persisted before parsing so partial progress is inspectable
        stored = await self._step(
            "store metadata", IngestErrorKind.INTERNAL,
            lambda: self.documents.update_if_version(
                document.id, token,
                mime_type=file.mime_type,
                extension=file.extension,
                content_hash=file.content_hash,
            ),
        )
        if not stored.ok:
            return stored
        if not stored.value:
            return StepResult.success(await self._superseded(document))

        collection = self.vector_index.collection_for(document.owner_id)

        if self.dedup_by_content_hash:
            copied = await self._step(
                "copy duplicate", IngestErrorKind.TRANSIENT, self._copy_from_twin, document, file, collection
            )
            if not copied.ok:
                return copied
            if copied.value is not None:
                twin_id, chunk_count = copied.value
                return await self._finalize_processed(
                    document, token, chunk_count, collection, deduplicated_from=twin_id
                )

        lease = await self._renew_lease(document, token)
        if lease.value is not True:
            return lease

        loaded = await self._step(
            "load", IngestErrorKind.EXTRACTION_FAILED,
            asyncio.to_thread, self.loaders.load, file.extension, file.content,
        )
        if not loaded.ok:
            return loaded

        chunked = await self._step("chunk", IngestErrorKind.INTERNAL, self.chunker.split, loaded.value)
        if not chunked.ok:
            return chunked
        chunks: List[Document] = chunked.value

        lease = await self._renew_lease(document, token)
        if lease.value is not True:
            return lease

        indexed = await self._step(
            "embed and index", IngestErrorKind.TRANSIENT, self._embed_and_index, document, file, chunks, collection
        )
        if not indexed.ok:
            return indexed

        return await self._finalize_processed(document, token, len(chunks), collection)

    async def _renew_lease(self, document: DocumentModel, token: int) -> StepResult:
        """Value is True while this run still owns the document."""
        renewed = await self._step(
            "renew lease", IngestErrorKind.TRANSIENT,
            self.documents.renew_lease, document.id, token, self.lease_seconds,
        )
        if renewed.ok and not renewed.value:
            return StepResult.success(await self._superseded(document))
        return renewed

    async def _resolve_file(self, blob_path: str) -> ResolvedFile:
        """Derive extension, MIME type and content hash from the stored blob."""
        try:
            content = await self.blob_store.read(blob_path)
        except OSError as e:
            raise TransientIngestionFailure(f"Could not read stored file {blob_path}: {e}") from e
        extension = safe_extension(blob_path)
        return ResolvedFile(
            content=content,
            extension=extension,
            mime_type=guess_mime_type(extension),
            content_hash=hashlib.sha256(content).hexdigest(),
        )

    def _chunk_metadata(self, document: DocumentModel, file: ResolvedFile, chunk: Document, index: int) -> Dict[str, Any]:
        metadata = {k: v for k, v in chunk.metadata.items() if isinstance(v, (str, int, float, bool))}
        metadata.update({
            "document_id": document.id,
            "owner_id": document.owner_id,
            "chunk_index": index,
            "source_file_name": document.name,
            "mime_type": file.mime_type,
            "content_hash": file.content_hash,
            "embedding_model": self.embedding_model,
            "timestamp": utcnow().isoformat(),
        })
        return metadata

    async def _embed_and_index(
        self, document: DocumentModel, file: ResolvedFile, chunks: List[Document], collection: str
    ) -> int:
        texts = [chunk.page_content for chunk in chunks]
        metadatas = [self._chunk_metadata(document, file, chunk, i) for i, chunk in enumerate(chunks)]

        try:
            vectors: List[List[float]] = []
            for start in range(0, len(texts), self.embedding_batch_size):
                batch = texts[start:start + self.embedding_batch_size]
                vectors.extend(await asyncio.to_thread(self.embeddings.embed_documents, batch))

            # Replace, never append: a re-run must not duplicate chunks
            await asyncio.to_thread(self.vector_index.delete_document_chunks, collection, document.id)
            await asyncio.to_thread(
                self.vector_index.upsert_chunks,
                collection,
                [chunk_id(document.id, i) for i in range(len(texts))],
                vectors,
                texts,
                metadatas,
            )
        except Exception as e:
            raise TransientIngestionFailure(f"Embedding or indexing failed: {e}") from e
        logger.info(f"Indexed {len(texts)} chunks for document {document.id} in {collection}")
        return len(texts)

    async def _copy_from_twin(self, document: DocumentModel, file: ResolvedFile, collection: str):
        """Reuse the stored vectors of an identical processed document. Returns (twin_id, count) or None."""
        twin = self.documents.find_processed_twin(
            document.owner_id, file.content_hash, self.embedding_model, exclude_id=document.id
        )
        if twin is None:
            return None

        stored = await asyncio.to_thread(self.vector_index.get_document_chunks, twin.collection_id, twin.id)
        if len(stored) != twin.chunk_count:
            logger.warning(
                f"Duplicate {twin.id} has {len(stored)} indexed chunks, expected {twin.chunk_count}; re-embedding"
            )
            return None

        stored.sort(key=lambda c: c["metadata"].get("chunk_index", 0))
        timestamp = utcnow().isoformat()
        metadatas = []
        for item in stored:
            metadata = dict(item["metadata"])
            metadata.update({
                "document_id": document.id,
                "source_file_name": document.name,
                "timestamp": timestamp,
            })
            metadatas.append(metadata)

        await asyncio.to_thread(self.vector_index.delete_document_chunks, collection, document.id)
        await asyncio.to_thread(
            self.vector_index.upsert_chunks,
            collection,
            [chunk_id(document.id, m.get("chunk_index", i)) for i, m in enumerate(metadatas)],
            [item["vector"] for item in stored],
            [item["text"] for item in stored],
            metadatas,
        )
        logger.info(f"Document {document.id} duplicates {twin.id}; copied {len(stored)} chunks without re-embedding")
        return twin.id, len(stored)

    async def _finalize_processed(
        self,
        document: DocumentModel,
        token: int,
        chunk_count: int,
        collection: str,
        deduplicated_from: Optional[str] = None,
    ) -> StepResult:
        try:
            written = self.documents.update_if_version(
                document.id, token, bump=True,
                status=DocumentStatus.PROCESSED.value,
                chunk_count=chunk_count,
                collection_id=collection,
                embedding_model=self.embedding_model,
                processed_at=utcnow(),
                error_message=None,
                lease_expires_at=None,
            )
        except Exception as e:
            logger.error(f"Could not finalize document {document.id}: {e}", exc_info=True)
            return StepResult.failure(IngestError.from_exception(e, IngestErrorKind.TRANSIENT))

        if not written:
            return StepResult.success(await self._superseded(document, collection))

        logger.info(f"Document {document.id} processed successfully with {chunk_count} chunks")
        return StepResult.success(ProcessOutcome(
            chunk_count=chunk_count,
            collection_id=collection,
            deduplicated_from=deduplicated_from,
        ))

    def _finalize_error(self, document_id: str, token: int, error: IngestError) -> None:
        written = self.documents.update_if_version(
            document_id, token, bump=True,
            status=DocumentStatus.ERROR.value,
            error_message=error.message,
            chunk_count=None,
            collection_id=None,
            lease_expires_at=None,
        )
        if written:
            logger.error(f"Document {document_id} failed ({error.kind.value}): {error.message}")
        else:
            logger.info(f"Document {document_id} changed while failing; error not recorded")

    async def _superseded(self, document: DocumentModel, collection: Optional[str] = None) -> ProcessOutcome:
        """Someone else moved the document on; clean up if it was deleted meanwhile."""
        current = self.documents.get(document.id)
        logger.info(
            f"Document {document.id} changed during processing "
            f"(now {current.status if current else 'gone'}); discarding this run"
        )
        if collection and (current is None or current.status == DocumentStatus.DELETED.value):
            try:
                await asyncio.to_thread(self.vector_index.delete_document_chunks, collection, document.id)
            except Exception as e:
                logger.error(f"Could not remove orphaned chunks of document {document.id}: {e}", exc_info=True)
        return SUPERSEDED

"""
Document service: upload, listing, status, soft delete and manual retry.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import List, Optional, Sequence

from ..core.errors import ForbiddenError, NotFoundError, ValidationError
from ..models.document import Document
from ..schemas.document import DocumentStatus, IngestionJobPayload
from .blob_store import BlobStore
from .document_store import DocumentRepository
from .ingestion import INGEST_JOB_TYPE
from .job_queue import JobQueue
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class UploadItem:
    """One file of a multipart upload."""
    filename: str
    content_type: Optional[str]
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def display_name(filename: str) -> str:
    """Client filename reduced to its last path component."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name.strip()
    return name[:255]


def base_mime_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";")[0].strip().lower()


class DocumentService:
    """User-facing document operations."""

    def __init__(
        self,
        documents: DocumentRepository,
        blob_store: BlobStore,
        queue: JobQueue,
        vector_index: VectorIndex,
        max_file_size: int,
        allowed_mime_types: Sequence[str],
        job_max_attempts: int = 3,
        job_backoff_delay_ms: int = 1000,
    ):
        self.documents = documents
        self.blob_store = blob_store
        self.queue = queue
        self.vector_index = vector_index
        self.max_file_size = max_file_size
        self.allowed_mime_types = {m.lower() for m in allowed_mime_types}
        self.job_max_attempts = job_max_attempts
        self.job_backoff_delay_ms = job_backoff_delay_ms

    def validate_upload(self, owner_id: str, items: Sequence[UploadItem]) -> None:
        """Reject the whole upload before anything is written."""
        if not owner_id or not owner_id.strip():
            raise ValidationError("user_id is required")
        if not items:
            raise ValidationError("No files provided")
        for item in items:
            name = display_name(item.filename)
            if not name:
                raise ValidationError("Every file needs a filename")
            if item.size > self.max_file_size:
                raise ValidationError(
                    f"File {name} exceeds maximum allowed size of {self.max_file_size // (1024 * 1024)}MB"
                )
            mime_type = base_mime_type(item.content_type)
            if mime_type not in self.allowed_mime_types:
                raise ValidationError(
                    f"File type {mime_type or 'unknown'} of {name} is not supported. "
                    f"Supported types: {sorted(self.allowed_mime_types)}"
                )

    async def upload(self, owner_id: str, items: Sequence[UploadItem]) -> List[Document]:
        """
        Store files, create pending documents and enqueue their ingestion.

        Bytes are written before the row exists, and the blob is removed again
        if the row cannot be created, so a pending row always has its bytes.
        """
        self.validate_upload(owner_id, items)
        created = []
        for item in items:
            created.append(await self._upload_one(owner_id, item))
        return created

    async def _upload_one(self, owner_id: str, item: UploadItem) -> Document:
        document_id = str(uuid.uuid4())
        job_id = str(uuid.uuid4())
        name = display_name(item.filename)

        blob_path = await self.blob_store.save(document_id, name, item.content)
        try:
            document = self.documents.create(
                id=document_id,
                name=name,
                blob_path=blob_path,
                size=item.size,
                owner_id=owner_id,
                status=DocumentStatus.PENDING.value,
                job_id=job_id,
                version=1,
            )
        except Exception:
            logger.error(f"Could not create document row for {name}; removing stored blob", exc_info=True)
            await self.blob_store.delete(blob_path)
            raise

        await self._schedule(document, job_id)
        logger.info(f"Document uploaded: {document_id} - {name} ({item.size} bytes) for user {owner_id}")
        return self.documents.get(document_id)

    async def _schedule(self, document: Document, job_id: str) -> None:
        payload = IngestionJobPayload(
            document_id=document.id,
            owner_id=document.owner_id,
            blob_path=document.blob_path,
        )
        try:
            await asyncio.to_thread(
                self.queue.enqueue,
                INGEST_JOB_TYPE,
                payload.model_dump(),
                max_attempts=self.job_max_attempts,
                backoff_delay_ms=self.job_backoff_delay_ms,
                job_id=job_id,
            )
        except Exception as e:
            logger.error(f"Could not enqueue ingestion of document {document.id}: {e}", exc_info=True)
            self.documents.update_if_version(
                document.id, document.version, bump=True,
                status=DocumentStatus.ERROR.value,
                error_message=f"Could not schedule processing: {e}",
            )

    def _get_owned(self, document_id: str, owner_id: Optional[str]) -> Document:
        document = self.documents.get(document_id) if document_id else None
        if document is None or document.status == DocumentStatus.DELETED.value:
            raise NotFoundError("File not found")
        if owner_id is not None and document.owner_id != owner_id:
            raise ForbiddenError("You do not have access to this file")
        return document

    def list_documents(self, owner_id: str, status: Optional[DocumentStatus] = None) -> List[Document]:
        if not owner_id:
            raise ValidationError("user_id is required")
        return self.documents.list_for_owner(owner_id, status)

    def get_status(self, document_id: str, owner_id: Optional[str] = None) -> Document:
        """Document with the attempt count of its current job."""
        return self._get_owned(document_id, owner_id)

    async def delete(self, document_id: str, owner_id: str) -> None:
        """
        Soft-delete a document.

        A queued job is removed; a running one is left to finish and will find
        the document deleted when it tries to write.
        """
        if not owner_id:
            raise ValidationError("user_id is required")
        document = self._get_owned(document_id, owner_id)
        if not self.documents.mark_deleted(document.id):
            raise NotFoundError("File not found")

        await asyncio.to_thread(self.queue.remove, document.job_id)
        collection = document.collection_id or self.vector_index.collection_for(document.owner_id)
        try:
            await asyncio.to_thread(self.vector_index.delete_document_chunks, collection, document.id)
        except Exception as e:
            # Chunks of a deleted document are already excluded from retrieval
            logger.error(f"Could not remove chunks of deleted document {document.id}: {e}", exc_info=True)
        logger.info(f"Document deleted: {document.id}")

    async def retry(self, document_id: str, owner_id: Optional[str] = None) -> Document:
        """Re-enqueue a document that ended in error."""
        document = self._get_owned(document_id, owner_id)
        if document.status != DocumentStatus.ERROR.value:
            raise ValidationError(f"Only files in error can be retried (status is {document.status})")
        if await asyncio.to_thread(self.queue.is_active, document.job_id):
            raise ValidationError("A processing job is already active for this file")

        job_id = str(uuid.uuid4())
        if not self.documents.reset_for_retry(document.id, document.version, job_id):
            raise ValidationError("File changed while retrying; refresh and try again")

        document = self.documents.get(document.id)
        await self._schedule(document, job_id)
        logger.info(f"Document {document.id} re-enqueued as job {job_id}")
        return self.documents.get(document.id)

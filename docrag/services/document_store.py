"""
Record store access for documents.

Every status change goes through a conditional update so that a writer
holding an outdated ``version`` (or an outdated ``job_id``) changes nothing.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import sessionmaker

from ..core.database import utcnow
from ..models.document import Document
from ..schemas.document import DocumentStatus

logger = logging.getLogger(__name__)


class DocumentRepository:
    """CRUD, filtered queries and fenced field updates for Document rows."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(self, **fields: Any) -> Document:
        document = Document(**fields)
        with self.session_factory() as db:
            db.add(document)
            db.commit()
            db.refresh(document)
        return document

    def get(self, document_id: str) -> Optional[Document]:
        with self.session_factory() as db:
            return db.get(Document, document_id)

    def list_for_owner(self, owner_id: str, status: Optional[DocumentStatus] = None) -> List[Document]:
        """Owner's documents, newest first, excluding deleted ones unless asked for."""
        stmt = select(Document).where(Document.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(Document.status == status.value)
        else:
            stmt = stmt.where(Document.status != DocumentStatus.DELETED.value)
        stmt = stmt.order_by(Document.created_at.desc(), Document.id)
        with self.session_factory() as db:
            return list(db.execute(stmt).scalars().all())

    def processed_document_ids(self, owner_id: str) -> List[str]:
        with self.session_factory() as db:
            return list(db.execute(
                select(Document.id).where(
                    Document.owner_id == owner_id,
                    Document.status == DocumentStatus.PROCESSED.value,
                )
            ).scalars().all())

    def embedding_models(self, document_ids: Iterable[str]) -> List[str]:
        ids = list(document_ids)
        if not ids:
            return []
        with self.session_factory() as db:
            return list(db.execute(
                select(Document.embedding_model).where(Document.id.in_(ids)).distinct()
            ).scalars().all())

    def find_processed_twin(
        self, owner_id: str, content_hash: str, embedding_model: str, exclude_id: str
    ) -> Optional[Document]:
        """A processed document of the same owner with identical bytes and embedding model."""
        with self.session_factory() as db:
            return db.execute(
                select(Document)
                .where(
                    Document.owner_id == owner_id,
                    Document.content_hash == content_hash,
                    Document.embedding_model == embedding_model,
                    Document.status == DocumentStatus.PROCESSED.value,
                    Document.id != exclude_id,
                )
                .order_by(Document.processed_at.desc())
                .limit(1)
            ).scalar_one_or_none()

    def _conditional_update(self, where: list, values: Dict[str, Any]) -> bool:
        values.setdefault("updated_at", utcnow())
        with self.session_factory() as db:
            result = db.execute(
                update(Document)
                .where(*where)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        return result.rowcount == 1

    def claim_for_job(self, document_id: str, job_id: str, attempt: int, lease_seconds: int) -> Optional[int]:
        """
        Move a document to processing for this job and lease it to the caller.

        Only succeeds while ``job_id`` is still the document's job and the
        document is pending, or processing without a live lease (a retried or
        redelivered attempt). A second delivery of a job that is still running
        finds the lease held and gets None. Returns the new version, which
        fences all later writes of this attempt.
        """
        now = utcnow()
        claimed = self._conditional_update(
            [
                Document.id == document_id,
                Document.job_id == job_id,
                or_(
                    Document.status == DocumentStatus.PENDING.value,
                    and_(
                        Document.status == DocumentStatus.PROCESSING.value,
                        or_(Document.lease_expires_at.is_(None), Document.lease_expires_at < now),
                    ),
                ),
            ],
            {
                "status": DocumentStatus.PROCESSING.value,
                "version": Document.version + 1,
                "attempts": attempt,
                "lease_expires_at": now + timedelta(seconds=lease_seconds),
                "error_message": None,
                "chunk_count": None,
                "collection_id": None,
            },
        )
        if not claimed:
            return None
        with self.session_factory() as db:
            return db.execute(select(Document.version).where(Document.id == document_id)).scalar_one()

    def renew_lease(self, document_id: str, version: int, lease_seconds: int) -> bool:
        """Extend the lease of a running attempt; False once the attempt is superseded."""
        return self.update_if_version(document_id, version, lease_expires_at=utcnow() + timedelta(seconds=lease_seconds))

    def release_lease(self, document_id: str, version: int) -> bool:
        """Give up the lease after a failed attempt so the retry can claim the document."""
        return self.update_if_version(document_id, version, lease_expires_at=None)

    def update_if_version(self, document_id: str, version: int, bump: bool = False, **values: Any) -> bool:
        """Write fields only if nobody changed the document since ``version``."""
        if bump:
            values["version"] = Document.version + 1
        return self._conditional_update(
            [Document.id == document_id, Document.version == version],
            values,
        )

    def fail_for_job(self, document_id: str, job_id: str, message: str) -> bool:
        """Mark the document errored, if this job still owns an unfinished run."""
        return self._conditional_update(
            [
                Document.id == document_id,
                Document.job_id == job_id,
                Document.status.in_([DocumentStatus.PENDING.value, DocumentStatus.PROCESSING.value]),
            ],
            {
                "status": DocumentStatus.ERROR.value,
                "error_message": message,
                "chunk_count": None,
                "collection_id": None,
                "lease_expires_at": None,
                "version": Document.version + 1,
            },
        )

    def reset_for_retry(self, document_id: str, version: int, job_id: str) -> bool:
        """error -> pending with a fresh job id."""
        return self._conditional_update(
            [
                Document.id == document_id,
                Document.version == version,
                Document.status == DocumentStatus.ERROR.value,
            ],
            {
                "status": DocumentStatus.PENDING.value,
                "error_message": None,
                "job_id": job_id,
                "attempts": 0,
                "lease_expires_at": None,
                "version": Document.version + 1,
            },
        )

    def mark_deleted(self, document_id: str) -> bool:
        return self._conditional_update(
            [Document.id == document_id, Document.status != DocumentStatus.DELETED.value],
            {
                "status": DocumentStatus.DELETED.value,
                "chunk_count": None,
                "collection_id": None,
                "error_message": None,
                "lease_expires_at": None,
                "version": Document.version + 1,
            },
        )

    def count_by_status(self) -> Dict[str, int]:
        with self.session_factory() as db:
            rows = db.execute(select(Document.status, func.count()).group_by(Document.status)).all()
        counts = {status.value: 0 for status in DocumentStatus}
        counts.update({status: count for status, count in rows})
        return counts

    def count_stalled(self) -> int:
        """Documents left processing by a run whose lease ran out."""
        with self.session_factory() as db:
            return db.execute(
                select(func.count()).select_from(Document).where(
                    Document.status == DocumentStatus.PROCESSING.value,
                    Document.lease_expires_at < utcnow(),
                )
            ).scalar_one()

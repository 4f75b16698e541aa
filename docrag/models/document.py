"""
Document model for storing uploaded file metadata and processing status.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from ..core.database import Base, utcnow


class Document(Base):
    """One uploaded file and where it is in the ingestion state machine."""

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    blob_path = Column(String(500), nullable=False)
    size = Column(Integer, nullable=False)
    owner_id = Column(String(255), nullable=False, index=True)

    # File metadata, resolved from the stored bytes by the worker
    mime_type = Column(String(100), nullable=True)
    extension = Column(String(20), nullable=True)
    content_hash = Column(String(64), nullable=True)

    # Processing status
    status = Column(String(20), nullable=False, default="pending")  # pending, processing, processed, error, deleted
    error_message = Column(Text, nullable=True)
    job_id = Column(String(36), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    attempts = Column(Integer, nullable=False, default=0)
    # A claimed run holds the document until this time; renewed between steps
    lease_expires_at = Column(DateTime, nullable=True)

    # Vector store metadata
    chunk_count = Column(Integer, nullable=True)
    collection_id = Column(String(255), nullable=True)
    embedding_model = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_documents_owner_hash", "owner_id", "content_hash"),
    )

    def __repr__(self):
        return f"<Document(id={self.id}, name='{self.name}', status='{self.status}')>"

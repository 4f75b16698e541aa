"""
Pydantic schemas for document-related API endpoints and job payloads.
"""
from typing import Optional, List
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DocumentStatus(str, Enum):
    """Document processing status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"
    DELETED = "deleted"


class CamelModel(BaseModel):
    """Serializes field names in camelCase, accepts either form on input."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UploadedFile(CamelModel):
    id: str
    name: str
    size: int
    type: Optional[str] = None


class FileUploadResponse(CamelModel):
    files: List[UploadedFile]


class DocumentSummary(CamelModel):
    """One row of the file listing."""
    id: str
    name: str
    size: int
    status: DocumentStatus
    mime_type: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    chunk_count: Optional[int] = None


class DocumentListResponse(CamelModel):
    files: List[DocumentSummary]


class DocumentStatusResponse(CamelModel):
    """Processing status of a single document."""
    id: str
    name: str
    status: DocumentStatus
    chunk_count: Optional[int] = None
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    attempts: Optional[int] = None


class RetryResponse(CamelModel):
    id: str
    status: DocumentStatus
    job_id: str


class DeleteResponse(CamelModel):
    id: str
    message: str


class IngestionJobPayload(BaseModel):
    """Payload carried by an ingestion job."""
    document_id: str
    owner_id: str
    blob_path: str

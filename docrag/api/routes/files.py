"""
API routes for file management (upload, list, delete, processing status, retry).
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ...schemas.document import (
    DeleteResponse,
    DocumentListResponse,
    DocumentStatus,
    DocumentStatusResponse,
    DocumentSummary,
    FileUploadResponse,
    RetryResponse,
    UploadedFile,
)
from ...services.document_service import DocumentService, UploadItem
from ..dependencies import get_document_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/files", tags=["files"])


@router.post("", response_model=FileUploadResponse)
async def upload_files(
    files: Optional[List[UploadFile]] = File(default=None),
    user_id: str = Form(default=""),
    service: DocumentService = Depends(get_document_service),
):
    """
    Upload one or more files for ingestion.

    - **files**: PDF, DOCX, TXT, MD, CSV or JSON files
    - **user_id**: Owner of the uploaded files

    Every file is validated before any is stored. Processing runs in the
    background; poll ``/files/status`` for progress.
    """
    items = []
    declared_types = []
    for upload in files or []:
        content = await upload.read()
        items.append(UploadItem(filename=upload.filename or "", content_type=upload.content_type, content=content))
        declared_types.append(upload.content_type)

    documents = await service.upload(user_id, items)
    return FileUploadResponse(files=[
        UploadedFile(id=doc.id, name=doc.name, size=doc.size, type=declared)
        for doc, declared in zip(documents, declared_types)
    ])


@router.get("", response_model=DocumentListResponse)
async def list_files(
    user_id: str = Query(default=""),
    status: Optional[DocumentStatus] = Query(default=None),
    service: DocumentService = Depends(get_document_service),
):
    """List the caller's files, newest first. Deleted files are not shown."""
    documents = service.list_documents(user_id, status)
    return DocumentListResponse(files=[DocumentSummary.model_validate(doc) for doc in documents])


@router.delete("", response_model=DeleteResponse)
async def delete_file(
    file_id: str = Query(default=""),
    user_id: str = Query(default=""),
    service: DocumentService = Depends(get_document_service),
):
    """Delete a file owned by the caller."""
    await service.delete(file_id, user_id)
    return DeleteResponse(id=file_id, message="File deleted successfully")


@router.get("/status", response_model=DocumentStatusResponse)
async def file_status(
    file_id: str = Query(default=""),
    user_id: Optional[str] = Query(default=None),
    service: DocumentService = Depends(get_document_service),
):
    """Processing status of one file."""
    return DocumentStatusResponse.model_validate(service.get_status(file_id, user_id))


@router.post("/retry", response_model=RetryResponse)
async def retry_file(
    file_id: str = Query(default=""),
    user_id: Optional[str] = Query(default=None),
    service: DocumentService = Depends(get_document_service),
):
    """Re-enqueue a file whose processing ended in error."""
    document = await service.retry(file_id, user_id)
    return RetryResponse(id=document.id, status=document.status, job_id=document.job_id)

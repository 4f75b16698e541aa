"""
Chat API routes for retrieval-augmented conversations.
"""
import logging

from fastapi import APIRouter, Depends, Query

from ...core.errors import ValidationError
from ...schemas.chat import (
    ChatData,
    ChatHistoryResponse,
    ChatMessageResponse,
    ChatRequest,
    ChatResponse,
    ContextChunk,
)
from ...services.chat_service import ChatService
from ..dependencies import get_chat_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
):
    """
    Answer a query from the caller's processed documents.

    - **userId**: Caller; only their documents are searched
    - **userQuery**: The question
    - **parentMessageId**: Optional message this one replies to
    - **k**: Optional number of context chunks
    """
    answer = await service.answer(
        request.user_id,
        request.user_query,
        parent_message_id=request.parent_message_id,
        k=request.k,
    )
    return ChatResponse(data=ChatData(
        text=answer.text,
        context=[ContextChunk(text=c.text, metadata=c.metadata, score=c.score) for c in answer.context],
        message_id=answer.message_id,
    ))


@router.get("/history", response_model=ChatHistoryResponse)
async def chat_history(
    user_id: str = Query(default=""),
    limit: int = Query(default=50, ge=1, le=500),
    service: ChatService = Depends(get_chat_service),
):
    """Most recent messages of the caller, oldest first."""
    if not user_id:
        raise ValidationError("user_id is required")
    messages = service.history(user_id, limit)
    return ChatHistoryResponse(messages=[ChatMessageResponse.model_validate(m) for m in messages])

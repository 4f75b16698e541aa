"""
Pydantic schemas for chat-related API endpoints.
"""
import json
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator

from .document import CamelModel


class MessageRole(str, Enum):
    """Message role enumeration."""
    USER = "user"
    ASSISTANT = "assistant"


class ChatRequest(CamelModel):
    """Body of POST /chat."""
    user_id: str = Field(min_length=1)
    user_query: str = Field(min_length=1)
    parent_message_id: Optional[str] = None
    k: Optional[int] = Field(default=None, ge=1, le=50)

    @field_validator("user_id", "user_query")
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class ContextChunk(BaseModel):
    """A retrieved chunk forwarded to generation."""
    text: str
    metadata: Dict[str, Any]
    score: Optional[float] = None


class ChatData(CamelModel):
    text: str
    context: List[ContextChunk]
    message_id: str


class ChatResponse(BaseModel):
    data: ChatData


class ChatMessageResponse(CamelModel):
    """Schema for a stored chat message."""
    id: str
    content: str
    role: MessageRole
    context_document_ids: List[str] = []
    parent_message_id: Optional[str] = None
    timestamp: datetime

    @field_validator("context_document_ids", mode="before")
    def parse_context_document_ids(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return []
        return v


class ChatHistoryResponse(BaseModel):
    messages: List[ChatMessageResponse]

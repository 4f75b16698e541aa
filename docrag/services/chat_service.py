"""
Chat service: retrieval-augmented answers and message history.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..core.errors import InternalError, NotFoundError
from ..models.chat import ChatMessage
from ..schemas.chat import MessageRole
from .llm_service import Generator
from .retrieval import RetrievalService
from .vector_store import RetrievedChunk

logger = logging.getLogger(__name__)


@dataclass
class ChatAnswer:
    text: str
    context: List[RetrievedChunk]
    message_id: str


def context_document_ids(chunks: List[RetrievedChunk]) -> List[str]:
    """Distinct document ids in retrieval order."""
    seen = []
    for chunk in chunks:
        document_id = chunk.metadata.get("document_id")
        if document_id and document_id not in seen:
            seen.append(document_id)
    return seen


class ChatService:
    """Answers user queries from their own documents."""

    def __init__(
        self,
        session_factory: sessionmaker,
        retrieval: RetrievalService,
        generator: Generator,
        history_limit: int = 10,
    ):
        self.session_factory = session_factory
        self.retrieval = retrieval
        self.generator = generator
        self.history_limit = history_limit

    def _save(self, **fields) -> ChatMessage:
        message = ChatMessage(id=str(uuid.uuid4()), **fields)
        with self.session_factory() as db:
            db.add(message)
            db.commit()
            db.refresh(message)
        return message

    def _recent_turns(self, owner_id: str, exclude_id: str) -> List[Dict[str, str]]:
        with self.session_factory() as db:
            messages = db.execute(
                select(ChatMessage)
                .where(ChatMessage.owner_id == owner_id, ChatMessage.id != exclude_id)
                .order_by(ChatMessage.timestamp.desc())
                .limit(self.history_limit)
            ).scalars().all()
        return [{"role": m.role, "content": m.content} for m in reversed(messages)]

    async def answer(
        self,
        owner_id: str,
        query: str,
        parent_message_id: Optional[str] = None,
        k: Optional[int] = None,
    ) -> ChatAnswer:
        """
        Retrieve context for the query and generate an answer.

        Both the user's query and the answer are stored; the answer records
        which documents its context came from.
        """
        if parent_message_id:
            with self.session_factory() as db:
                parent = db.get(ChatMessage, parent_message_id)
            if parent is None or parent.owner_id != owner_id:
                raise NotFoundError("Parent message not found")

        user_message = self._save(
            content=query,
            role=MessageRole.USER.value,
            owner_id=owner_id,
            context_document_ids="[]",
            parent_message_id=parent_message_id,
        )
        history = self._recent_turns(owner_id, exclude_id=user_message.id)

        context = await self.retrieval.query(owner_id, query, k)
        try:
            text = await self.generator.complete(query, context, history)
        except Exception as e:
            logger.error(f"Answer generation failed for user {owner_id}: {e}", exc_info=True)
            raise InternalError("Could not generate an answer, please try again") from e

        assistant_message = self._save(
            content=text,
            role=MessageRole.ASSISTANT.value,
            owner_id=owner_id,
            context_document_ids=json.dumps(context_document_ids(context)),
            parent_message_id=user_message.id,
        )
        logger.info(f"Chat answer {assistant_message.id} for user {owner_id} used {len(context)} chunks")
        return ChatAnswer(text=text, context=context, message_id=assistant_message.id)

    def history(self, owner_id: str, limit: int = 50) -> List[ChatMessage]:
        """Owner's most recent messages, oldest first."""
        with self.session_factory() as db:
            messages = db.execute(
                select(ChatMessage)
                .where(ChatMessage.owner_id == owner_id)
                .order_by(ChatMessage.timestamp.desc())
                .limit(limit)
            ).scalars().all()
        return list(reversed(messages))

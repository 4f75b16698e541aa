"""
Chat message model for storing conversation turns.
"""
from sqlalchemy import Column, String, DateTime, Text
from ..core.database import Base, utcnow


class ChatMessage(Base):
    """One turn in a user's conversation."""

    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True)
    content = Column(Text, nullable=False)
    role = Column(String(20), nullable=False)  # user, assistant
    owner_id = Column(String(255), nullable=False, index=True)

    # JSON list of document ids the answer was grounded on, in retrieval order
    context_document_ids = Column(Text, nullable=False, default="[]")
    parent_message_id = Column(String(36), nullable=True)

    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<ChatMessage(id={self.id}, role='{self.role}', owner_id='{self.owner_id}')>"

"""Message model: one inbound or outbound message in a conversation."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.constants.inbox import ContentType, MessageStatus
from app.db import Base
from app.models.mixins import JSONType, utcnow


class Message(Base):
    """Content is immutable after insert; only status moves (forward)."""

    __tablename__ = "messages"

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    direction = Column(String(16), nullable=False)  # 'incoming' | 'outgoing'
    content = Column(Text, nullable=True)
    content_type = Column(String(32), nullable=False, default=ContentType.TEXT.value)
    media_url = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default=MessageStatus.PENDING.value)
    agent_id = Column(Uuid, nullable=True)
    external_id = Column(String(255), nullable=True, unique=True)
    extra = Column(
        "metadata", JSONType, nullable=True, default=dict
    )  # DB column "metadata"; avoid shadowing Base.metadata
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    @property
    def message_metadata(self) -> dict | None:
        """Expose DB column 'metadata' for Pydantic/serialization (avoid shadowing Base.metadata)."""
        return self.extra

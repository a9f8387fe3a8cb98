"""Conversation model: one thread between a channel and an external contact."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.constants.inbox import ConversationStatus
from app.db import Base
from app.models.mixins import JSONType, TimestampMixin


class Conversation(Base, TimestampMixin):
    __tablename__ = "conversations"

    __table_args__ = (
        UniqueConstraint(
            "channel_id",
            "contact_identifier",
            name="uq_conversations_channel_contact",
        ),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id = Column(
        Uuid,
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contact_identifier = Column(String(255), nullable=False)
    contact_name = Column(String(255), nullable=True)
    contact_avatar = Column(Text, nullable=True)
    contact_phone = Column(String(64), nullable=True)
    contact_email = Column(String(255), nullable=True)
    status = Column(
        String(32), nullable=False, default=ConversationStatus.ACTIVE.value
    )
    assigned_agent_id = Column(Uuid, nullable=True, index=True)  # agents live elsewhere
    unread_count = Column(Integer, nullable=False, default=0)
    last_message = Column(String(100), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    labels = Column(JSONType, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    extra = Column(
        "metadata", JSONType, nullable=True, default=dict
    )  # DB column "metadata"; avoid shadowing Base.metadata

    channel = relationship("Channel", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.created_at",
    )

    @property
    def platform(self) -> str | None:
        return self.channel.platform if self.channel is not None else None

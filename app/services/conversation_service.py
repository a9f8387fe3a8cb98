"""Conversation find-or-create, counters and agent-facing updates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.inbox import PREVIEW_LENGTH
from app.exceptions import ConversationNotFound
from app.models.channel import Channel
from app.models.conversation import Conversation
from app.schemas.inbox import ConversationCreate, ConversationUpdate


def make_preview(content: Optional[str]) -> str:
    return (content or "")[:PREVIEW_LENGTH]


class ConversationService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        return (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_id)
            .first()
        )

    def require_conversation(self, conversation_id: UUID) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def find_by_contact(
        self, channel_id: UUID, contact_identifier: str
    ) -> Optional[Conversation]:
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.channel_id == channel_id,
                Conversation.contact_identifier == contact_identifier,
            )
            .first()
        )

    def create_conversation(self, data: ConversationCreate) -> Conversation:
        payload = data.model_dump()
        payload["status"] = str(data.status)
        conversation = Conversation(**payload, labels=[], extra={})
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def get_or_create(
        self,
        channel_id: UUID,
        contact_identifier: str,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Conversation, bool]:
        """
        Get the conversation for (channel, contact) or create it. Returns (conversation, created).

        Concurrent creators race on the unique constraint; the loser rolls back
        and reads the winner's row.
        """
        conversation = self.find_by_contact(channel_id, contact_identifier)
        if conversation is not None:
            return conversation, False
        data = ConversationCreate(
            channel_id=channel_id,
            contact_identifier=contact_identifier,
            **(defaults or {}),
        )
        try:
            return self.create_conversation(data), True
        except IntegrityError:
            self.db.rollback()
            conversation = self.find_by_contact(channel_id, contact_identifier)
            if conversation is None:
                raise
            return conversation, False

    def record_incoming(self, conversation_id: UUID, content: Optional[str]) -> None:
        """Atomically bump unread_count and refresh the preview. Caller commits."""
        self.db.query(Conversation).filter(Conversation.id == conversation_id).update(
            {
                Conversation.unread_count: Conversation.unread_count + 1,
                Conversation.last_message: make_preview(content),
                Conversation.last_message_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )

    def record_outgoing(self, conversation_id: UUID, content: Optional[str]) -> None:
        """Refresh the preview without touching unread_count. Caller commits."""
        self.db.query(Conversation).filter(Conversation.id == conversation_id).update(
            {
                Conversation.last_message: make_preview(content),
                Conversation.last_message_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )

    def mark_read(self, conversation_id: UUID) -> Conversation:
        conversation = self.require_conversation(conversation_id)
        self.db.query(Conversation).filter(Conversation.id == conversation_id).update(
            {Conversation.unread_count: 0}, synchronize_session=False
        )
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def update_conversation(
        self, conversation_id: UUID, data: ConversationUpdate
    ) -> Conversation:
        conversation = self.require_conversation(conversation_id)
        update_data = data.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            setattr(conversation, key, str(value) if key == "status" else value)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def assign_agent(
        self, conversation_id: UUID, agent_id: Optional[UUID]
    ) -> Conversation:
        return self.update_conversation(
            conversation_id, ConversationUpdate(assigned_agent_id=agent_id)
        )

    def total_unread(self) -> int:
        return int(
            self.db.query(func.coalesce(func.sum(Conversation.unread_count), 0)).scalar()
            or 0
        )

    def conversations_query(
        self,
        platform: Optional[str] = None,
        status: Optional[str] = None,
        agent_id: Optional[UUID] = None,
        unread_only: bool = False,
        search: Optional[str] = None,
        channel_id: Optional[UUID] = None,
    ) -> Select:
        """Select statement for the inbox list (for pagination), newest activity first."""
        stmt = select(Conversation)
        if platform is not None:
            stmt = stmt.join(Channel, Channel.id == Conversation.channel_id).where(
                Channel.platform == platform
            )
        if channel_id is not None:
            stmt = stmt.where(Conversation.channel_id == channel_id)
        if status is not None:
            stmt = stmt.where(Conversation.status == status)
        if agent_id is not None:
            stmt = stmt.where(Conversation.assigned_agent_id == agent_id)
        if unread_only:
            stmt = stmt.where(Conversation.unread_count > 0)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    Conversation.contact_name.ilike(pattern),
                    Conversation.contact_identifier.ilike(pattern),
                    Conversation.contact_phone.ilike(pattern),
                    Conversation.last_message.ilike(pattern),
                )
            )
        return stmt.order_by(
            Conversation.last_message_at.desc().nulls_last(),
            Conversation.created_at.desc(),
        )

"""
Message persistence.

Message content is immutable once stored. Platform message ids are the
idempotency key; status only moves forward.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.inbox import (
    MESSAGE_STATUS_PREDECESSORS,
    ContentType,
    MessageDirection,
    MessageStatus,
)
from app.exceptions import DuplicateEvent
from app.models.message import Message

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_message(self, message_id: UUID) -> Optional[Message]:
        return self.db.query(Message).filter(Message.id == message_id).first()

    def get_by_external_id(self, external_id: str) -> Optional[Message]:
        return self.db.query(Message).filter(Message.external_id == external_id).first()

    def external_ids_present(self, external_ids: list[str]) -> set[str]:
        if not external_ids:
            return set()
        rows = (
            self.db.query(Message.external_id)
            .filter(Message.external_id.in_(external_ids))
            .all()
        )
        return {row[0] for row in rows}

    def add_message(
        self,
        conversation_id: UUID,
        direction: MessageDirection,
        content: Optional[str],
        content_type: ContentType = ContentType.TEXT,
        media_url: Optional[str] = None,
        status: MessageStatus = MessageStatus.PENDING,
        external_id: Optional[str] = None,
        agent_id: Optional[UUID] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        """
        Add a message to the session and flush. Caller commits.

        Raises:
            DuplicateEvent: external_id is already stored.
        """
        if external_id is not None and self.get_by_external_id(external_id) is not None:
            raise DuplicateEvent(external_id)
        message = Message(
            conversation_id=conversation_id,
            direction=direction.value,
            content=content,
            content_type=str(content_type),
            media_url=media_url,
            status=status.value,
            external_id=external_id,
            agent_id=agent_id,
            extra=metadata or {},
        )
        self.db.add(message)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if external_id is not None:
                raise DuplicateEvent(external_id) from e
            raise
        return message

    def create_message(self, **kwargs: Any) -> Tuple[Message, bool]:
        """Create and commit a message. A repeated external_id returns (existing, False)."""
        try:
            message = self.add_message(**kwargs)
        except DuplicateEvent as dup:
            existing = self.get_by_external_id(dup.external_id)
            if existing is None:
                raise
            return existing, False
        self.db.commit()
        self.db.refresh(message)
        return message, True

    def attach_external_id(self, message_id: UUID, external_id: str) -> Optional[Message]:
        message = self.get_message(message_id)
        if message is None:
            return None
        message.external_id = external_id
        self.db.commit()
        self.db.refresh(message)
        return message

    def update_status(
        self,
        status: MessageStatus,
        message_id: Optional[UUID] = None,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Message]:
        """
        Move a message status forward. Returns the message when the update applied,
        None when the message is unknown or the update would regress it.
        """
        if message_id is None and external_id is None:
            raise ValueError("message_id or external_id is required")
        allowed = [s.value for s in MESSAGE_STATUS_PREDECESSORS[status]]
        if not allowed:
            return None
        q = self.db.query(Message).filter(Message.status.in_(allowed))
        if message_id is not None:
            q = q.filter(Message.id == message_id)
        else:
            q = q.filter(Message.external_id == external_id)
        # Conditional UPDATE: concurrent receipts cannot move a status backwards.
        updated = q.update({Message.status: status.value}, synchronize_session=False)
        if not updated:
            self.db.rollback()
            logger.debug(
                "Ignored status %s for message %s", status.value, message_id or external_id
            )
            return None
        self.db.commit()
        message = (
            self.get_message(message_id)
            if message_id is not None
            else self.get_by_external_id(external_id)
        )
        if message is not None:
            self.db.refresh(message)
            if error is not None:
                message.extra = {**(message.extra or {}), "error": error}
                self.db.commit()
                self.db.refresh(message)
        return message

    def read_up_to(self, conversation_id: UUID, watermark) -> list[Message]:
        """Mark outgoing messages created at or before `watermark` as read."""
        candidates = (
            self.db.query(Message)
            .filter(
                Message.conversation_id == conversation_id,
                Message.direction == MessageDirection.OUTGOING.value,
                Message.status.in_(
                    [s.value for s in MESSAGE_STATUS_PREDECESSORS[MessageStatus.READ]]
                ),
                Message.created_at <= watermark,
            )
            .all()
        )
        updated: list[Message] = []
        for message in candidates:
            result = self.update_status(MessageStatus.READ, message_id=message.id)
            if result is not None:
                updated.append(result)
        return updated

    def messages_query(self, conversation_id: UUID) -> Select:
        return (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc())
        )

    def recent_messages(self, conversation_id: UUID, limit: int = 100) -> list[Message]:
        """Latest `limit` messages, oldest first."""
        rows = (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

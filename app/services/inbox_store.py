"""
InboxStore: the canonical store facade.

All mutation of channels, conversations and messages goes through here so
that dedup, counter and status invariants hold, and so every state change
is published to the event router exactly once.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import Select
from sqlalchemy.orm import Session

from app.constants.inbox import (
    ChannelStatus,
    ContentType,
    MessageDirection,
    MessageStatus,
    Platform,
)
from app.core.events import (
    CHANNEL_STATUS,
    CONVERSATION_UPDATED,
    MESSAGE_STATUS,
    NEW_CONVERSATION,
    NEW_MESSAGE,
    EventRouter,
    InboxEvent,
)
from app.exceptions import DuplicateEvent
from app.models.channel import Channel
from app.models.conversation import Conversation
from app.models.message import Message
from app.schemas.inbox import (
    ChannelCreate,
    ChannelRead,
    ConversationCreate,
    ConversationRead,
    ConversationUpdate,
    MessageRead,
    PlatformStats,
)
from app.services.channel_service import ChannelService
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService

logger = logging.getLogger(__name__)


class InboxStore:
    def __init__(self, db: Session, events: Optional[EventRouter] = None) -> None:
        self.db = db
        self.events = events
        self.channels = ChannelService(db)
        self.conversations = ConversationService(db)
        self.messages = MessageService(db)

    def _publish(self, event: InboxEvent) -> None:
        if self.events is not None:
            self.events.publish(event)

    def _publish_message(self, event_type: str, message: Message, conversation: Conversation) -> None:
        self._publish(
            InboxEvent(
                type=event_type,
                data={
                    "message": MessageRead.model_validate(message).model_dump(mode="json"),
                    "conversation": ConversationRead.model_validate(conversation).model_dump(
                        mode="json"
                    ),
                },
                channel_id=conversation.channel_id,
                conversation_id=conversation.id,
            )
        )

    # -- channels -------------------------------------------------------------

    def get_channel(self, channel_id: UUID) -> Optional[Channel]:
        return self.channels.get_channel(channel_id)

    def create_channel(self, data: ChannelCreate) -> Channel:
        return self.channels.create_channel(data)

    def update_channel_status(
        self,
        channel_id: UUID,
        status: ChannelStatus,
        external_id: Optional[str] = None,
        phone_number: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Channel:
        channel = self.channels.update_channel_status(
            channel_id, status, external_id=external_id, phone_number=phone_number
        )
        self.publish_channel_status(channel, **(extra or {}))
        return channel

    def publish_channel_status(self, channel: Channel, **extra: Any) -> None:
        self._publish(
            InboxEvent(
                type=CHANNEL_STATUS,
                data={
                    "channel": ChannelRead.model_validate(channel).model_dump(mode="json"),
                    **extra,
                },
                channel_id=channel.id,
            )
        )

    def update_channel_session(
        self, channel_id: UUID, session_data: Optional[Dict[str, Any]]
    ) -> Channel:
        return self.channels.update_session_data(channel_id, session_data)

    def delete_channel(self, channel_id: UUID) -> bool:
        return self.channels.delete_channel(channel_id)

    def channel_stats(self) -> List[PlatformStats]:
        return self.channels.channel_stats()

    # -- conversations --------------------------------------------------------

    def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        return self.conversations.get_conversation(conversation_id)

    def find_conversation_by_contact(
        self, channel_id: UUID, contact_identifier: str
    ) -> Optional[Conversation]:
        return self.conversations.find_by_contact(channel_id, contact_identifier)

    def create_conversation(self, data: ConversationCreate) -> Conversation:
        conversation = self.conversations.create_conversation(data)
        self._publish_conversation(NEW_CONVERSATION, conversation)
        return conversation

    def get_or_create_conversation(
        self,
        channel_id: UUID,
        contact_identifier: str,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Conversation, bool]:
        conversation, created = self.conversations.get_or_create(
            channel_id, contact_identifier, defaults
        )
        if created:
            self._publish_conversation(NEW_CONVERSATION, conversation)
        return conversation, created

    def _publish_conversation(self, event_type: str, conversation: Conversation) -> None:
        self._publish(
            InboxEvent(
                type=event_type,
                data={
                    "conversation": ConversationRead.model_validate(conversation).model_dump(
                        mode="json"
                    )
                },
                channel_id=conversation.channel_id,
                conversation_id=conversation.id,
            )
        )

    def mark_read(self, conversation_id: UUID) -> Conversation:
        conversation = self.conversations.mark_read(conversation_id)
        self._publish_conversation(CONVERSATION_UPDATED, conversation)
        return conversation

    def update_conversation(
        self, conversation_id: UUID, data: ConversationUpdate
    ) -> Conversation:
        conversation = self.conversations.update_conversation(conversation_id, data)
        self._publish_conversation(CONVERSATION_UPDATED, conversation)
        return conversation

    def assign_agent(
        self, conversation_id: UUID, agent_id: Optional[UUID]
    ) -> Conversation:
        conversation = self.conversations.assign_agent(conversation_id, agent_id)
        self._publish_conversation(CONVERSATION_UPDATED, conversation)
        return conversation

    def total_unread(self) -> int:
        return self.conversations.total_unread()

    def conversations_query(self, **filters: Any) -> Select:
        return self.conversations.conversations_query(**filters)

    def messages_query(self, conversation_id: UUID) -> Select:
        return self.messages.messages_query(conversation_id)

    # -- messages -------------------------------------------------------------

    def record_new_message(self, conversation_id: UUID, preview: Optional[str]) -> None:
        """Bump unread and preview as a single statement."""
        self.conversations.record_incoming(conversation_id, preview)
        self.db.commit()

    def record_outgoing_preview(self, conversation_id: UUID, preview: Optional[str]) -> None:
        self.conversations.record_outgoing(conversation_id, preview)
        self.db.commit()

    def create_message(self, **kwargs: Any) -> Tuple[Message, bool]:
        """Idempotent create keyed on external_id. Returns (message, created)."""
        return self.messages.create_message(**kwargs)

    def ingest_incoming_message(
        self,
        conversation: Conversation,
        content: Optional[str],
        content_type: ContentType = ContentType.TEXT,
        media_url: Optional[str] = None,
        external_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Message, bool]:
        """
        Store an inbound message and bump the conversation counters in one transaction.

        A repeated external_id is a no-op returning (existing, False): no counter
        change, no event.
        """
        try:
            message = self.messages.add_message(
                conversation_id=conversation.id,
                direction=MessageDirection.INCOMING,
                content=content,
                content_type=content_type,
                media_url=media_url,
                status=MessageStatus.DELIVERED,
                external_id=external_id,
                metadata=metadata,
            )
        except DuplicateEvent as dup:
            logger.debug("Duplicate inbound message %s ignored", dup.external_id)
            existing = self.messages.get_by_external_id(dup.external_id)
            if existing is None:
                raise
            return existing, False
        self.conversations.record_incoming(conversation.id, content)
        self.db.commit()
        self.db.refresh(message)
        self.db.refresh(conversation)
        self._publish_message(NEW_MESSAGE, message, conversation)
        return message, True

    def add_outgoing_message(
        self,
        conversation: Conversation,
        content: Optional[str],
        content_type: ContentType = ContentType.TEXT,
        media_url: Optional[str] = None,
        agent_id: Optional[UUID] = None,
        status: MessageStatus = MessageStatus.PENDING,
        external_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Message, bool]:
        """Store an outgoing message and refresh the preview (unread untouched)."""
        try:
            message = self.messages.add_message(
                conversation_id=conversation.id,
                direction=MessageDirection.OUTGOING,
                content=content,
                content_type=content_type,
                media_url=media_url,
                status=status,
                external_id=external_id,
                agent_id=agent_id,
                metadata=metadata,
            )
        except DuplicateEvent as dup:
            existing = self.messages.get_by_external_id(dup.external_id)
            if existing is None:
                raise
            return existing, False
        self.conversations.record_outgoing(conversation.id, content)
        self.db.commit()
        self.db.refresh(message)
        self.db.refresh(conversation)
        self._publish_message(NEW_MESSAGE, message, conversation)
        return message, True

    def attach_external_id(self, message_id: UUID, external_id: str) -> Optional[Message]:
        return self.messages.attach_external_id(message_id, external_id)

    def update_message_status(
        self,
        status: MessageStatus,
        message_id: Optional[UUID] = None,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Message]:
        """Forward-only status update. Returns the message if applied, else None."""
        message = self.messages.update_status(
            status, message_id=message_id, external_id=external_id, error=error
        )
        if message is not None:
            self._publish_status(message)
        return message

    def mark_read_up_to(self, conversation_id: UUID, watermark) -> List[Message]:
        updated = self.messages.read_up_to(conversation_id, watermark)
        for message in updated:
            self._publish_status(message)
        return updated

    def _publish_status(self, message: Message) -> None:
        conversation = self.conversations.get_conversation(message.conversation_id)
        self._publish(
            InboxEvent(
                type=MESSAGE_STATUS,
                data={
                    "messageId": str(message.id),
                    "externalId": message.external_id,
                    "status": message.status,
                },
                channel_id=conversation.channel_id if conversation else None,
                conversation_id=message.conversation_id,
            )
        )

    def resolve_channel(self, platform: Platform, external_id: str) -> Optional[Channel]:
        return self.channels.get_channel_by_external_id(platform, external_id)

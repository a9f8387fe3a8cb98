"""
Normalized message contracts between platform adapters and the inbox core.

Adapters convert provider payloads into these shapes; the core never sees
provider wire formats.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.constants.inbox import ContentType, MessageStatus, Platform


class InboundEnvelope(BaseModel):
    """Normalized inbound message (adapter -> core)."""

    platform: Platform
    channel_external_id: Optional[str] = None
    channel_id: Optional[UUID] = None  # set directly by session-based adapters
    contact_id: str
    contact_name: Optional[str] = None
    contact_avatar: Optional[str] = None
    contact_phone: Optional[str] = None
    content: str = ""
    content_type: ContentType = ContentType.TEXT
    media_url: Optional[str] = None
    platform_message_id: Optional[str] = None
    from_me: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)


class StatusReceipt(BaseModel):
    """Delivery / read acknowledgement for a previously sent message."""

    platform: Platform
    status: MessageStatus
    platform_message_id: Optional[str] = None
    channel_external_id: Optional[str] = None
    contact_id: Optional[str] = None
    watermark: Optional[datetime] = None  # Messenger read receipts cover all earlier messages


class ExtractedEvents(BaseModel):
    envelopes: list[InboundEnvelope] = Field(default_factory=list)
    receipts: list[StatusReceipt] = Field(default_factory=list)


class ChannelContext(BaseModel):
    """What an adapter needs to know about a channel to talk to the provider."""

    channel_id: UUID
    platform: Platform
    external_id: Optional[str] = None
    access_token: Optional[str] = None


class OutboundContent(BaseModel):
    content: str = ""
    content_type: ContentType = ContentType.TEXT
    media_url: Optional[str] = None


class SendResult(BaseModel):
    platform_message_id: Optional[str] = None


class ContactProfile(BaseModel):
    name: Optional[str] = None
    avatar: Optional[str] = None
    username: Optional[str] = None

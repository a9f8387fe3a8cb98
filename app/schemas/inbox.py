"""Pydantic schemas for channels, conversations and messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.constants.inbox import (
    ChannelStatus,
    ContentType,
    ConversationStatus,
    MessageDirection,
    MessageStatus,
    Platform,
)

# -----------------------------------------------------------------------------
# Channel schemas
# -----------------------------------------------------------------------------


class ChannelCreate(BaseModel):
    """Schema for creating a channel. access_token is plaintext here; the store encrypts it."""

    platform: Platform
    name: str
    external_id: Optional[str] = None
    phone_number: Optional[str] = None
    access_token: Optional[str] = None
    status: ChannelStatus = ChannelStatus.PENDING


class ChannelRead(BaseModel):
    """Channel for API responses. Secrets are never exposed."""

    id: UUID
    platform: Platform
    external_id: Optional[str] = None
    name: str
    phone_number: Optional[str] = None
    status: ChannelStatus
    has_session_data: bool = False
    last_active_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PlatformStats(BaseModel):
    platform: Platform
    total: int = 0
    active: int = 0


class ChannelListResponse(BaseModel):
    """Channels grouped by platform."""

    whatsapp: list[ChannelRead] = Field(default_factory=list)
    facebook: list[ChannelRead] = Field(default_factory=list)
    instagram: list[ChannelRead] = Field(default_factory=list)
    stats: list[PlatformStats] = Field(default_factory=list)


class WhatsAppInitRequest(BaseModel):
    """Start pairing. With channel_id, re-initialize that channel instead of creating one."""

    name: str = "WhatsApp"
    channel_id: Optional[UUID] = None


class FacebookConnectRequest(BaseModel):
    page_id: str
    page_name: Optional[str] = None
    access_token: str


class InstagramConnectRequest(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    access_token: str


class PairingStateRead(BaseModel):
    """Current pairing state of a session-based channel."""

    channel_id: UUID
    status: ChannelStatus
    session_state: Optional[str] = None
    qr: Optional[str] = None


class ConnectResult(BaseModel):
    channel: ChannelRead
    session_state: Optional[str] = None
    already_connected: bool = False


# -----------------------------------------------------------------------------
# Conversation schemas
# -----------------------------------------------------------------------------


class ConversationCreate(BaseModel):
    channel_id: UUID
    contact_identifier: str
    contact_name: Optional[str] = None
    contact_avatar: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    status: ConversationStatus = ConversationStatus.ACTIVE


class ConversationUpdate(BaseModel):
    """Agent-editable conversation fields. All optional."""

    contact_name: Optional[str] = None
    contact_avatar: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    status: Optional[ConversationStatus] = None
    assigned_agent_id: Optional[UUID] = None
    notes: Optional[str] = None
    labels: Optional[list[str]] = None


class AssignRequest(BaseModel):
    agent_id: Optional[UUID] = None


class ConversationRead(BaseModel):
    id: UUID
    channel_id: UUID
    platform: Optional[Platform] = None
    contact_identifier: str
    contact_name: Optional[str] = None
    contact_avatar: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    status: ConversationStatus
    assigned_agent_id: Optional[UUID] = None
    unread_count: int = 0
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    labels: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("labels", mode="before")
    @classmethod
    def _labels_default(cls, value: Any) -> list[str]:
        return value or []


# -----------------------------------------------------------------------------
# Message schemas
# -----------------------------------------------------------------------------


class MessageRead(BaseModel):
    id: UUID
    conversation_id: UUID
    direction: MessageDirection
    content: Optional[str] = None
    content_type: ContentType
    media_url: Optional[str] = None
    status: MessageStatus
    agent_id: Optional[UUID] = None
    external_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None, validation_alias="message_metadata"
    )
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class ConversationDetail(ConversationRead):
    messages: list[MessageRead] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    conversation_id: UUID
    content: str = ""
    content_type: ContentType = ContentType.TEXT
    media_url: Optional[str] = None


class SyncRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=500)


class SyncResult(BaseModel):
    imported: int
    skipped: int


# -----------------------------------------------------------------------------
# Stats
# -----------------------------------------------------------------------------


class InboxStats(BaseModel):
    total_unread: int = 0
    channels: list[PlatformStats] = Field(default_factory=list)


class WebhookFailureRead(BaseModel):
    id: UUID
    platform: str
    payload: dict[str, Any]
    error: Optional[str] = None
    attempts: int
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# -----------------------------------------------------------------------------
# Meta account discovery
# -----------------------------------------------------------------------------


class OAuthUrlResponse(BaseModel):
    url: str


class MetaTokenRequest(BaseModel):
    """A user access token, or an OAuth code to exchange for one."""

    access_token: Optional[str] = None
    code: Optional[str] = None
    redirect_uri: Optional[str] = None


class MetaPageRead(BaseModel):
    id: str
    name: Optional[str] = None
    access_token: Optional[str] = None
    category: Optional[str] = None


class InstagramAccountRead(BaseModel):
    id: str
    username: Optional[str] = None
    profile_picture_url: Optional[str] = None
    page_id: str
    page_name: Optional[str] = None
    page_access_token: Optional[str] = None

"""
Meta webhook payload schemas (Messenger and Instagram messaging).

Matches the structure Meta posts to webhook endpoints for the `page` and
`instagram` objects. Unknown fields are ignored.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class MetaParticipant(BaseModel):
    id: str


class MetaAttachmentPayload(BaseModel):
    url: Optional[str] = None


class MetaAttachment(BaseModel):
    type: str
    payload: Optional[MetaAttachmentPayload] = None


class MetaStoryRef(BaseModel):
    id: Optional[str] = None
    url: Optional[str] = None


class MetaReplyTo(BaseModel):
    mid: Optional[str] = None
    story: Optional[MetaStoryRef] = None


class MetaMessage(BaseModel):
    mid: str
    text: Optional[str] = None
    is_echo: bool = False
    attachments: Optional[list[MetaAttachment]] = None
    reply_to: Optional[MetaReplyTo] = None


class MetaDelivery(BaseModel):
    mids: list[str] = Field(default_factory=list)
    watermark: Optional[int] = None


class MetaRead(BaseModel):
    watermark: Optional[int] = None
    mid: Optional[str] = None  # Instagram read receipts name the message


class MetaMessagingEvent(BaseModel):
    """One entry.messaging[] item."""

    sender: MetaParticipant
    recipient: MetaParticipant
    timestamp: Optional[int] = None
    message: Optional[MetaMessage] = None
    delivery: Optional[MetaDelivery] = None
    read: Optional[MetaRead] = None


class MetaEntry(BaseModel):
    id: str
    time: Optional[int] = None
    messaging: list[MetaMessagingEvent] = Field(default_factory=list)


class MetaWebhookPayload(BaseModel):
    """Webhook payload root object."""

    object: str
    entry: list[MetaEntry] = Field(default_factory=list)

"""Map provider content taxonomies onto the canonical ContentType."""

from __future__ import annotations

from typing import Optional, Tuple

from app.constants.inbox import ContentType

STORY_REPLY_PREFIX = "[Story Reply] "

META_ATTACHMENT_TYPES: dict[str, ContentType] = {
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "file": ContentType.DOCUMENT,
    "location": ContentType.LOCATION,
}

WHATSAPP_MESSAGE_TYPES: dict[str, ContentType] = {
    "chat": ContentType.TEXT,
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "ptt": ContentType.AUDIO,
    "document": ContentType.DOCUMENT,
    "location": ContentType.LOCATION,
    "vcard": ContentType.CONTACT,
    "multi_vcard": ContentType.CONTACT,
    "sticker": ContentType.IMAGE,
}


def placeholder(provider_type: str) -> str:
    return f"[{provider_type}]"


def resolve_meta_attachment(attachment_type: Optional[str]) -> ContentType:
    return META_ATTACHMENT_TYPES.get((attachment_type or "").lower(), ContentType.TEXT)


def resolve_whatsapp_type(message_type: Optional[str]) -> ContentType:
    return WHATSAPP_MESSAGE_TYPES.get((message_type or "").lower(), ContentType.TEXT)


def content_with_placeholder(text: Optional[str], provider_type: str) -> str:
    """Body text, or `[type]` when a media message has no caption."""
    return text if text else placeholder(provider_type)


def story_reply(text: Optional[str]) -> Tuple[str, ContentType]:
    return f"{STORY_REPLY_PREFIX}{text or ''}", ContentType.STORY_REPLY

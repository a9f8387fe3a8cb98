"""Closed value sets for channels, conversations and messages."""

from enum import StrEnum


class Platform(StrEnum):
    WHATSAPP = "whatsapp"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"


class ChannelStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class SessionState(StrEnum):
    """In-memory state of a live platform session."""

    INITIALIZING = "initializing"
    WAITING_FOR_SCAN = "waiting_for_scan"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"


class ConversationStatus(StrEnum):
    ACTIVE = "active"
    PENDING = "pending"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class MessageDirection(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class ContentType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"
    STORY_REPLY = "story_reply"


class MessageStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class WebhookFailureStatus(StrEnum):
    FAILED = "failed"
    REPLAYED = "replayed"


# Status -> statuses it may be reached from. Anything else is a regression.
MESSAGE_STATUS_PREDECESSORS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.PENDING: frozenset(),
    MessageStatus.SENT: frozenset({MessageStatus.PENDING}),
    MessageStatus.DELIVERED: frozenset({MessageStatus.PENDING, MessageStatus.SENT}),
    MessageStatus.READ: frozenset(
        {MessageStatus.PENDING, MessageStatus.SENT, MessageStatus.DELIVERED}
    ),
    MessageStatus.FAILED: frozenset({MessageStatus.PENDING, MessageStatus.SENT}),
}

CHANNEL_STATUS_TRANSITIONS: dict[ChannelStatus, frozenset[ChannelStatus]] = {
    ChannelStatus.PENDING: frozenset(
        {ChannelStatus.PENDING, ChannelStatus.ACTIVE, ChannelStatus.ERROR}
    ),
    ChannelStatus.ACTIVE: frozenset(
        {ChannelStatus.ACTIVE, ChannelStatus.PENDING, ChannelStatus.ERROR}
    ),
    ChannelStatus.DISCONNECTED: frozenset({ChannelStatus.PENDING}),
    ChannelStatus.ERROR: frozenset({ChannelStatus.PENDING, ChannelStatus.ERROR}),
}
# Any status may move to DISCONNECTED (explicit disconnect).

PREVIEW_LENGTH = 100

# WhatsApp web ack codes.
WHATSAPP_ACK_STATUS: dict[int, MessageStatus] = {
    -1: MessageStatus.FAILED,
    0: MessageStatus.PENDING,
    1: MessageStatus.SENT,
    2: MessageStatus.DELIVERED,
    3: MessageStatus.READ,
    4: MessageStatus.READ,
}

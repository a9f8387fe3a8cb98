"""Inbox error taxonomy."""

from __future__ import annotations

from typing import Optional


class InboxError(Exception):
    """Base class for inbox errors."""


class ChannelNotFound(InboxError):
    def __init__(self, channel_id) -> None:
        super().__init__(f"Channel not found: {channel_id}")
        self.channel_id = channel_id


class ConversationNotFound(InboxError):
    def __init__(self, conversation_id) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class SessionNotReady(InboxError):
    """Outbound send attempted on a session-based channel that is not paired/ready."""

    def __init__(self, channel_id) -> None:
        super().__init__(f"Channel session is not ready: {channel_id}")
        self.channel_id = channel_id


class DuplicateEvent(InboxError):
    """A platform message id was already stored. Resolved inside the store."""

    def __init__(self, external_id: str) -> None:
        super().__init__(f"Duplicate platform message id: {external_id}")
        self.external_id = external_id


class ProviderError(InboxError):
    """A provider API call failed."""

    def __init__(
        self, platform: str, detail: str, status_code: Optional[int] = None
    ) -> None:
        super().__init__(f"{platform} provider error: {detail}")
        self.platform = platform
        self.detail = detail
        self.status_code = status_code


class ConfigurationError(InboxError):
    """Platform enabled without the credentials or runtime it needs."""


class AuthenticationFailure(InboxError):
    """A session-based channel rejected its pairing or stored credentials."""

    def __init__(self, channel_id, reason: str) -> None:
        super().__init__(f"Authentication failed for channel {channel_id}: {reason}")
        self.channel_id = channel_id
        self.reason = reason


class InvalidStatusTransition(InboxError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target


class ChannelConflict(InboxError):
    """Another active channel already owns this platform identifier."""

"""
Platform adapter interface.

Adapters encapsulate platform-specific logic and expose normalized envelopes
to the inbox core. Webhook platforms implement the verification and
extraction hooks; session platforms create a live `PlatformSession` per
channel through `create_session`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol
from uuid import UUID

from app.constants.inbox import Platform
from app.schemas.envelope import (
    ChannelContext,
    ContactProfile,
    ExtractedEvents,
    InboundEnvelope,
    OutboundContent,
    SendResult,
    StatusReceipt,
)


def find_header(request_headers: Optional[dict[str, str]], name: str) -> Optional[str]:
    """Case-insensitive header lookup (Starlette lowercases, tests may not)."""
    wanted = name.lower()
    for key, value in (request_headers or {}).items():
        if key.lower() == wanted:
            return value
    return None


class SessionListener(Protocol):
    """Callbacks a live session uses to report lifecycle and inbound events."""

    async def on_qr(self, channel_id: UUID, session: Any, qr: str) -> None: ...
    async def on_authenticated(
        self, channel_id: UUID, session: Any, session_data: dict[str, Any]
    ) -> None: ...
    async def on_ready(
        self, channel_id: UUID, session: Any, phone: Optional[str], name: Optional[str]
    ) -> None: ...
    async def on_auth_failure(self, channel_id: UUID, session: Any, reason: str) -> None: ...
    async def on_disconnected(self, channel_id: UUID, session: Any, reason: str) -> None: ...
    async def on_message(self, channel_id: UUID, envelope: InboundEnvelope) -> None: ...
    async def on_receipt(self, channel_id: UUID, receipt: StatusReceipt) -> None: ...


class PlatformSession(ABC):
    """One live connection to a session-based platform for one channel."""

    channel_id: UUID

    @abstractmethod
    async def start(self) -> None:
        """Open the session. Pairing and readiness are reported through the listener."""

    @abstractmethod
    async def send(self, recipient: str, content: OutboundContent) -> SendResult: ...

    @abstractmethod
    async def stop(self, logout: bool = False) -> None:
        """Tear the session down. With logout, stored credentials are invalidated too."""

    async def fetch_history(self, contact_id: str, limit: int = 50) -> list[InboundEnvelope]:
        return []

    async def fetch_profile_picture(self, contact_id: str) -> Optional[str]:
        return None


class BasePlatformAdapter(ABC):
    """Contract for platform adapters. New platforms implement this interface."""

    platform: Platform
    requires_session: bool = False

    def check_configuration(self) -> None:
        """Raise ConfigurationError when credentials or runtime pieces are missing."""

    # -- webhook ingestion ------------------------------------------------------

    def verify_subscription(
        self, mode: Optional[str], token: Optional[str], challenge: Optional[str]
    ) -> Optional[str]:
        """Answer a subscription handshake. Return the challenge, or None to reject."""
        return None

    def verify_webhook(
        self, raw_body: bytes, request_headers: Optional[dict[str, str]] = None
    ) -> bool:
        """
        Verify a webhook request (e.g. payload signature). Override if platform supports it.
        Return True if valid or verification not required; False to reject.
        """
        return True

    def accepts_object(self, payload: dict[str, Any]) -> bool:
        """Whether a webhook payload is addressed to this platform."""
        return False

    def extract_events(self, payload: dict[str, Any]) -> ExtractedEvents:
        """Parse a webhook payload into inbound envelopes and status receipts."""
        return ExtractedEvents()

    # -- outbound / enrichment ------------------------------------------------

    @abstractmethod
    async def send(
        self, channel: ChannelContext, recipient: str, content: OutboundContent
    ) -> SendResult:
        """Deliver a message. Raise ProviderError on failure."""

    async def fetch_contact_profile(
        self, channel: ChannelContext, contact_id: str
    ) -> ContactProfile:
        """Best-effort contact lookup; never raises."""
        return ContactProfile()

    # -- lifecycle ------------------------------------------------------------

    async def initialize(self, channel: ChannelContext) -> Optional[str]:
        """
        Prepare a newly connected webhook channel (token exchange, subscriptions).
        Returns a replacement access token when one was issued.
        """
        return None

    def create_session(
        self,
        channel: ChannelContext,
        listener: SessionListener,
        session_data: Optional[dict[str, Any]] = None,
    ) -> PlatformSession:
        raise NotImplementedError(f"{self.platform} does not use live sessions")

    async def teardown(self, channel_id: UUID) -> None:
        """Release per-channel resources."""

    async def aclose(self) -> None:
        """Release adapter-wide resources (HTTP clients)."""

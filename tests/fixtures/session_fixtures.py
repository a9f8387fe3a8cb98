"""Session-based platform doubles for connection manager and router tests."""

from typing import Any, Optional
from uuid import UUID

import pytest

from app.adapters.base import BasePlatformAdapter, PlatformSession, SessionListener
from app.constants.inbox import Platform
from app.core.session_registry import ChannelSessionRegistry
from app.exceptions import ProviderError, SessionNotReady
from app.schemas.envelope import (
    ChannelContext,
    InboundEnvelope,
    OutboundContent,
    SendResult,
)


class FakeSession(PlatformSession):
    def __init__(
        self,
        channel: ChannelContext,
        listener: SessionListener,
        session_data: Optional[dict[str, Any]] = None,
        fail_start: bool = False,
    ) -> None:
        self.channel_id = channel.channel_id
        self.listener = listener
        self.session_data = session_data
        self.fail_start = fail_start
        self.started = False
        self.stopped = False
        self.logged_out = False
        self.history: list[InboundEnvelope] = []
        self.sent: list[tuple[str, OutboundContent]] = []

    async def start(self) -> None:
        if self.fail_start:
            raise ProviderError(Platform.WHATSAPP, "Bridge unreachable")
        self.started = True

    async def stop(self, logout: bool = False) -> None:
        self.stopped = True
        self.logged_out = logout

    async def send(self, recipient: str, content: OutboundContent) -> SendResult:
        self.sent.append((recipient, content))
        return SendResult(platform_message_id=f"true_{len(self.sent)}")

    async def fetch_history(self, contact_id: str, limit: int = 50) -> list[InboundEnvelope]:
        return self.history[:limit]


class FakeSessionAdapter(BasePlatformAdapter):
    """WhatsApp-shaped adapter whose sessions are in-memory doubles."""

    platform = Platform.WHATSAPP
    requires_session = True

    def __init__(self, sessions: Optional[ChannelSessionRegistry] = None) -> None:
        self.sessions = sessions
        self.created: list[FakeSession] = []
        self.torn_down: list[UUID] = []
        self.fail_start = False

    def create_session(
        self,
        channel: ChannelContext,
        listener: SessionListener,
        session_data: Optional[dict[str, Any]] = None,
    ) -> FakeSession:
        session = FakeSession(channel, listener, session_data, fail_start=self.fail_start)
        self.created.append(session)
        return session

    async def send(
        self, channel: ChannelContext, recipient: str, content: OutboundContent
    ) -> SendResult:
        record = self.sessions.get(channel.channel_id) if self.sessions else None
        if record is None or not record.is_ready:
            raise SessionNotReady(channel.channel_id)
        return await record.session.send(recipient, content)

    async def teardown(self, channel_id: UUID) -> None:
        self.torn_down.append(channel_id)


@pytest.fixture(scope="function")
def fake_whatsapp():
    return FakeSessionAdapter()

from __future__ import annotations

from typing import Optional
from uuid import UUID

from app.commands.inbound.process_inbound_command import ProcessInboundCommand, SessionFactory
from app.commands.outbound.send_outbound_command import SendOutboundCommand
from app.commands.webhooks.meta_webhook_command import MetaWebhookCommand
from app.config import Settings
from app.core.connection_manager import ChannelConnectionManager
from app.core.events import WILDCARD, EventRouter
from app.core.registry import AdapterRegistry, build_adapter_registry
from app.core.session_registry import ChannelSessionRegistry
from app.realtime.hub import BroadcastHub
from app.services.conversation_service import ConversationService


class AppState:
    """Process-wide runtime wiring. One instance per app, stored on `app.state.inbox`."""

    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory,
        registry: Optional[AdapterRegistry] = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.events = EventRouter(max_queue_size=settings.event_queue_size)
        self.sessions = ChannelSessionRegistry()
        self.registry = (
            registry if registry is not None else build_adapter_registry(settings, self.sessions)
        )
        self.hub = BroadcastHub(
            ping_interval=settings.realtime_ping_interval_seconds,
            send_timeout=settings.realtime_send_timeout_seconds,
            conversation_channel=self.conversation_channel,
        )
        self.inbound = ProcessInboundCommand(self.registry, self.events, session_factory)
        self.connections = ChannelConnectionManager(
            self.registry, self.sessions, self.events, session_factory, self.inbound
        )
        self.outbound = SendOutboundCommand(
            self.registry, self.sessions, self.events, session_factory
        )
        self.webhooks = MetaWebhookCommand(self.registry, self.inbound)

    def conversation_channel(self, conversation_id: UUID) -> Optional[UUID]:
        with self.session_factory() as db:
            conversation = ConversationService(db).get_conversation(conversation_id)
            return conversation.channel_id if conversation is not None else None

    async def startup(self) -> None:
        self.events.subscribe(WILDCARD, self.hub.handle_event)
        await self.events.start()
        await self.hub.start()

    async def shutdown(self) -> None:
        await self.connections.shutdown()
        await self.hub.stop()
        await self.events.stop()
        self.events.unsubscribe(WILDCARD, self.hub.handle_event)
        await self.registry.aclose()

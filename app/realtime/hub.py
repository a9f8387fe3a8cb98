"""
Realtime broadcast hub.

Keeps the registry of connected agent clients, fans inbox events out to
them, relays ephemeral typing/read signals between clients and drops
clients that miss a liveness check. Ephemeral signals are never stored.

Protocol (client → server):
    { "type": "authenticate", "agentId": "..." }
    { "type": "subscribe", "channels": [...], "conversations": [...] }
    { "type": "typing", "conversationId": "...", "isTyping": true }
    { "type": "read", "conversationId": "..." }
    { "type": "ping" } / { "type": "pong" }

Protocol (server → client):
    { "type": "connected", "clientId": "..." }
    { "type": "new_message" | "new_conversation" | "channel_status"
              | "message_status" | "conversation_updated", ...event data }
    { "type": "typing" | "read", "conversationId": "...", "agentId": "..." }
    { "type": "ping" } / { "type": "pong" }
    { "type": "error", "message": "..." }
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set
from uuid import UUID, uuid4

from pydantic import ValidationError

from app.core.events import InboxEvent
from app.schemas.realtime import (
    AuthenticateFrame,
    PingFrame,
    PongFrame,
    ReadFrame,
    SubscribeFrame,
    TypingFrame,
    client_frame_adapter,
    server_frame,
)

logger = logging.getLogger(__name__)


@dataclass
class ClientConnection:
    client_id: str
    websocket: Any
    agent_id: Optional[UUID] = None
    channels: Set[UUID] = field(default_factory=set)
    conversations: Set[UUID] = field(default_factory=set)
    is_alive: bool = True

    def wants(self, channel_id: Optional[UUID], conversation_id: Optional[UUID]) -> bool:
        """Empty filters mean everything."""
        if self.channels and channel_id is not None and channel_id not in self.channels:
            return False
        if (
            self.conversations
            and conversation_id is not None
            and conversation_id not in self.conversations
        ):
            return False
        return True


class BroadcastHub:
    def __init__(
        self,
        ping_interval: float = 30.0,
        send_timeout: float = 5.0,
        conversation_channel: Optional[Callable[[UUID], Optional[UUID]]] = None,
    ) -> None:
        self._ping_interval = ping_interval
        self._send_timeout = send_timeout
        self._conversation_channel = conversation_channel
        self._clients: Dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()
        self._heartbeat: Optional[asyncio.Task] = None

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def get_client(self, client_id: str) -> Optional[ClientConnection]:
        return self._clients.get(client_id)

    async def start(self) -> None:
        if self._heartbeat is None or self._heartbeat.done():
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name="realtime-heartbeat")

    async def stop(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            self._heartbeat = None
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await self._close(client)

    # -- registry ---------------------------------------------------------------

    async def register(self, websocket: Any) -> ClientConnection:
        """Register an accepted websocket and greet it with its client id."""
        client = ClientConnection(client_id=str(uuid4()), websocket=websocket)
        async with self._lock:
            self._clients[client.client_id] = client
        logger.info("Realtime client connected: %s", client.client_id)
        await self._send(client, server_frame("connected", clientId=client.client_id))
        return client

    async def unregister(self, client_id: str) -> Optional[ClientConnection]:
        async with self._lock:
            client = self._clients.pop(client_id, None)
        if client is not None:
            logger.info("Realtime client disconnected: %s", client_id)
        return client

    async def _drop(self, client: ClientConnection) -> None:
        if await self.unregister(client.client_id) is not None:
            await self._close(client)

    async def _close(self, client: ClientConnection) -> None:
        try:
            await client.websocket.close()
        except Exception as e:
            logger.debug("Closing realtime client %s failed: %s", client.client_id, e)

    # -- inbound frames ---------------------------------------------------------

    async def handle_frame(self, client: ClientConnection, raw: str | dict[str, Any]) -> None:
        """Apply one client frame. Any frame counts as a liveness answer."""
        client.is_alive = True
        try:
            if isinstance(raw, dict):
                frame = client_frame_adapter.validate_python(raw)
            else:
                frame = client_frame_adapter.validate_json(raw)
        except ValidationError as e:
            logger.debug("Invalid realtime frame from %s: %s", client.client_id, e)
            await self._send(client, server_frame("error", message="Invalid frame"))
            return

        if isinstance(frame, PingFrame):
            await self._send(client, server_frame("pong"))
        elif isinstance(frame, PongFrame):
            return
        elif isinstance(frame, AuthenticateFrame):
            client.agent_id = frame.agent_id
            await self._send(
                client,
                server_frame(
                    "authenticated",
                    agentId=str(frame.agent_id) if frame.agent_id else None,
                ),
            )
        elif isinstance(frame, SubscribeFrame):
            client.channels = set(frame.channels)
            client.conversations = set(frame.conversations)
            await self._send(
                client,
                server_frame(
                    "subscribed",
                    channels=[str(c) for c in frame.channels],
                    conversations=[str(c) for c in frame.conversations],
                ),
            )
        elif isinstance(frame, TypingFrame):
            await self.relay(
                client,
                frame.conversation_id,
                server_frame(
                    "typing",
                    conversationId=str(frame.conversation_id),
                    agentId=str(client.agent_id) if client.agent_id else None,
                    isTyping=frame.is_typing,
                ),
            )
        elif isinstance(frame, ReadFrame):
            await self.relay(
                client,
                frame.conversation_id,
                server_frame(
                    "read",
                    conversationId=str(frame.conversation_id),
                    agentId=str(client.agent_id) if client.agent_id else None,
                ),
            )

    async def relay(
        self, sender: ClientConnection, conversation_id: UUID, frame: dict[str, Any]
    ) -> int:
        """Send an ephemeral signal to every other client watching the conversation."""
        channel_id = None
        if self._conversation_channel is not None:
            channel_id = self._conversation_channel(conversation_id)
        return await self.broadcast(
            frame,
            predicate=lambda c: c.wants(channel_id, conversation_id),
            exclude=sender.client_id,
        )

    # -- fan-out ----------------------------------------------------------------

    async def handle_event(self, event: InboxEvent) -> int:
        """Event router subscriber: fan an inbox event out to interested clients."""
        frame = server_frame(
            event.type,
            **event.data,
            channelId=str(event.channel_id) if event.channel_id else None,
            conversationId=str(event.conversation_id) if event.conversation_id else None,
            timestamp=event.timestamp.isoformat(),
        )
        return await self.broadcast(
            frame, predicate=lambda c: c.wants(event.channel_id, event.conversation_id)
        )

    async def broadcast(
        self,
        frame: dict[str, Any],
        predicate: Optional[Callable[[ClientConnection], bool]] = None,
        exclude: Optional[str] = None,
    ) -> int:
        """Send concurrently; returns how many clients received the frame."""
        async with self._lock:
            targets = [
                c
                for c in self._clients.values()
                if c.client_id != exclude and (predicate is None or predicate(c))
            ]
        if not targets:
            return 0
        results = await asyncio.gather(*(self._send(c, frame) for c in targets))
        return sum(1 for ok in results if ok)

    async def _send(self, client: ClientConnection, frame: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(client.websocket.send_json(frame), timeout=self._send_timeout)
            return True
        except Exception as e:
            logger.info(
                "Dropping realtime client %s after failed send: %s",
                client.client_id,
                e or type(e).__name__,
            )
            await self._drop(client)
            return False

    # -- liveness ---------------------------------------------------------------

    async def check_liveness(self) -> int:
        """Drop clients silent since the last ping, then ping the rest. Returns drops."""
        async with self._lock:
            clients = list(self._clients.values())
        stale = [c for c in clients if not c.is_alive]
        for client in stale:
            logger.info("Realtime client %s missed a ping", client.client_id)
            await self._drop(client)
        alive = [c for c in clients if c.is_alive]
        for client in alive:
            client.is_alive = False
        if alive:
            await asyncio.gather(*(self._send(c, server_frame("ping")) for c in alive))
        return len(stale)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await self.check_liveness()
            except Exception:
                logger.exception("Realtime liveness check failed")

"""
WhatsApp Web platform adapter.

WhatsApp personal accounts are paired by scanning a QR code. The browser
session itself lives in a bridge sidecar; each channel holds one websocket
to the bridge over which it sends commands and receives session events:

    -> {"id": "...", "action": "init"|"send"|"download_media"|"profile_pic"|"fetch_messages"|"logout", ...}
    <- {"id": "...", "ok": true, "result": {...}} | {"id": "...", "ok": false, "error": "..."}
    <- {"event": "qr"|"authenticated"|"ready"|"auth_failure"|"disconnected"|"message"|"message_ack", ...}

Events are queued by the reader and handled in order by a per-session
worker, so a slow handler never stalls the socket.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import UUID

import websockets

from app.adapters.base import BasePlatformAdapter, PlatformSession, SessionListener
from app.adapters.content import placeholder, resolve_whatsapp_type
from app.config import Settings
from app.constants.inbox import WHATSAPP_ACK_STATUS, ContentType, Platform
from app.core.session_registry import ChannelSessionRegistry
from app.exceptions import ConfigurationError, ProviderError, SessionNotReady
from app.schemas.envelope import (
    ChannelContext,
    ContactProfile,
    InboundEnvelope,
    OutboundContent,
    SendResult,
    StatusReceipt,
)

logger = logging.getLogger(__name__)

CONTACT_SUFFIX = "@c.us"
STATUS_BROADCAST = "status@broadcast"
TERMINAL_EVENTS = frozenset({"auth_failure", "disconnected"})


def format_chat_id(recipient: str) -> str:
    """Phone number or chat id -> WhatsApp chat id."""
    if "@" in recipient:
        return recipient
    return f"{re.sub(r'[^0-9]', '', recipient)}{CONTACT_SUFFIX}"


def contact_phone(chat_id: str) -> str:
    return chat_id.replace(CONTACT_SUFFIX, "")


def _timestamp(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.now(timezone.utc)


class WhatsAppWebSession(PlatformSession):
    def __init__(
        self,
        channel_id: UUID,
        bridge_url: str,
        session_dir: str,
        listener: SessionListener,
        session_data: Optional[dict[str, Any]] = None,
        request_timeout: float = 15.0,
        media_timeout: float = 20.0,
        event_timeout: float = 60.0,
        connect: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.channel_id = channel_id
        self._bridge_url = bridge_url
        self._session_dir = session_dir
        self._listener = listener
        self._session_data = session_data
        self._request_timeout = request_timeout
        self._media_timeout = media_timeout
        self._event_timeout = event_timeout
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._pending: dict[str, asyncio.Future] = {}
        self._events: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._closing = False
        self.ready = False

    @property
    def client_id(self) -> str:
        return f"channel_{self.channel_id}"

    async def start(self) -> None:
        try:
            self._ws = await self._connect(self._bridge_url, max_size=None)
        except (OSError, websockets.WebSocketException) as e:
            raise ProviderError(Platform.WHATSAPP, f"Bridge unreachable: {e}") from e
        self._reader_task = asyncio.create_task(
            self._read_loop(), name=f"whatsapp-reader-{self.channel_id}"
        )
        self._worker_task = asyncio.create_task(
            self._work_loop(), name=f"whatsapp-worker-{self.channel_id}"
        )
        await self._request(
            "init",
            clientId=self.client_id,
            dataPath=str(Path(self._session_dir)),
            session=self._session_data,
        )

    async def stop(self, logout: bool = False) -> None:
        self._closing = True
        self.ready = False
        if logout and self._ws is not None:
            try:
                await self._request("logout")
            except ProviderError as e:
                logger.warning("WhatsApp logout failed for channel %s: %s", self.channel_id, e)
        if self._ws is not None:
            await self._ws.close()
        current = asyncio.current_task()
        for task in (self._reader_task, self._worker_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._fail_pending("session stopped")

    # -- bridge protocol --------------------------------------------------------

    async def _request(self, action: str, **params: Any) -> Any:
        if self._ws is None:
            raise ProviderError(Platform.WHATSAPP, "Bridge connection is not open")
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(json.dumps({"id": request_id, "action": action, **params}))
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(Platform.WHATSAPP, f"Bridge timed out on {action}") from e
        except websockets.ConnectionClosed as e:
            raise ProviderError(Platform.WHATSAPP, f"Bridge connection closed: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ProviderError(Platform.WHATSAPP, reason))
        self._pending.clear()

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("Bridge sent invalid JSON for channel %s", self.channel_id)
                    continue
                if "event" in frame:
                    self._events.put_nowait(frame)
                    continue
                future = self._pending.get(frame.get("id"))
                if future is None or future.done():
                    continue
                if frame.get("ok"):
                    future.set_result(frame.get("result"))
                else:
                    future.set_exception(
                        ProviderError(Platform.WHATSAPP, str(frame.get("error") or "bridge error"))
                    )
        except websockets.ConnectionClosed:
            pass
        finally:
            self._fail_pending("bridge connection closed")
            if not self._closing:
                self._events.put_nowait(
                    {"event": "disconnected", "reason": "bridge connection closed"}
                )

    async def _work_loop(self) -> None:
        while True:
            frame = await self._events.get()
            event = frame.get("event")
            try:
                await asyncio.wait_for(self._handle_event(frame), timeout=self._event_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "WhatsApp %s handler timed out for channel %s", event, self.channel_id
                )
            except Exception:
                logger.exception(
                    "WhatsApp %s handler failed for channel %s", event, self.channel_id
                )
            if event in TERMINAL_EVENTS:
                return

    async def _handle_event(self, frame: dict[str, Any]) -> None:
        event = frame.get("event")
        if event == "qr":
            await self._listener.on_qr(self.channel_id, self, frame.get("qr") or "")
        elif event == "authenticated":
            await self._listener.on_authenticated(
                self.channel_id, self, frame.get("session") or {}
            )
        elif event == "ready":
            info = frame.get("info") or {}
            self.ready = True
            await self._listener.on_ready(
                self.channel_id,
                self,
                (info.get("wid") or {}).get("user"),
                info.get("pushname"),
            )
        elif event == "auth_failure":
            self.ready = False
            await self._listener.on_auth_failure(
                self.channel_id, self, str(frame.get("message") or "authentication failed")
            )
        elif event == "disconnected":
            self.ready = False
            await self._listener.on_disconnected(
                self.channel_id, self, str(frame.get("reason") or "disconnected")
            )
        elif event == "message":
            envelope = await self.to_envelope(frame.get("message") or {})
            if envelope is not None and not envelope.from_me:
                await self._listener.on_message(self.channel_id, envelope)
        elif event == "message_ack":
            status = WHATSAPP_ACK_STATUS.get(frame.get("ack"))
            if status is None or not frame.get("messageId"):
                return
            await self._listener.on_receipt(
                self.channel_id,
                StatusReceipt(
                    platform=Platform.WHATSAPP,
                    status=status,
                    platform_message_id=frame["messageId"],
                ),
            )
        else:
            logger.debug("Ignoring bridge event %s", event)

    # -- normalization ----------------------------------------------------------

    async def to_envelope(
        self, message: dict[str, Any], download_media: bool = True
    ) -> Optional[InboundEnvelope]:
        if message.get("isStatus") or message.get("from") == STATUS_BROADCAST:
            return None
        from_me = bool(message.get("fromMe"))
        chat_id = (message.get("to") if from_me else message.get("from")) or ""
        contact = message.get("contact") or {}
        message_type = message.get("type") or "chat"
        content = message.get("body") or ""
        content_type = resolve_whatsapp_type(message_type)
        media_url = None
        if message.get("hasMedia"):
            media = await self._download_media(message.get("id")) if download_media else None
            if media and media.get("data"):
                media_url = f"data:{media.get('mimetype')};base64,{media['data']}"
                content = media.get("filename") or content or placeholder(message_type)
            else:
                content = content or placeholder(message_type)
        elif content_type != ContentType.TEXT and not content:
            content = placeholder(message_type)
        return InboundEnvelope(
            platform=Platform.WHATSAPP,
            channel_id=self.channel_id,
            contact_id=chat_id,
            contact_name=contact.get("name") or contact.get("pushname") or chat_id,
            contact_phone=contact_phone(chat_id),
            content=content,
            content_type=content_type,
            media_url=media_url,
            platform_message_id=message.get("id"),
            from_me=from_me,
            timestamp=_timestamp(message.get("timestamp")),
            metadata={
                "timestamp": message.get("timestamp"),
                "from": message.get("from"),
                "type": message_type,
            },
        )

    async def _download_media(self, message_id: Optional[str]) -> Optional[dict[str, Any]]:
        if not message_id:
            return None
        try:
            return await asyncio.wait_for(
                self._request("download_media", messageId=message_id),
                timeout=self._media_timeout,
            )
        except (asyncio.TimeoutError, ProviderError) as e:
            logger.warning("Media download failed for %s: %s", message_id, e)
            return None

    # -- operations -------------------------------------------------------------

    async def send(self, recipient: str, content: OutboundContent) -> SendResult:
        if not self.ready:
            raise SessionNotReady(self.channel_id)
        params: dict[str, Any] = {"chatId": format_chat_id(recipient), "content": content.content}
        if content.media_url:
            params["mediaUrl"] = content.media_url
        result = await self._request("send", **params) or {}
        return SendResult(platform_message_id=result.get("id"))

    async def fetch_history(self, contact_id: str, limit: int = 50) -> list[InboundEnvelope]:
        if not self.ready:
            raise SessionNotReady(self.channel_id)
        result = await self._request("fetch_messages", chatId=contact_id, limit=limit) or {}
        envelopes = []
        for message in result.get("messages") or []:
            envelope = await self.to_envelope(message, download_media=False)
            if envelope is not None:
                envelopes.append(envelope)
        return envelopes

    async def fetch_profile_picture(self, contact_id: str) -> Optional[str]:
        try:
            result = await self._request("profile_pic", contactId=contact_id) or {}
        except ProviderError as e:
            logger.warning("Profile picture lookup failed for %s: %s", contact_id, e)
            return None
        return result.get("url")


class WhatsAppWebAdapter(BasePlatformAdapter):
    """Session-based adapter; sends go through the channel's live bridge session."""

    platform = Platform.WHATSAPP
    requires_session = True

    def __init__(
        self,
        settings: Settings,
        sessions: ChannelSessionRegistry,
        connect: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._bridge_url = settings.whatsapp_bridge_url
        self._session_dir = settings.whatsapp_session_dir
        self._request_timeout = settings.provider_timeout_seconds
        self._media_timeout = settings.media_download_timeout_seconds
        self._event_timeout = settings.session_event_timeout_seconds
        self._sessions = sessions
        self._connect = connect

    def check_configuration(self) -> None:
        if not self._bridge_url:
            raise ConfigurationError("WHATSAPP_BRIDGE_URL must be set when whatsapp is enabled")
        if not self._bridge_url.startswith(("ws://", "wss://")):
            raise ConfigurationError(
                f"WHATSAPP_BRIDGE_URL must be a ws:// or wss:// URL, got {self._bridge_url!r}"
            )

    def create_session(
        self,
        channel: ChannelContext,
        listener: SessionListener,
        session_data: Optional[dict[str, Any]] = None,
    ) -> WhatsAppWebSession:
        return WhatsAppWebSession(
            channel_id=channel.channel_id,
            bridge_url=self._bridge_url or "",
            session_dir=self._session_dir,
            listener=listener,
            session_data=session_data,
            request_timeout=self._request_timeout,
            media_timeout=self._media_timeout,
            event_timeout=self._event_timeout,
            connect=self._connect,
        )

    def _ready_session(self, channel_id: UUID) -> WhatsAppWebSession:
        record = self._sessions.get(channel_id)
        if record is None or not record.is_ready:
            raise SessionNotReady(channel_id)
        return record.session

    async def send(
        self, channel: ChannelContext, recipient: str, content: OutboundContent
    ) -> SendResult:
        return await self._ready_session(channel.channel_id).send(recipient, content)

    async def fetch_contact_profile(
        self, channel: ChannelContext, contact_id: str
    ) -> ContactProfile:
        record = self._sessions.get(channel.channel_id)
        if record is None or not record.is_ready:
            return ContactProfile()
        return ContactProfile(avatar=await record.session.fetch_profile_picture(contact_id))

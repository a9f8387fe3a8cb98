"""
Channel connection lifecycle.

Owns the live session of every session-based channel (pairing, readiness,
teardown) and the connect flow of webhook-based channels (token exchange,
webhook subscription). Session callbacks arrive here and are translated into
channel status changes and inbound processing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from app.adapters.base import BasePlatformAdapter
from app.commands.inbound.process_inbound_command import (
    ProcessInboundCommand,
    SessionFactory,
    channel_context,
)
from app.constants.inbox import (
    ChannelStatus,
    MessageDirection,
    MessageStatus,
    Platform,
    SessionState,
)
from app.core.events import EventRouter
from app.core.registry import AdapterRegistry
from app.core.session_registry import ChannelSessionRegistry, SessionRecord
from app.exceptions import (
    AuthenticationFailure,
    ChannelConflict,
    ConfigurationError,
    InboxError,
    ProviderError,
    SessionNotReady,
)
from app.models.channel import Channel
from app.schemas.envelope import InboundEnvelope, StatusReceipt
from app.schemas.inbox import ChannelCreate, PairingStateRead, SyncResult
from app.services.inbox_store import InboxStore

logger = logging.getLogger(__name__)


@dataclass
class ConnectOutcome:
    channel: Channel
    session_state: Optional[SessionState] = None
    already_connected: bool = False


class ChannelConnectionManager:
    def __init__(
        self,
        registry: AdapterRegistry,
        sessions: ChannelSessionRegistry,
        events: Optional[EventRouter],
        session_factory: SessionFactory,
        inbound: ProcessInboundCommand,
    ) -> None:
        self._registry = registry
        self._sessions = sessions
        self._events = events
        self._session_factory = session_factory
        self._inbound = inbound
        self._locks: Dict[UUID, asyncio.Lock] = {}

    def _lock_for(self, channel_id: UUID) -> asyncio.Lock:
        return self._locks.setdefault(channel_id, asyncio.Lock())

    def _adapter(self, platform: Platform | str) -> BasePlatformAdapter:
        adapter = self._registry.get(platform)
        if adapter is None:
            raise ConfigurationError(f"Platform {platform} is not enabled")
        return adapter

    def _set_status(
        self, channel_id: UUID, status: ChannelStatus, **kwargs: Any
    ) -> Optional[Channel]:
        with self._session_factory() as db:
            try:
                return InboxStore(db, self._events).update_channel_status(
                    channel_id, status, **kwargs
                )
            except InboxError as e:
                logger.warning("Channel %s could not move to %s: %s", channel_id, status, e)
                return None

    # -- session-based channels -------------------------------------------------

    async def connect(self, channel_id: UUID) -> ConnectOutcome:
        """
        Start (or restart) the live session of a session-based channel.

        A ready session is left alone; a stale non-ready one is torn down first.

        Raises:
            ChannelNotFound: unknown channel.
            ConfigurationError: platform disabled or not session-based.
            ProviderError: the session could not be opened.
        """
        async with self._lock_for(channel_id):
            with self._session_factory() as db:
                store = InboxStore(db, self._events)
                channel = store.channels.require_channel(channel_id)
                adapter = self._adapter(channel.platform)
                if not adapter.requires_session:
                    raise ConfigurationError(f"{channel.platform} channels do not use live sessions")
                existing = self._sessions.get(channel_id)
                if existing is not None and existing.is_ready:
                    return ConnectOutcome(channel, existing.state, already_connected=True)
                try:
                    session_data = store.channels.get_session_data(channel)
                except ValueError as e:
                    logger.warning("Stored session for channel %s is unusable: %s", channel_id, e)
                    session_data = None
                ctx = channel_context(channel)
                platform = Platform(channel.platform)
                resuming = channel.status == ChannelStatus.ACTIVE.value

            if existing is not None:
                await self._sessions.pop(channel_id, existing.session)
                await self._stop_session(existing)

            if not resuming:
                channel = self._set_status(
                    channel_id,
                    ChannelStatus.PENDING,
                    extra={"session_state": SessionState.INITIALIZING.value},
                ) or channel

            session = adapter.create_session(ctx, self, session_data)
            await self._sessions.put(
                SessionRecord(channel_id=channel_id, platform=platform, session=session)
            )
            try:
                await session.start()
            except ProviderError as e:
                await self._sessions.pop(channel_id, session)
                await self._stop_session(SessionRecord(channel_id, platform, session))
                self._set_status(
                    channel_id,
                    ChannelStatus.ERROR,
                    extra={"session_state": SessionState.DISCONNECTED.value, "error": e.detail},
                )
                raise
            record = self._sessions.get(channel_id)
            state = record.state if record is not None else SessionState.DISCONNECTED
            logger.info("Channel %s session started (%s)", channel_id, state)
            return ConnectOutcome(channel, state)

    async def _stop_session(self, record: SessionRecord, logout: bool = False) -> None:
        try:
            await record.session.stop(logout=logout)
        except Exception:
            logger.exception("Stopping session for channel %s failed", record.channel_id)

    async def disconnect(self, channel_id: UUID, logout: bool = True) -> Channel:
        """Tear down any live session and mark the channel disconnected, whatever its state."""
        async with self._lock_for(channel_id):
            record = await self._sessions.pop(channel_id)
            if record is not None:
                await self._stop_session(record, logout=logout)
            with self._session_factory() as db:
                store = InboxStore(db, self._events)
                channel = store.channels.require_channel(channel_id)
                adapter = self._registry.get(channel.platform)
                if logout and channel.session_data is not None:
                    store.update_channel_session(channel_id, None)
                channel = store.update_channel_status(
                    channel_id,
                    ChannelStatus.DISCONNECTED,
                    extra={"session_state": SessionState.DISCONNECTED.value},
                )
            if adapter is not None:
                await adapter.teardown(channel_id)
            logger.info("Channel %s disconnected", channel_id)
            return channel

    async def delete_channel(self, channel_id: UUID) -> bool:
        """Tear down any live session, then delete the channel and everything under it."""
        async with self._lock_for(channel_id):
            record = await self._sessions.pop(channel_id)
            if record is not None:
                await self._stop_session(record, logout=True)
            with self._session_factory() as db:
                deleted = InboxStore(db, self._events).delete_channel(channel_id)
        self._locks.pop(channel_id, None)
        return deleted

    def get_pairing_state(self, channel: Channel) -> PairingStateRead:
        record = self._sessions.get(channel.id)
        return PairingStateRead(
            channel_id=channel.id,
            status=channel.status,
            session_state=record.state.value if record is not None else None,
            qr=record.qr if record is not None else None,
        )

    def list_sessions(self) -> list[SessionRecord]:
        return self._sessions.list()

    def is_ready(self, channel_id: UUID) -> bool:
        return self._sessions.is_ready(channel_id)

    async def resume_sessions(self) -> int:
        """Reopen sessions for channels with stored credentials. Failures are not fatal."""
        adapter = self._registry.get(Platform.WHATSAPP)
        if adapter is None:
            return 0
        with self._session_factory() as db:
            channel_ids = [
                c.id for c in InboxStore(db).channels.list_resumable_channels(Platform.WHATSAPP)
            ]
        resumed = 0
        for channel_id in channel_ids:
            try:
                await self.connect(channel_id)
                resumed += 1
            except Exception as e:
                logger.warning("Could not resume session for channel %s: %s", channel_id, e)
        return resumed

    async def shutdown(self) -> None:
        """Close live sessions without touching channel status, so they resume on restart."""
        for record in self._sessions.list():
            await self._sessions.pop(record.channel_id, record.session)
            await self._stop_session(record)

    # -- webhook-based channels -------------------------------------------------

    async def connect_webhook_channel(
        self,
        platform: Platform,
        external_id: str,
        access_token: str,
        name: Optional[str] = None,
    ) -> Channel:
        """
        Connect a page/account: create (or reuse) the channel as pending, run the
        platform's initialization, then mark it active. Provider failure marks it error.
        """
        adapter = self._adapter(platform)
        if adapter.requires_session:
            raise ConfigurationError(f"{platform} channels are connected with a live session")
        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            channel = store.channels.get_channel_by_external_id(platform, external_id)
            if channel is None:
                channel = store.create_channel(
                    ChannelCreate(
                        platform=platform,
                        name=name or external_id,
                        external_id=external_id,
                        access_token=access_token,
                    )
                )
            else:
                channel = store.channels.update_access_token(channel.id, access_token)
                if name:
                    channel.name = name
                    db.commit()
                if channel.status != ChannelStatus.PENDING.value:
                    channel = store.update_channel_status(channel.id, ChannelStatus.PENDING)
            ctx = channel_context(channel)
            channel_id = channel.id

        try:
            replacement_token = await adapter.initialize(ctx)
        except ProviderError as e:
            self._set_status(channel_id, ChannelStatus.ERROR, extra={"error": e.detail})
            raise

        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            if replacement_token:
                store.channels.update_access_token(channel_id, replacement_token)
            try:
                return store.update_channel_status(channel_id, ChannelStatus.ACTIVE)
            except ChannelConflict:
                store.update_channel_status(channel_id, ChannelStatus.ERROR)
                raise

    # -- backfill -----------------------------------------------------------------

    async def sync_messages(self, conversation_id: UUID, limit: int = 50) -> SyncResult:
        """Import recent history from a live session. Already-stored messages are skipped."""
        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            conversation = store.conversations.require_conversation(conversation_id)
            channel_id = conversation.channel_id
            contact_id = conversation.contact_identifier
        record = self._sessions.get(channel_id)
        if record is None or not record.is_ready:
            raise SessionNotReady(channel_id)
        envelopes = await record.session.fetch_history(contact_id, limit=limit)

        imported = skipped = 0
        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            present = store.messages.external_ids_present(
                [e.platform_message_id for e in envelopes if e.platform_message_id]
            )
            for envelope in envelopes:
                if not envelope.platform_message_id or envelope.platform_message_id in present:
                    skipped += 1
                    continue
                _, created = store.create_message(
                    conversation_id=conversation_id,
                    direction=MessageDirection.OUTGOING if envelope.from_me else MessageDirection.INCOMING,
                    content=envelope.content,
                    content_type=envelope.content_type,
                    status=MessageStatus.SENT if envelope.from_me else MessageStatus.DELIVERED,
                    external_id=envelope.platform_message_id,
                    metadata={**envelope.metadata, "synced": True},
                )
                if created:
                    imported += 1
                else:
                    skipped += 1
        logger.info(
            "Synced conversation %s: %d imported, %d skipped", conversation_id, imported, skipped
        )
        return SyncResult(imported=imported, skipped=skipped)

    # -- session listener ---------------------------------------------------------

    async def on_qr(self, channel_id: UUID, session: Any, qr: str) -> None:
        record = await self._sessions.update(
            channel_id, session, state=SessionState.WAITING_FOR_SCAN, qr=qr
        )
        if record is None:
            return
        logger.info("QR code received for channel %s", channel_id)
        self._set_status(
            channel_id,
            ChannelStatus.PENDING,
            extra={"session_state": SessionState.WAITING_FOR_SCAN.value, "qr": qr},
        )

    async def on_authenticated(
        self, channel_id: UUID, session: Any, session_data: dict[str, Any]
    ) -> None:
        record = self._sessions.get(channel_id)
        if record is None or record.session is not session or not session_data:
            return
        with self._session_factory() as db:
            InboxStore(db, self._events).update_channel_session(channel_id, session_data)

    async def on_ready(
        self, channel_id: UUID, session: Any, phone: Optional[str], name: Optional[str]
    ) -> None:
        record = await self._sessions.update(
            channel_id, session, state=SessionState.READY, qr=None
        )
        if record is None:
            return
        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            try:
                store.update_channel_status(
                    channel_id,
                    ChannelStatus.ACTIVE,
                    external_id=phone,
                    phone_number=phone,
                    extra={"session_state": SessionState.READY.value},
                )
            except ChannelConflict as e:
                logger.error("Channel %s paired a number already in use: %s", channel_id, e)
                await self._sessions.pop(channel_id, session)
                store.update_channel_status(
                    channel_id, ChannelStatus.ERROR, extra={"error": str(e)}
                )
                await session.stop(logout=False)
                return
        logger.info("Channel %s ready (%s)", channel_id, phone)

    async def on_auth_failure(self, channel_id: UUID, session: Any, reason: str) -> None:
        record = await self._sessions.pop(channel_id, session)
        if record is None:
            return
        failure = AuthenticationFailure(channel_id, reason)
        logger.warning("%s", failure)
        with self._session_factory() as db:
            InboxStore(db, self._events).update_channel_session(channel_id, None)
        self._set_status(
            channel_id,
            ChannelStatus.ERROR,
            extra={"session_state": SessionState.AUTH_FAILED.value, "error": str(failure)},
        )
        await session.stop(logout=False)

    async def on_disconnected(self, channel_id: UUID, session: Any, reason: str) -> None:
        record = await self._sessions.pop(channel_id, session)
        if record is None:
            return
        logger.info("Channel %s disconnected: %s", channel_id, reason)
        self._set_status(
            channel_id,
            ChannelStatus.DISCONNECTED,
            extra={"session_state": SessionState.DISCONNECTED.value, "reason": reason},
        )
        await session.stop(logout=False)

    async def on_message(self, channel_id: UUID, envelope: InboundEnvelope) -> None:
        await self._inbound.handle_session_envelope(envelope)

    async def on_receipt(self, channel_id: UUID, receipt: StatusReceipt) -> None:
        await self._inbound.handle_session_receipt(receipt)

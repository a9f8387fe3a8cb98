"""
Command to turn normalized inbound events into canonical inbox state.

Runs out of band (after the webhook was acknowledged, or from a live session's
event worker). Resolves the channel, finds or creates the conversation
(fetching the contact profile only for new contacts), stores the message
idempotently and applies delivery/read receipts. Failures are logged and
dead-lettered, never raised to the caller.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.credentials import decrypt_secret
from app.core.events import EventRouter
from app.core.registry import AdapterRegistry
from app.models.channel import Channel
from app.models.message import Message
from app.models.webhook_failure import WebhookFailure
from app.schemas.envelope import ChannelContext, InboundEnvelope, StatusReceipt
from app.services.inbox_store import InboxStore
from app.services.webhook_failure_service import WebhookFailureService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

SESSION_ENVELOPE_KEY = "envelope"


def channel_context(channel: Channel) -> ChannelContext:
    return ChannelContext(
        channel_id=channel.id,
        platform=channel.platform,
        external_id=channel.external_id,
        access_token=decrypt_secret(channel.access_token),
    )


class ProcessInboundCommand:
    def __init__(
        self,
        registry: AdapterRegistry,
        events: Optional[EventRouter],
        session_factory: SessionFactory,
    ) -> None:
        self._registry = registry
        self._events = events
        self._session_factory = session_factory

    async def execute(self, platform: str, payload: dict[str, Any]) -> None:
        """Process an acknowledged webhook payload. Failures are dead-lettered."""
        try:
            await self._process_payload(platform, payload)
        except Exception as e:
            logger.exception("Processing %s webhook payload failed", platform)
            self._dead_letter(platform, payload, e)

    async def handle_session_envelope(self, envelope: InboundEnvelope) -> None:
        """Entry point for live-session messages. Failures are dead-lettered."""
        try:
            await self.process_envelope(envelope)
        except Exception as e:
            logger.exception("Processing %s session message failed", envelope.platform)
            self._dead_letter(
                envelope.platform,
                {SESSION_ENVELOPE_KEY: envelope.model_dump(mode="json")},
                e,
            )

    async def handle_session_receipt(self, receipt: StatusReceipt) -> None:
        try:
            await self.process_receipt(receipt)
        except Exception:
            logger.exception("Applying %s receipt failed", receipt.platform)

    async def replay(self, failure_id: UUID) -> Optional[WebhookFailure]:
        """Re-run a dead-lettered delivery. Records the attempt either way."""
        with self._session_factory() as db:
            failure = WebhookFailureService(db).get_failure(failure_id)
            if failure is None:
                return None
            platform, payload = failure.platform, dict(failure.payload)
        error: Optional[str] = None
        try:
            if SESSION_ENVELOPE_KEY in payload:
                await self.process_envelope(
                    InboundEnvelope.model_validate(payload[SESSION_ENVELOPE_KEY])
                )
            else:
                await self._process_payload(platform, payload)
        except Exception as e:
            logger.warning("Replay of webhook failure %s failed: %s", failure_id, e)
            error = f"{type(e).__name__}: {e}"
        with self._session_factory() as db:
            return WebhookFailureService(db).record_attempt(failure_id, error)

    async def _process_payload(self, platform: str, payload: dict[str, Any]) -> None:
        adapter = self._registry.get(platform)
        if adapter is None:
            raise ValueError(f"Platform {platform} is not enabled")
        extracted = adapter.extract_events(payload)
        for envelope in extracted.envelopes:
            await self.process_envelope(envelope)
        for receipt in extracted.receipts:
            await self.process_receipt(receipt)

    async def process_envelope(self, envelope: InboundEnvelope) -> Optional[Message]:
        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            if envelope.channel_id is not None:
                channel = store.get_channel(envelope.channel_id)
            else:
                channel = store.resolve_channel(
                    envelope.platform, envelope.channel_external_id or ""
                )
            if channel is None:
                logger.warning(
                    "No %s channel for identifier %s; message %s dropped",
                    envelope.platform,
                    envelope.channel_external_id or envelope.channel_id,
                    envelope.platform_message_id,
                )
                return None

            conversation = store.find_conversation_by_contact(channel.id, envelope.contact_id)
            if conversation is None:
                defaults = await self._contact_defaults(channel, envelope)
                conversation, _ = store.get_or_create_conversation(
                    channel.id, envelope.contact_id, defaults
                )

            message, created = store.ingest_incoming_message(
                conversation,
                content=envelope.content,
                content_type=envelope.content_type,
                media_url=envelope.media_url,
                external_id=envelope.platform_message_id,
                metadata=envelope.metadata,
            )
            if created:
                logger.info(
                    "Stored %s message %s in conversation %s",
                    envelope.platform,
                    message.external_id,
                    conversation.id,
                )
            return message

    async def _contact_defaults(
        self, channel: Channel, envelope: InboundEnvelope
    ) -> dict[str, Any]:
        defaults: dict[str, Any] = {
            "contact_name": envelope.contact_name,
            "contact_avatar": envelope.contact_avatar,
            "contact_phone": envelope.contact_phone,
        }
        adapter = self._registry.get(envelope.platform)
        if adapter is None:
            return defaults
        try:
            profile = await adapter.fetch_contact_profile(
                channel_context(channel), envelope.contact_id
            )
        except Exception as e:
            logger.warning("Contact profile lookup failed for %s: %s", envelope.contact_id, e)
            return defaults
        defaults["contact_name"] = envelope.contact_name or profile.name
        defaults["contact_avatar"] = envelope.contact_avatar or profile.avatar
        return defaults

    async def process_receipt(self, receipt: StatusReceipt) -> int:
        """Apply a delivery/read receipt. Returns how many messages moved forward."""
        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            if receipt.platform_message_id:
                applied = store.update_message_status(
                    receipt.status, external_id=receipt.platform_message_id
                )
                return 1 if applied is not None else 0
            if receipt.watermark is None or not receipt.contact_id:
                return 0
            channel = store.resolve_channel(receipt.platform, receipt.channel_external_id or "")
            if channel is None:
                return 0
            conversation = store.find_conversation_by_contact(channel.id, receipt.contact_id)
            if conversation is None:
                return 0
            return len(store.mark_read_up_to(conversation.id, receipt.watermark))

    def _dead_letter(self, platform: str, payload: dict[str, Any], error: Exception) -> None:
        try:
            with self._session_factory() as db:
                WebhookFailureService(db).record_failure(
                    str(platform), payload, f"{type(error).__name__}: {error}"
                )
        except Exception:
            logger.exception("Could not record webhook failure for %s", platform)

"""
Command to send an agent reply to a conversation's platform.

Resolves channel and adapter from the conversation, persists the message as
pending, sends it through the platform, then moves it to sent (with the
platform message id) or failed (with the error). The message row always
survives, so a failed send stays visible in the thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from uuid import UUID

import httpx

from app.commands.inbound.process_inbound_command import SessionFactory, channel_context
from app.constants.inbox import MessageStatus
from app.core.events import EventRouter
from app.core.registry import AdapterRegistry
from app.core.session_registry import ChannelSessionRegistry
from app.exceptions import ConfigurationError, ProviderError, SessionNotReady
from app.models.message import Message
from app.schemas.envelope import OutboundContent
from app.schemas.inbox import SendMessageRequest
from app.services.inbox_store import InboxStore

logger = logging.getLogger(__name__)


class SendOutboundCommand:
    """
    Command to send an outbound message for a conversation.
    Persist first, send second, record the outcome last.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        sessions: ChannelSessionRegistry,
        events: Optional[EventRouter],
        session_factory: SessionFactory,
    ) -> None:
        self._registry = registry
        self._sessions = sessions
        self._events = events
        self._session_factory = session_factory

    async def execute(
        self, body: SendMessageRequest, agent_id: Optional[UUID] = None
    ) -> Message:
        """
        Send the message and return the stored row in its final state.

        Args:
            body: Target conversation and content.
            agent_id: Sending agent, when known.

        Returns:
            Message: status sent on success, failed (with the error in metadata) otherwise.

        Raises:
            ConversationNotFound: unknown conversation.
            ConfigurationError: the conversation's platform is not enabled.
            SessionNotReady: session-based channel without a ready session. Nothing is stored.
        """
        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            conversation = store.conversations.require_conversation(body.conversation_id)
            channel = conversation.channel
            adapter = self._registry.get(channel.platform)
            if adapter is None:
                raise ConfigurationError(f"Platform {channel.platform} is not enabled")
            if adapter.requires_session and not self._sessions.is_ready(channel.id):
                raise SessionNotReady(channel.id)

            ctx = channel_context(channel)
            recipient = conversation.contact_identifier
            message, _ = store.add_outgoing_message(
                conversation,
                content=body.content,
                content_type=body.content_type,
                media_url=body.media_url,
                agent_id=agent_id,
            )
            message_id = message.id

        content = OutboundContent(
            content=body.content, content_type=body.content_type, media_url=body.media_url
        )
        error: Optional[str] = None
        platform_message_id: Optional[str] = None
        try:
            result = await adapter.send(ctx, recipient, content)
            platform_message_id = result.platform_message_id
        except ProviderError as e:
            error = e.detail
        except SessionNotReady as e:
            error = str(e)
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            error = f"{type(e).__name__}: {e}"
        except Exception as e:
            logger.exception("Unexpected error sending %s message %s", ctx.platform, message_id)
            error = f"{type(e).__name__}: {e}"

        with self._session_factory() as db:
            store = InboxStore(db, self._events)
            if error is None:
                if platform_message_id:
                    store.attach_external_id(message_id, platform_message_id)
                store.update_message_status(MessageStatus.SENT, message_id=message_id)
                store.channels.touch(ctx.channel_id)
                logger.info(
                    "Sent %s message %s (%s)", ctx.platform, message_id, platform_message_id
                )
            else:
                logger.warning("Sending %s message %s failed: %s", ctx.platform, message_id, error)
                store.update_message_status(
                    MessageStatus.FAILED, message_id=message_id, error=error
                )
            return store.messages.get_message(message_id)

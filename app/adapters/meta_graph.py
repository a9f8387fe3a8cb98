"""
Shared Meta Graph API plumbing for Messenger and Instagram adapters.

Both platforms share the webhook handshake, the X-Hub-Signature-256 payload
signature, the `entry[].messaging[]` webhook shape and the Send API.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.adapters.base import BasePlatformAdapter, find_header
from app.adapters.content import content_with_placeholder, resolve_meta_attachment
from app.config import Settings
from app.constants.inbox import ContentType, MessageStatus
from app.exceptions import ConfigurationError, ProviderError
from app.schemas.envelope import (
    ChannelContext,
    ContactProfile,
    ExtractedEvents,
    InboundEnvelope,
    OutboundContent,
    SendResult,
    StatusReceipt,
)
from app.schemas.meta import MetaEntry, MetaMessage, MetaMessagingEvent, MetaWebhookPayload

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"

_ATTACHMENT_TYPES = {
    ContentType.IMAGE: "image",
    ContentType.VIDEO: "video",
    ContentType.AUDIO: "audio",
    ContentType.DOCUMENT: "file",
}


def sign_payload(app_secret: str, raw_body: bytes) -> str:
    return "sha256=" + hmac.new(app_secret.encode(), raw_body, hashlib.sha256).hexdigest()


def _from_millis(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class MetaGraphAdapter(BasePlatformAdapter):
    """Base for Graph API platforms. Subclasses set the webhook object and profile fields."""

    webhook_object: str
    default_contact_name: str
    profile_fields: str

    def __init__(
        self, settings: Settings, http: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._graph_url = settings.graph_api_url
        self._app_id = settings.facebook_app_id
        self._app_secret = settings.facebook_app_secret
        self._verify_token = settings.facebook_verify_token
        self._timeout = settings.provider_timeout_seconds
        self._http = http

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self._graph_url, timeout=self._timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def check_configuration(self) -> None:
        if not self._verify_token:
            raise ConfigurationError(
                f"FACEBOOK_VERIFY_TOKEN must be set when {self.platform} is enabled"
            )
        if not self._app_secret:
            logger.warning(
                "FACEBOOK_APP_SECRET is not set; %s webhook signatures will not be verified",
                self.platform,
            )

    # -- webhook ----------------------------------------------------------------

    def verify_subscription(
        self, mode: Optional[str], token: Optional[str], challenge: Optional[str]
    ) -> Optional[str]:
        if mode != "subscribe" or not token or not self._verify_token:
            return None
        if not hmac.compare_digest(token, self._verify_token):
            return None
        return challenge or ""

    def verify_webhook(
        self, raw_body: bytes, request_headers: Optional[dict[str, str]] = None
    ) -> bool:
        """Validate X-Hub-Signature-256 if the app secret is configured."""
        if not self._app_secret:
            return True
        actual = find_header(request_headers, SIGNATURE_HEADER) or ""
        return hmac.compare_digest(actual, sign_payload(self._app_secret, raw_body))

    def accepts_object(self, payload: dict[str, Any]) -> bool:
        return payload.get("object") == self.webhook_object

    def extract_events(self, payload: dict[str, Any]) -> ExtractedEvents:
        parsed = MetaWebhookPayload.model_validate(payload)
        extracted = ExtractedEvents()
        for entry in parsed.entry:
            for event in entry.messaging:
                if event.message is not None:
                    if event.message.is_echo:
                        continue
                    extracted.envelopes.append(self._envelope(entry, event, event.message))
                elif event.delivery is not None:
                    for mid in event.delivery.mids:
                        extracted.receipts.append(
                            StatusReceipt(
                                platform=self.platform,
                                status=MessageStatus.DELIVERED,
                                platform_message_id=mid,
                                channel_external_id=event.recipient.id,
                                contact_id=event.sender.id,
                            )
                        )
                elif event.read is not None:
                    extracted.receipts.append(
                        StatusReceipt(
                            platform=self.platform,
                            status=MessageStatus.READ,
                            platform_message_id=event.read.mid,
                            channel_external_id=event.recipient.id,
                            contact_id=event.sender.id,
                            watermark=_from_millis(event.read.watermark),
                        )
                    )
        return extracted

    def _envelope(
        self, entry: MetaEntry, event: MetaMessagingEvent, message: MetaMessage
    ) -> InboundEnvelope:
        content = message.text or ""
        content_type = ContentType.TEXT
        media_url = None
        if message.attachments:
            attachment = message.attachments[0]
            content_type = resolve_meta_attachment(attachment.type)
            media_url = attachment.payload.url if attachment.payload else None
            content = content_with_placeholder(content, attachment.type)
        content, content_type = self._decorate(message, content, content_type)
        return InboundEnvelope(
            platform=self.platform,
            channel_external_id=event.recipient.id or entry.id,
            contact_id=event.sender.id,
            content=content,
            content_type=content_type,
            media_url=media_url,
            platform_message_id=message.mid,
            timestamp=_from_millis(event.timestamp) or datetime.now(timezone.utc),
            metadata={"timestamp": event.timestamp, "sender": event.sender.id},
        )

    def _decorate(self, message, content: str, content_type: ContentType):
        return content, content_type

    # -- Graph API --------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client().request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            raise ProviderError(self.platform, f"{type(e).__name__}: {e}") from e
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error or (isinstance(data, dict) and "error" in data):
            error = data.get("error") if isinstance(data, dict) else None
            detail = (error or {}).get("message") if isinstance(error, dict) else None
            raise ProviderError(
                self.platform, detail or response.text or "request failed", response.status_code
            )
        return data if isinstance(data, dict) else {}

    def _send_path(self, channel: ChannelContext) -> str:
        raise NotImplementedError

    @staticmethod
    def message_body(content: OutboundContent) -> dict[str, Any]:
        attachment_type = _ATTACHMENT_TYPES.get(content.content_type)
        if content.media_url and attachment_type:
            return {
                "attachment": {
                    "type": attachment_type,
                    "payload": {"url": content.media_url, "is_reusable": True},
                }
            }
        return {"text": content.content}

    async def send(
        self, channel: ChannelContext, recipient: str, content: OutboundContent
    ) -> SendResult:
        if not channel.access_token:
            raise ProviderError(self.platform, "Channel has no access token")
        data = await self._request(
            "POST",
            self._send_path(channel),
            params={"access_token": channel.access_token},
            json={"recipient": {"id": recipient}, "message": self.message_body(content)},
        )
        return SendResult(platform_message_id=data.get("message_id"))

    async def fetch_contact_profile(
        self, channel: ChannelContext, contact_id: str
    ) -> ContactProfile:
        if not channel.access_token:
            return ContactProfile(name=self.default_contact_name)
        try:
            data = await self._request(
                "GET",
                f"/{contact_id}",
                params={"fields": self.profile_fields, "access_token": channel.access_token},
            )
        except ProviderError as e:
            logger.warning("Profile lookup failed for %s contact %s: %s", self.platform, contact_id, e)
            return ContactProfile(name=self.default_contact_name)
        return self._profile_from(data)

    def _profile_from(self, data: dict[str, Any]) -> ContactProfile:
        raise NotImplementedError

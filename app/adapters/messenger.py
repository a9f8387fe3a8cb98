"""
Facebook Messenger platform adapter.

Pages are connected with a page access token; on connect the token is
swapped for a long-lived one and the page is subscribed to the app's
messaging webhooks.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

from app.adapters.meta_graph import MetaGraphAdapter
from app.constants.inbox import Platform
from app.exceptions import ProviderError
from app.schemas.envelope import ChannelContext, ContactProfile

logger = logging.getLogger(__name__)

OAUTH_SCOPES = (
    "pages_messaging",
    "pages_manage_metadata",
    "pages_read_engagement",
    "pages_show_list",
)
SUBSCRIBED_FIELDS = ("messages", "messaging_postbacks", "message_reads", "message_deliveries")


class MessengerAdapter(MetaGraphAdapter):
    platform = Platform.FACEBOOK
    webhook_object = "page"
    default_contact_name = "Facebook User"
    profile_fields = "name,profile_pic"

    def _send_path(self, channel: ChannelContext) -> str:
        return "/me/messages"

    def _profile_from(self, data: dict[str, Any]) -> ContactProfile:
        return ContactProfile(
            name=data.get("name") or self.default_contact_name,
            avatar=data.get("profile_pic"),
        )

    def oauth_url(self, redirect_uri: str, state: str) -> str:
        query = urlencode(
            {
                "client_id": self._app_id or "",
                "redirect_uri": redirect_uri,
                "scope": ",".join(OAUTH_SCOPES),
                "state": state,
                "response_type": "code",
            }
        )
        version = self._graph_url.rstrip("/").rsplit("/", 1)[-1]
        return f"https://www.facebook.com/{version}/dialog/oauth?{query}"

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        data = await self._request(
            "GET",
            "/oauth/access_token",
            params={
                "client_id": self._app_id,
                "client_secret": self._app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )
        return data["access_token"]

    async def list_pages(self, user_access_token: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", "/me/accounts", params={"access_token": user_access_token}
        )
        return data.get("data") or []

    async def exchange_long_lived_token(self, short_token: str) -> Optional[str]:
        """Swap a short-lived token. Returns None when the app credentials are not configured."""
        if not self._app_id or not self._app_secret:
            return None
        data = await self._request(
            "GET",
            "/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self._app_id,
                "client_secret": self._app_secret,
                "fb_exchange_token": short_token,
            },
        )
        return data.get("access_token")

    async def subscribe_page(self, page_id: str, page_access_token: str) -> None:
        data = await self._request(
            "POST",
            f"/{page_id}/subscribed_apps",
            params={"access_token": page_access_token},
            json={"subscribed_fields": list(SUBSCRIBED_FIELDS)},
        )
        if data.get("success") is not True:
            raise ProviderError(self.platform, "Page webhook subscription was not confirmed")

    async def initialize(self, channel: ChannelContext) -> Optional[str]:
        if not channel.access_token or not channel.external_id:
            raise ProviderError(self.platform, "Page id and access token are required")
        token = channel.access_token
        try:
            long_lived = await self.exchange_long_lived_token(token)
        except ProviderError as e:
            logger.warning("Long-lived token exchange failed for page %s: %s", channel.external_id, e)
            long_lived = None
        if long_lived:
            token = long_lived
        await self.subscribe_page(channel.external_id, token)
        return token if long_lived else None

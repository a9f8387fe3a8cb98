"""Instagram DM platform adapter (Instagram Graph messaging via a linked page)."""

from __future__ import annotations

from typing import Any

from app.adapters.content import story_reply
from app.adapters.meta_graph import MetaGraphAdapter
from app.constants.inbox import ContentType, Platform
from app.schemas.envelope import ChannelContext, ContactProfile


class InstagramAdapter(MetaGraphAdapter):
    platform = Platform.INSTAGRAM
    webhook_object = "instagram"
    default_contact_name = "Instagram User"
    profile_fields = "username,name,profile_picture_url"

    def _send_path(self, channel: ChannelContext) -> str:
        return f"/{channel.external_id}/messages"

    def _decorate(self, message, content: str, content_type: ContentType):
        if message.reply_to is not None and message.reply_to.story is not None:
            return story_reply(content)
        return content, content_type

    def _profile_from(self, data: dict[str, Any]) -> ContactProfile:
        return ContactProfile(
            name=data.get("username") or data.get("name") or self.default_contact_name,
            username=data.get("username"),
            avatar=data.get("profile_picture_url"),
        )

    async def list_accounts(self, user_access_token: str) -> list[dict[str, Any]]:
        """Instagram business accounts linked to the user's pages."""
        pages = await self._request(
            "GET", "/me/accounts", params={"access_token": user_access_token}
        )
        accounts: list[dict[str, Any]] = []
        for page in pages.get("data") or []:
            data = await self._request(
                "GET",
                f"/{page['id']}",
                params={
                    "fields": "instagram_business_account{id,username,profile_picture_url}",
                    "access_token": page.get("access_token"),
                },
            )
            account = data.get("instagram_business_account")
            if account:
                accounts.append(
                    {
                        **account,
                        "page_id": page["id"],
                        "page_name": page.get("name"),
                        "page_access_token": page.get("access_token"),
                    }
                )
        return accounts

"""Channels API: connect, pair, inspect, disconnect and delete messaging channels."""

from __future__ import annotations

import logging
import secrets
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.adapters.instagram import InstagramAdapter
from app.adapters.messenger import MessengerAdapter
from app.constants.inbox import Platform
from app.core.app_state import AppState
from app.db import get_db
from app.exceptions import InboxError
from app.models.channel import Channel
from app.routers.utils.dependencies import (
    get_app_state,
    get_channel_by_id,
    to_http_exception,
)
from app.schemas.inbox import (
    ChannelCreate,
    ChannelListResponse,
    ChannelRead,
    ConnectResult,
    FacebookConnectRequest,
    InstagramAccountRead,
    InstagramConnectRequest,
    MetaPageRead,
    MetaTokenRequest,
    OAuthUrlResponse,
    PairingStateRead,
    WhatsAppInitRequest,
)
from app.services.channel_service import ChannelService
from app.services.inbox_store import InboxStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/channels",
    tags=["channels"],
    responses={404: {"description": "Not found"}},
)


@router.get("", response_model=ChannelListResponse)
def list_channels(db: Session = Depends(get_db)) -> ChannelListResponse:
    """List channels grouped by platform, with per-platform counts."""
    svc = ChannelService(db)
    grouped = ChannelListResponse(stats=svc.channel_stats())
    for channel in svc.list_channels():
        getattr(grouped, channel.platform).append(ChannelRead.model_validate(channel))
    return grouped


# --- WhatsApp (QR pairing) ---


@router.post("/whatsapp/init", response_model=ConnectResult)
async def init_whatsapp_channel(
    data: WhatsAppInitRequest,
    state: AppState = Depends(get_app_state),
) -> ConnectResult:
    """
    Create a WhatsApp channel (or reuse `channel_id`) and start its pairing session.
    The QR code arrives over the realtime socket and through GET /channels/whatsapp/{id}/qr.
    """
    if state.registry.get(Platform.WHATSAPP) is None:
        raise HTTPException(status_code=400, detail="WhatsApp integration is not enabled")
    channel_id = data.channel_id
    if channel_id is None:
        with state.session_factory() as db:
            channel = InboxStore(db, state.events).create_channel(
                ChannelCreate(platform=Platform.WHATSAPP, name=data.name)
            )
            channel_id = channel.id
    try:
        outcome = await state.connections.connect(channel_id)
    except InboxError as e:
        raise to_http_exception(e) from e
    return ConnectResult(
        channel=ChannelRead.model_validate(outcome.channel),
        session_state=outcome.session_state.value if outcome.session_state else None,
        already_connected=outcome.already_connected,
    )


@router.get("/whatsapp/{channel_id}/qr", response_model=PairingStateRead)
def get_whatsapp_qr(
    channel: Channel = Depends(get_channel_by_id),
    state: AppState = Depends(get_app_state),
) -> PairingStateRead:
    """Current pairing state and QR code (if one is waiting to be scanned)."""
    if channel.platform != Platform.WHATSAPP.value:
        raise HTTPException(status_code=400, detail="Channel is not a WhatsApp channel")
    return state.connections.get_pairing_state(channel)


# --- Facebook Messenger / Instagram ---


def _meta_adapter(state: AppState, platform: Platform):
    adapter = state.registry.get(platform)
    if adapter is None:
        raise HTTPException(
            status_code=400, detail=f"{platform.value.title()} integration is not enabled"
        )
    return adapter


async def _user_token(adapter: MessengerAdapter, data: MetaTokenRequest) -> str:
    if data.access_token:
        return data.access_token
    if data.code and data.redirect_uri:
        return await adapter.exchange_code(data.code, data.redirect_uri)
    raise HTTPException(
        status_code=400, detail="access_token, or code and redirect_uri, is required"
    )


@router.get("/facebook/oauth-url", response_model=OAuthUrlResponse)
def facebook_oauth_url(
    redirect_uri: str,
    oauth_state: Optional[str] = Query(default=None, alias="state"),
    state: AppState = Depends(get_app_state),
) -> OAuthUrlResponse:
    """Login dialog URL for granting page messaging permissions."""
    adapter: MessengerAdapter = _meta_adapter(state, Platform.FACEBOOK)
    return OAuthUrlResponse(
        url=adapter.oauth_url(redirect_uri, oauth_state or secrets.token_urlsafe(16))
    )


@router.post("/facebook/pages", response_model=list[MetaPageRead])
async def list_facebook_pages(
    data: MetaTokenRequest,
    state: AppState = Depends(get_app_state),
) -> list[MetaPageRead]:
    """Pages the user manages, each with its page access token."""
    adapter: MessengerAdapter = _meta_adapter(state, Platform.FACEBOOK)
    try:
        token = await _user_token(adapter, data)
        pages = await adapter.list_pages(token)
    except InboxError as e:
        raise to_http_exception(e) from e
    return [MetaPageRead.model_validate(p) for p in pages]


@router.post("/instagram/accounts", response_model=list[InstagramAccountRead])
async def list_instagram_accounts(
    data: MetaTokenRequest,
    state: AppState = Depends(get_app_state),
) -> list[InstagramAccountRead]:
    """Instagram business accounts linked to the user's pages."""
    adapter: InstagramAdapter = _meta_adapter(state, Platform.INSTAGRAM)
    if not data.access_token:
        raise HTTPException(status_code=400, detail="access_token is required")
    try:
        accounts = await adapter.list_accounts(data.access_token)
    except InboxError as e:
        raise to_http_exception(e) from e
    return [InstagramAccountRead.model_validate(a) for a in accounts]


@router.post("/facebook/connect", response_model=ChannelRead, status_code=201)
async def connect_facebook_page(
    data: FacebookConnectRequest,
    state: AppState = Depends(get_app_state),
) -> ChannelRead:
    """Connect a page: token exchange plus webhook subscription."""
    try:
        channel = await state.connections.connect_webhook_channel(
            Platform.FACEBOOK, data.page_id, data.access_token, name=data.page_name
        )
    except InboxError as e:
        raise to_http_exception(e) from e
    return ChannelRead.model_validate(channel)


@router.post("/instagram/connect", response_model=ChannelRead, status_code=201)
async def connect_instagram_account(
    data: InstagramConnectRequest,
    state: AppState = Depends(get_app_state),
) -> ChannelRead:
    """Connect an Instagram business account. The channel is named `@username`."""
    name = data.account_name
    if name and not name.startswith("@"):
        name = f"@{name}"
    try:
        channel = await state.connections.connect_webhook_channel(
            Platform.INSTAGRAM, data.account_id, data.access_token, name=name
        )
    except InboxError as e:
        raise to_http_exception(e) from e
    return ChannelRead.model_validate(channel)


# --- Any channel ---


@router.get("/{channel_id}", response_model=ChannelRead)
def get_channel(channel: Channel = Depends(get_channel_by_id)) -> ChannelRead:
    """Get a channel by ID."""
    return ChannelRead.model_validate(channel)


@router.post("/{channel_id}/disconnect", response_model=ChannelRead)
async def disconnect_channel(
    channel_id: UUID,
    logout: bool = True,
    state: AppState = Depends(get_app_state),
) -> ChannelRead:
    """Tear down the channel's session (if any) and mark it disconnected."""
    try:
        channel = await state.connections.disconnect(channel_id, logout=logout)
    except InboxError as e:
        raise to_http_exception(e) from e
    return ChannelRead.model_validate(channel)


@router.delete("/{channel_id}", status_code=204)
async def delete_channel(
    channel_id: UUID,
    state: AppState = Depends(get_app_state),
) -> None:
    """Delete a channel with its conversations and messages."""
    if not await state.connections.delete_channel(channel_id):
        raise HTTPException(status_code=404, detail="Channel not found")


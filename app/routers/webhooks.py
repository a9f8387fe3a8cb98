"""
Webhook API: Meta (Messenger / Instagram) verification and delivery endpoints,
plus the dead-letter list and manual replay for deliveries whose processing failed.

Deliveries are acknowledged with 200 before any processing; processing runs
as a background task.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.constants.inbox import Platform, WebhookFailureStatus
from app.core.app_state import AppState
from app.db import get_db
from app.routers.utils.dependencies import get_app_state
from app.schemas.inbox import WebhookFailureRead
from app.services.webhook_failure_service import WebhookFailureService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("/failures", response_model=Page[WebhookFailureRead])
def list_webhook_failures(
    status: Optional[WebhookFailureStatus] = None,
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[WebhookFailureRead]:
    """List dead-lettered deliveries, newest first."""
    query = WebhookFailureService(db).failures_query(status.value if status else None)
    return paginate(db, query, params=params)


@router.post("/failures/{failure_id}/replay", response_model=WebhookFailureRead)
async def replay_webhook_failure(
    failure_id: UUID,
    state: AppState = Depends(get_app_state),
) -> WebhookFailureRead:
    """Re-run a dead-lettered delivery. The attempt is recorded either way."""
    failure = await state.inbound.replay(failure_id)
    if failure is None:
        raise HTTPException(status_code=404, detail="Webhook failure not found")
    return WebhookFailureRead.model_validate(failure)


def _verify(
    platform: Platform,
    state: AppState,
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
) -> PlainTextResponse:
    return PlainTextResponse(state.webhooks.verify(platform, mode, token, challenge))


@router.get("/facebook", response_class=PlainTextResponse)
def verify_facebook_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    state: AppState = Depends(get_app_state),
) -> PlainTextResponse:
    """Messenger subscription handshake. Returns hub.challenge on a token match."""
    return _verify(Platform.FACEBOOK, state, mode, token, challenge)


@router.post("/facebook")
async def facebook_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
) -> dict[str, str]:
    """Receive Messenger deliveries. Acknowledge, then process out of band."""
    return await state.webhooks.acknowledge(Platform.FACEBOOK, request, background_tasks)


@router.get("/instagram", response_class=PlainTextResponse)
def verify_instagram_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    state: AppState = Depends(get_app_state),
) -> PlainTextResponse:
    """Instagram subscription handshake. Returns hub.challenge on a token match."""
    return _verify(Platform.INSTAGRAM, state, mode, token, challenge)


@router.post("/instagram")
async def instagram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
) -> dict[str, str]:
    """Receive Instagram DM deliveries. Acknowledge, then process out of band."""
    return await state.webhooks.acknowledge(Platform.INSTAGRAM, request, background_tasks)

"""Inbox API: conversation list and detail, agent actions, message history and sending."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.constants.inbox import ConversationStatus, Platform
from app.core.app_state import AppState
from app.db import get_db
from app.exceptions import InboxError
from app.models.conversation import Conversation
from app.routers.utils.dependencies import (
    get_app_state,
    get_conversation_by_id,
    get_current_agent_id,
    to_http_exception,
)
from app.schemas.inbox import (
    AssignRequest,
    ConversationDetail,
    ConversationRead,
    ConversationUpdate,
    InboxStats,
    MessageRead,
    SendMessageRequest,
    SyncRequest,
    SyncResult,
)
from app.services.inbox_store import InboxStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/inbox",
    tags=["inbox"],
    responses={404: {"description": "Not found"}},
)

DETAIL_MESSAGE_LIMIT = 100


@router.get("/conversations", response_model=Page[ConversationRead])
def list_conversations(
    platform: Optional[Platform] = None,
    status: Optional[ConversationStatus] = None,
    agent_id: Optional[UUID] = None,
    channel_id: Optional[UUID] = None,
    unread: bool = False,
    search: Optional[str] = Query(default=None, max_length=200),
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[ConversationRead]:
    """List conversations, most recent activity first."""
    query = InboxStore(db).conversations_query(
        platform=platform.value if platform else None,
        status=status.value if status else None,
        agent_id=agent_id,
        unread_only=unread,
        search=search,
        channel_id=channel_id,
    )
    return paginate(db, query, params=params)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
    state: AppState = Depends(get_app_state),
) -> ConversationDetail:
    """Open a conversation: resets its unread counter and returns recent messages."""
    store = InboxStore(db, state.events)
    if conversation.unread_count:
        conversation = store.mark_read(conversation.id)
    messages = store.messages.recent_messages(conversation.id, limit=DETAIL_MESSAGE_LIMIT)
    return ConversationDetail(
        **ConversationRead.model_validate(conversation).model_dump(),
        messages=[MessageRead.model_validate(m) for m in messages],
    )


@router.patch("/conversations/{conversation_id}", response_model=ConversationRead)
def update_conversation(
    data: ConversationUpdate,
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
    state: AppState = Depends(get_app_state),
) -> ConversationRead:
    """Update status, notes, labels, contact details or assignment."""
    updated = InboxStore(db, state.events).update_conversation(conversation.id, data)
    return ConversationRead.model_validate(updated)


@router.post("/conversations/{conversation_id}/assign", response_model=ConversationRead)
def assign_conversation(
    data: AssignRequest,
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
    state: AppState = Depends(get_app_state),
    current_agent_id: Optional[UUID] = Depends(get_current_agent_id),
) -> ConversationRead:
    """Assign to `agent_id`, or to the acting agent when the body names none."""
    agent_id = data.agent_id if "agent_id" in data.model_fields_set else current_agent_id
    updated = InboxStore(db, state.events).assign_agent(conversation.id, agent_id)
    return ConversationRead.model_validate(updated)


@router.post("/conversations/{conversation_id}/read", response_model=ConversationRead)
def mark_conversation_read(
    conversation: Conversation = Depends(get_conversation_by_id),
    db: Session = Depends(get_db),
    state: AppState = Depends(get_app_state),
) -> ConversationRead:
    """Reset the unread counter."""
    updated = InboxStore(db, state.events).mark_read(conversation.id)
    return ConversationRead.model_validate(updated)


@router.get("/conversations/{conversation_id}/messages", response_model=Page[MessageRead])
def list_messages(
    conversation: Conversation = Depends(get_conversation_by_id),
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[MessageRead]:
    """Messages of a conversation in creation order."""
    return paginate(db, InboxStore(db).messages_query(conversation.id), params=params)


@router.post("/conversations/{conversation_id}/sync", response_model=SyncResult)
async def sync_conversation(
    conversation_id: UUID,
    data: Optional[SyncRequest] = None,
    state: AppState = Depends(get_app_state),
) -> SyncResult:
    """Backfill recent history from the channel's live session."""
    limit = data.limit if data is not None else SyncRequest().limit
    try:
        return await state.connections.sync_messages(conversation_id, limit=limit)
    except InboxError as e:
        raise to_http_exception(e) from e


@router.post("/send", response_model=MessageRead, status_code=201)
async def send_message(
    data: SendMessageRequest,
    state: AppState = Depends(get_app_state),
    agent_id: Optional[UUID] = Depends(get_current_agent_id),
) -> MessageRead:
    """
    Send a reply. The message is stored before the provider call, so a provider
    failure returns 201 with status `failed` rather than an error.
    """
    try:
        message = await state.outbound.execute(data, agent_id=agent_id)
    except InboxError as e:
        raise to_http_exception(e) from e
    return MessageRead.model_validate(message)


@router.get("/stats", response_model=InboxStats)
def get_inbox_stats(db: Session = Depends(get_db)) -> InboxStats:
    """Total unread plus per-platform channel counts."""
    store = InboxStore(db)
    return InboxStats(total_unread=store.total_unread(), channels=store.channel_stats())

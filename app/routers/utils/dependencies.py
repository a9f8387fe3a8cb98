from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.app_state import AppState
from app.db import get_db
from app.exceptions import (
    ChannelConflict,
    ChannelNotFound,
    ConfigurationError,
    ConversationNotFound,
    InboxError,
    InvalidStatusTransition,
    ProviderError,
    SessionNotReady,
)
from app.models.channel import Channel
from app.models.conversation import Conversation
from app.services.channel_service import ChannelService
from app.services.conversation_service import ConversationService


def get_app_state(request: Request) -> AppState:
    """FastAPI dependency for the runtime wiring created by `create_app`."""
    return request.app.state.inbox


def get_current_agent_id(
    request: Request,
    x_agent_id: Optional[str] = Header(default=None),
) -> Optional[UUID]:
    """Acting agent: set by upstream auth middleware, else the X-Agent-Id header."""
    agent_id = getattr(request.state, "agent_id", None)
    if agent_id is not None:
        return agent_id if isinstance(agent_id, UUID) else UUID(str(agent_id))
    if not x_agent_id:
        return None
    try:
        return UUID(x_agent_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid X-Agent-Id header") from e


def get_channel_by_id(
    channel_id: UUID,
    db: Session = Depends(get_db),
) -> Channel:
    """FastAPI dependency to get a channel by ID."""
    channel = ChannelService(db).get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


def get_conversation_by_id(
    conversation_id: UUID,
    db: Session = Depends(get_db),
) -> Conversation:
    """FastAPI dependency to get a conversation by ID."""
    conversation = ConversationService(db).get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def to_http_exception(error: InboxError) -> HTTPException:
    """Map an inbox error to the HTTP status the API reports for it."""
    if isinstance(error, ChannelNotFound):
        return HTTPException(status_code=404, detail="Channel not found")
    if isinstance(error, ConversationNotFound):
        return HTTPException(status_code=404, detail="Conversation not found")
    if isinstance(error, (SessionNotReady, ChannelConflict)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ProviderError):
        return HTTPException(status_code=502, detail=error.detail)
    if isinstance(error, (ConfigurationError, InvalidStatusTransition)):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))

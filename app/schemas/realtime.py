"""
Realtime websocket frames.

Client frames are validated through a discriminated union on `type`;
server frames are plain dicts built by `server_frame`.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


class AuthenticateFrame(BaseModel):
    type: Literal["authenticate"]
    agent_id: Optional[UUID] = Field(default=None, alias="agentId")

    model_config = {"populate_by_name": True}


class SubscribeFrame(BaseModel):
    type: Literal["subscribe"]
    channels: list[UUID] = Field(default_factory=list)
    conversations: list[UUID] = Field(default_factory=list)


class TypingFrame(BaseModel):
    type: Literal["typing"]
    conversation_id: UUID = Field(alias="conversationId")
    is_typing: bool = Field(default=True, alias="isTyping")

    model_config = {"populate_by_name": True}


class ReadFrame(BaseModel):
    type: Literal["read"]
    conversation_id: UUID = Field(alias="conversationId")

    model_config = {"populate_by_name": True}


class PingFrame(BaseModel):
    type: Literal["ping"]


class PongFrame(BaseModel):
    type: Literal["pong"]


ClientFrame = Annotated[
    Union[
        AuthenticateFrame, SubscribeFrame, TypingFrame, ReadFrame, PingFrame, PongFrame
    ],
    Field(discriminator="type"),
]

client_frame_adapter: TypeAdapter[ClientFrame] = TypeAdapter(ClientFrame)


def server_frame(frame_type: str, **data: Any) -> dict[str, Any]:
    return {"type": frame_type, **data}

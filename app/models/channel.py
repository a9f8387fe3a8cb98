"""Channel model: one connected platform account or session."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Index, LargeBinary, String, Uuid, text
from sqlalchemy.orm import relationship

from app.constants.inbox import ChannelStatus
from app.db import Base
from app.models.mixins import TimestampMixin


class Channel(Base, TimestampMixin):
    """A connected messaging surface (WhatsApp number, Facebook page, Instagram account)."""

    __tablename__ = "channels"

    __table_args__ = (
        # external_id is unique per platform among active channels only.
        Index(
            "uq_channels_platform_external_id_active",
            "platform",
            "external_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    platform = Column(String(32), nullable=False, index=True)
    external_id = Column(String(255), nullable=True)
    name = Column(String(255), nullable=False)
    phone_number = Column(String(64), nullable=True)
    access_token = Column(LargeBinary, nullable=True)  # Fernet-encrypted
    session_data = Column(LargeBinary, nullable=True)  # Fernet-encrypted
    status = Column(String(32), nullable=False, default=ChannelStatus.PENDING.value)
    last_active_at = Column(DateTime(timezone=True), nullable=True)

    conversations = relationship(
        "Conversation",
        back_populates="channel",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_session_data(self) -> bool:
        return self.session_data is not None

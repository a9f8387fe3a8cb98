"""WebhookFailure model: acknowledged webhook deliveries whose processing failed."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, Integer, String, Text, Uuid

from app.constants.inbox import WebhookFailureStatus
from app.db import Base
from app.models.mixins import JSONType, TimestampMixin


class WebhookFailure(Base, TimestampMixin):
    __tablename__ = "webhook_failures"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    platform = Column(String(32), nullable=False, index=True)
    payload = Column(JSONType, nullable=False)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    status = Column(
        String(16), nullable=False, default=WebhookFailureStatus.FAILED.value
    )

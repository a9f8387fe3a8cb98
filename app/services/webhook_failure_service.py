"""Dead-letter records for webhook deliveries whose processing failed."""

from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app.constants.inbox import WebhookFailureStatus
from app.models.webhook_failure import WebhookFailure


class WebhookFailureService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_failure(self, failure_id: UUID) -> Optional[WebhookFailure]:
        return (
            self.db.query(WebhookFailure).filter(WebhookFailure.id == failure_id).first()
        )

    def record_failure(
        self, platform: str, payload: Dict[str, Any], error: str
    ) -> WebhookFailure:
        failure = WebhookFailure(platform=platform, payload=payload, error=error[:2000])
        self.db.add(failure)
        self.db.commit()
        self.db.refresh(failure)
        return failure

    def record_attempt(
        self, failure_id: UUID, error: Optional[str] = None
    ) -> Optional[WebhookFailure]:
        """Count a replay attempt; a None error marks the failure replayed."""
        failure = self.get_failure(failure_id)
        if failure is None:
            return None
        failure.attempts = (failure.attempts or 0) + 1
        if error is None:
            failure.status = WebhookFailureStatus.REPLAYED.value
        else:
            failure.error = error[:2000]
        self.db.commit()
        self.db.refresh(failure)
        return failure

    def failures_query(self, status: Optional[str] = None) -> Select:
        stmt = select(WebhookFailure)
        if status is not None:
            stmt = stmt.where(WebhookFailure.status == status)
        return stmt.order_by(WebhookFailure.created_at.desc())

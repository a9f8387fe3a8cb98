"""
Command to acknowledge Meta (Messenger / Instagram) webhook deliveries.

Ack phase only: answers the verify-token handshake, checks the payload
signature, parses the body and confirms the `object` matches the platform.
Processing is handed to `ProcessInboundCommand` as a background task so the
provider gets its 200 before any storage or network work happens.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import BackgroundTasks, HTTPException, Request

from app.adapters.base import BasePlatformAdapter
from app.commands.inbound.process_inbound_command import ProcessInboundCommand
from app.constants.inbox import Platform
from app.core.registry import AdapterRegistry

logger = logging.getLogger(__name__)


class MetaWebhookCommand:
    def __init__(self, registry: AdapterRegistry, inbound: ProcessInboundCommand) -> None:
        self._registry = registry
        self._inbound = inbound

    def _adapter(self, platform: Platform) -> BasePlatformAdapter:
        adapter = self._registry.get(platform)
        if adapter is None:
            raise HTTPException(
                status_code=503,
                detail=f"{platform.value.title()} integration is not configured or disabled",
            )
        return adapter

    def verify(
        self,
        platform: Platform,
        mode: Optional[str],
        token: Optional[str],
        challenge: Optional[str],
    ) -> str:
        """
        Answer the subscription handshake.

        Raises:
            HTTPException: 503 if the platform is disabled, 403 on a token mismatch.
        """
        adapter = self._adapter(platform)
        answer = adapter.verify_subscription(mode, token, challenge)
        if answer is None:
            logger.warning("%s webhook verification rejected", platform.value)
            raise HTTPException(status_code=403, detail="Verification failed")
        logger.info("%s webhook verified", platform.value)
        return answer

    async def acknowledge(
        self, platform: Platform, request: Request, background_tasks: BackgroundTasks
    ) -> dict[str, str]:
        """
        Validate and accept a delivery, scheduling its processing out of band.

        Raises:
            HTTPException: 503 disabled, 403 bad signature, 400 invalid JSON,
                404 payload addressed to another object type.
        """
        adapter = self._adapter(platform)
        raw_body = await request.body()
        headers = dict(request.headers) if request.headers else {}
        if not adapter.verify_webhook(raw_body, headers):
            logger.warning("%s webhook signature rejected", platform.value)
            raise HTTPException(status_code=403, detail="Invalid webhook signature")
        try:
            payload: Any = json.loads(raw_body or b"null")
        except ValueError as e:
            logger.warning("%s webhook invalid JSON: %s", platform.value, e)
            raise HTTPException(status_code=400, detail="Invalid JSON body") from e
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")
        if not adapter.accepts_object(payload):
            raise HTTPException(status_code=404, detail="Unsupported webhook object")
        background_tasks.add_task(self._inbound.execute, platform, payload)
        return {"status": "ok"}

"""
Inbox API application factory.

Wires the adapter registry, event router, connection manager, dispatcher and
realtime hub into one `AppState`, and runs their startup/shutdown in the
FastAPI lifespan.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi_pagination import add_pagination

from app.commands.inbound.process_inbound_command import SessionFactory
from app.config import Settings, get_settings
from app.core.app_state import AppState
from app.core.registry import AdapterRegistry
from app.db import db_manager
from app.infra.logging_config import LoggingConfig, get_logger
from app.routers import (
    channels_router,
    conversations_router,
    realtime_router,
    webhooks,
)

logger = get_logger(__name__)


def create_app(
    testing: bool = False,
    settings: Optional[Settings] = None,
    session_factory: Optional[SessionFactory] = None,
    registry: Optional[AdapterRegistry] = None,
) -> FastAPI:
    """
    Build the application.

    Raises:
        ConfigurationError: an enabled platform is missing credentials or its bridge.
    """
    settings = settings or get_settings()
    if not testing:
        LoggingConfig(settings.log_level).configure()

    state = AppState(
        settings=settings,
        session_factory=session_factory or db_manager.db_session,
        registry=registry,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await state.startup()
        resume_task: Optional[asyncio.Task] = None
        if not testing and settings.whatsapp_resume_on_startup:
            resume_task = asyncio.create_task(
                state.connections.resume_sessions(), name="resume-sessions"
            )
        logger.info("%s started (%s)", settings.app_name, settings.environment)
        try:
            yield
        finally:
            if resume_task is not None and not resume_task.done():
                resume_task.cancel()
            await state.shutdown()
            logger.info("%s stopped", settings.app_name)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.inbox = state

    app.include_router(webhooks.router)
    app.include_router(channels_router.router)
    app.include_router(conversations_router.router)
    app.include_router(realtime_router.router)

    @app.get("/health", tags=["system"])
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "platforms": [adapter.platform.value for adapter in state.registry.list()],
            "sessions": len(state.connections.list_sessions()),
            "realtime_clients": state.hub.client_count,
        }

    add_pagination(app)
    return app

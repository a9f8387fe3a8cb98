from __future__ import annotations

import logging
from typing import Dict, Optional

from app.adapters.base import BasePlatformAdapter
from app.adapters.instagram import InstagramAdapter
from app.adapters.messenger import MessengerAdapter
from app.adapters.whatsapp_web import WhatsAppWebAdapter
from app.config import Settings
from app.constants.inbox import Platform
from app.core.session_registry import ChannelSessionRegistry

logger = logging.getLogger(__name__)


class AdapterRegistry:
    def __init__(self) -> None:
        self._adapters: Dict[Platform, BasePlatformAdapter] = {}

    def register(self, adapter: BasePlatformAdapter) -> None:
        if adapter.platform in self._adapters:
            raise ValueError(f"Adapter already registered: {adapter.platform}")
        self._adapters[adapter.platform] = adapter

    def get(self, platform: Platform | str) -> Optional[BasePlatformAdapter]:
        try:
            return self._adapters.get(Platform(platform))
        except ValueError:
            return None

    def list(self) -> list[BasePlatformAdapter]:
        return list(self._adapters.values())

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_adapter_registry(
    settings: Settings, sessions: ChannelSessionRegistry
) -> AdapterRegistry:
    """
    Build the adapter registry from config. Only enabled platforms are included.

    Raises:
        ConfigurationError: an enabled platform is missing credentials or runtime pieces.
    """
    registry = AdapterRegistry()
    candidates: list[BasePlatformAdapter] = []
    if settings.facebook_enabled:
        candidates.append(MessengerAdapter(settings))
    if settings.instagram_enabled:
        candidates.append(InstagramAdapter(settings))
    if settings.whatsapp_enabled:
        candidates.append(WhatsAppWebAdapter(settings, sessions))
    for adapter in candidates:
        adapter.check_configuration()
        registry.register(adapter)
        logger.info("Platform adapter enabled: %s", adapter.platform)
    return registry

"""Platform adapters for inbox integrations."""

from app.adapters.base import BasePlatformAdapter, PlatformSession
from app.adapters.instagram import InstagramAdapter
from app.adapters.messenger import MessengerAdapter
from app.adapters.whatsapp_web import WhatsAppWebAdapter

__all__ = [
    "BasePlatformAdapter",
    "PlatformSession",
    "InstagramAdapter",
    "MessengerAdapter",
    "WhatsAppWebAdapter",
]

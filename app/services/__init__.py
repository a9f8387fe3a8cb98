from app.services.channel_service import ChannelService
from app.services.conversation_service import ConversationService
from app.services.inbox_store import InboxStore
from app.services.message_service import MessageService
from app.services.webhook_failure_service import WebhookFailureService

__all__ = [
    "ChannelService",
    "ConversationService",
    "InboxStore",
    "MessageService",
    "WebhookFailureService",
]

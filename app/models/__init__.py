from app.models.channel import Channel
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.webhook_failure import WebhookFailure

__all__ = [
    "Channel",
    "Conversation",
    "Message",
    "WebhookFailure",
]

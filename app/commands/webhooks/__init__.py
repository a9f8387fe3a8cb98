"""Webhook command handlers."""

from app.commands.webhooks.meta_webhook_command import MetaWebhookCommand

__all__ = ["MetaWebhookCommand"]

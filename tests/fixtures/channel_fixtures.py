"""Fixtures for channels, conversations and messages."""

import pytest

from app.constants.inbox import (
    ChannelStatus,
    MessageDirection,
    MessageStatus,
    Platform,
)
from app.schemas.inbox import ChannelCreate, ConversationCreate
from app.services.channel_service import ChannelService
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService


def missing_once(original):
    """Wrap a lookup so its first call misses, as if another writer had not committed yet."""
    calls = []

    def lookup(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return None
        return original(self, *args, **kwargs)

    return lookup


@pytest.fixture(scope="function")
def setup_messenger_channel(db, faker):
    """Active Facebook page channel with a page access token."""
    return ChannelService(db).create_channel(
        ChannelCreate(
            platform=Platform.FACEBOOK,
            name=faker.company(),
            external_id=faker.numerify("1##############"),
            access_token=faker.sha256(),
            status=ChannelStatus.ACTIVE,
        )
    )


@pytest.fixture(scope="function")
def setup_instagram_channel(db, faker):
    """Active Instagram business account channel."""
    return ChannelService(db).create_channel(
        ChannelCreate(
            platform=Platform.INSTAGRAM,
            name="@" + faker.user_name(),
            external_id=faker.numerify("178############"),
            access_token=faker.sha256(),
            status=ChannelStatus.ACTIVE,
        )
    )


@pytest.fixture(scope="function")
def setup_whatsapp_channel(db, faker):
    """WhatsApp channel that has not been paired yet."""
    return ChannelService(db).create_channel(
        ChannelCreate(platform=Platform.WHATSAPP, name=faker.company())
    )


@pytest.fixture(scope="function")
def setup_conversation(db, faker, setup_messenger_channel):
    """Conversation between the Messenger page and one contact."""
    return ConversationService(db).create_conversation(
        ConversationCreate(
            channel_id=setup_messenger_channel.id,
            contact_identifier=faker.numerify("2##############"),
            contact_name=faker.name(),
        )
    )


@pytest.fixture(scope="function")
def setup_whatsapp_conversation(db, faker, setup_whatsapp_channel):
    phone = faker.numerify("1##########")
    return ConversationService(db).create_conversation(
        ConversationCreate(
            channel_id=setup_whatsapp_channel.id,
            contact_identifier=f"{phone}@c.us",
            contact_name=faker.name(),
            contact_phone=phone,
        )
    )


@pytest.fixture(scope="function")
def setup_sent_message(db, faker, setup_conversation):
    """Outgoing message already accepted by the platform."""
    message, _ = MessageService(db).create_message(
        conversation_id=setup_conversation.id,
        direction=MessageDirection.OUTGOING,
        content=faker.sentence(),
        status=MessageStatus.SENT,
        external_id="m_" + faker.uuid4(),
    )
    return message

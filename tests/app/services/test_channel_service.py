"""Tests for ChannelService."""

from uuid import uuid4

import pytest

from app.constants.inbox import ChannelStatus, Platform
from app.exceptions import ChannelConflict, ChannelNotFound, InvalidStatusTransition
from app.schemas.inbox import ChannelCreate, ConversationCreate
from app.services.channel_service import ChannelService
from app.services.conversation_service import ConversationService


def test_create_channel_encrypts_access_token(db):
    svc = ChannelService(db)
    channel = svc.create_channel(
        ChannelCreate(
            platform=Platform.FACEBOOK,
            name="Acme Support",
            external_id="123",
            access_token="EAAB-page-token",
        )
    )
    assert channel.status == ChannelStatus.PENDING.value
    assert channel.access_token is not None
    assert b"EAAB-page-token" not in channel.access_token
    assert svc.get_access_token(channel) == "EAAB-page-token"


def test_get_channel_not_found(db):
    svc = ChannelService(db)
    assert svc.get_channel(uuid4()) is None
    with pytest.raises(ChannelNotFound):
        svc.require_channel(uuid4())


def test_activate_pending_channel_sets_last_active(db, setup_whatsapp_channel):
    svc = ChannelService(db)
    channel = svc.update_channel_status(
        setup_whatsapp_channel.id,
        ChannelStatus.ACTIVE,
        external_id="15551234567",
        phone_number="15551234567",
    )
    assert channel.status == ChannelStatus.ACTIVE.value
    assert channel.external_id == "15551234567"
    assert channel.phone_number == "15551234567"
    assert channel.last_active_at is not None


def test_disconnected_channel_cannot_jump_to_active(db, setup_messenger_channel):
    svc = ChannelService(db)
    svc.update_channel_status(setup_messenger_channel.id, ChannelStatus.DISCONNECTED)
    with pytest.raises(InvalidStatusTransition):
        svc.update_channel_status(setup_messenger_channel.id, ChannelStatus.ACTIVE)
    channel = svc.update_channel_status(setup_messenger_channel.id, ChannelStatus.PENDING)
    assert channel.status == ChannelStatus.PENDING.value


@pytest.mark.parametrize(
    "start", [ChannelStatus.PENDING, ChannelStatus.ACTIVE, ChannelStatus.ERROR]
)
def test_any_status_can_disconnect(db, start):
    svc = ChannelService(db)
    channel = svc.create_channel(
        ChannelCreate(platform=Platform.WHATSAPP, name="Sales", status=start)
    )
    channel = svc.update_channel_status(channel.id, ChannelStatus.DISCONNECTED)
    assert channel.status == ChannelStatus.DISCONNECTED.value


def test_second_active_channel_with_same_identifier_conflicts(db, setup_messenger_channel):
    svc = ChannelService(db)
    duplicate = svc.create_channel(
        ChannelCreate(
            platform=Platform.FACEBOOK,
            name="Same page",
            external_id=setup_messenger_channel.external_id,
        )
    )
    with pytest.raises(ChannelConflict):
        svc.update_channel_status(duplicate.id, ChannelStatus.ACTIVE)
    db.refresh(duplicate)
    assert duplicate.status == ChannelStatus.PENDING.value


def test_same_identifier_on_other_platform_is_allowed(db, setup_messenger_channel):
    svc = ChannelService(db)
    other = svc.create_channel(
        ChannelCreate(
            platform=Platform.INSTAGRAM,
            name="@acme",
            external_id=setup_messenger_channel.external_id,
        )
    )
    channel = svc.update_channel_status(other.id, ChannelStatus.ACTIVE)
    assert channel.status == ChannelStatus.ACTIVE.value


def test_get_channel_by_external_id_prefers_active(db, setup_messenger_channel):
    svc = ChannelService(db)
    svc.create_channel(
        ChannelCreate(
            platform=Platform.FACEBOOK,
            name="Old connection",
            external_id=setup_messenger_channel.external_id,
            status=ChannelStatus.DISCONNECTED,
        )
    )
    found = svc.get_channel_by_external_id(
        Platform.FACEBOOK, setup_messenger_channel.external_id
    )
    assert found.id == setup_messenger_channel.id


def test_session_data_round_trip_and_resumable(db, setup_whatsapp_channel):
    svc = ChannelService(db)
    blob = {"WABrowserId": "abc", "WASecretBundle": {"key": "value"}}
    channel = svc.update_session_data(setup_whatsapp_channel.id, blob)
    assert channel.has_session_data is True
    assert svc.get_session_data(channel) == blob
    assert [c.id for c in svc.list_resumable_channels(Platform.WHATSAPP)] == [channel.id]

    svc.update_channel_status(channel.id, ChannelStatus.DISCONNECTED)
    assert svc.list_resumable_channels(Platform.WHATSAPP) == []


def test_clear_session_data(db, setup_whatsapp_channel):
    svc = ChannelService(db)
    svc.update_session_data(setup_whatsapp_channel.id, {"token": "x"})
    channel = svc.update_session_data(setup_whatsapp_channel.id, None)
    assert channel.session_data is None
    assert svc.get_session_data(channel) is None


def test_delete_channel_cascades(db, setup_conversation):
    svc = ChannelService(db)
    assert svc.delete_channel(setup_conversation.channel_id) is True
    assert ConversationService(db).get_conversation(setup_conversation.id) is None
    assert svc.delete_channel(setup_conversation.channel_id) is False


def test_channel_stats(db, setup_messenger_channel, setup_whatsapp_channel):
    stats = {s.platform: s for s in ChannelService(db).channel_stats()}
    assert stats[Platform.FACEBOOK].total == 1
    assert stats[Platform.FACEBOOK].active == 1
    assert stats[Platform.WHATSAPP].total == 1
    assert stats[Platform.WHATSAPP].active == 0
    assert stats[Platform.INSTAGRAM].total == 0


def test_conversation_unique_per_channel_contact(db, setup_messenger_channel):
    svc = ConversationService(db)
    data = ConversationCreate(channel_id=setup_messenger_channel.id, contact_identifier="psid")
    svc.create_conversation(data)
    conversation, created = svc.get_or_create(setup_messenger_channel.id, "psid")
    assert created is False
    assert conversation.contact_identifier == "psid"

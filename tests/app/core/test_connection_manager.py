"""Tests for ChannelConnectionManager."""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from app.commands.inbound.process_inbound_command import ProcessInboundCommand
from app.constants.inbox import ChannelStatus, MessageDirection, MessageStatus, Platform, SessionState
from app.core.connection_manager import ChannelConnectionManager
from app.core.events import CHANNEL_STATUS
from app.core.session_registry import ChannelSessionRegistry
from app.exceptions import (
    ChannelNotFound,
    ConfigurationError,
    ProviderError,
    SessionNotReady,
)
from app.models.message import Message
from app.schemas.envelope import InboundEnvelope
from app.schemas.inbox import ChannelCreate
from app.services.channel_service import ChannelService
from app.services.message_service import MessageService

PHONE = "15551234567"


@pytest.fixture
def sessions(fake_whatsapp):
    sessions = ChannelSessionRegistry()
    fake_whatsapp.sessions = sessions
    return sessions


@pytest.fixture
def events():
    return MagicMock()


@pytest.fixture
def manager(registry, sessions, events, session_factory):
    inbound = ProcessInboundCommand(registry, events, session_factory)
    return ChannelConnectionManager(registry, sessions, events, session_factory, inbound)


def channel_status_events(events: MagicMock) -> list[dict]:
    return [
        c.args[0].data
        for c in events.publish.call_args_list
        if c.args[0].type == CHANNEL_STATUS
    ]


async def paired(manager, fake_whatsapp, channel_id):
    await manager.connect(channel_id)
    session = fake_whatsapp.created[-1]
    await manager.on_ready(channel_id, session, PHONE, "Acme")
    return session


# --- pairing ---


@pytest.mark.asyncio
async def test_connect_starts_session(db, manager, fake_whatsapp, sessions, setup_whatsapp_channel):
    outcome = await manager.connect(setup_whatsapp_channel.id)

    assert outcome.already_connected is False
    assert outcome.session_state == SessionState.INITIALIZING
    [session] = fake_whatsapp.created
    assert session.started is True
    assert sessions.get(setup_whatsapp_channel.id).session is session
    db.refresh(setup_whatsapp_channel)
    assert setup_whatsapp_channel.status == ChannelStatus.PENDING.value


@pytest.mark.asyncio
async def test_connect_unknown_channel(manager):
    with pytest.raises(ChannelNotFound):
        await manager.connect(uuid4())


@pytest.mark.asyncio
async def test_connect_rejects_webhook_channel(manager, setup_messenger_channel):
    with pytest.raises(ConfigurationError):
        await manager.connect(setup_messenger_channel.id)


@pytest.mark.asyncio
async def test_qr_then_ready(db, manager, fake_whatsapp, sessions, events, setup_whatsapp_channel):
    await manager.connect(setup_whatsapp_channel.id)
    session = fake_whatsapp.created[0]

    await manager.on_qr(setup_whatsapp_channel.id, session, "2@qr-code")

    pairing = manager.get_pairing_state(setup_whatsapp_channel)
    assert pairing.session_state == SessionState.WAITING_FOR_SCAN.value
    assert pairing.qr == "2@qr-code"
    assert channel_status_events(events)[-1]["qr"] == "2@qr-code"

    await manager.on_authenticated(setup_whatsapp_channel.id, session, {"WABrowserId": "b"})
    await manager.on_ready(setup_whatsapp_channel.id, session, PHONE, "Acme")

    db.refresh(setup_whatsapp_channel)
    assert setup_whatsapp_channel.status == ChannelStatus.ACTIVE.value
    assert setup_whatsapp_channel.external_id == PHONE
    assert setup_whatsapp_channel.phone_number == PHONE
    assert ChannelService(db).get_session_data(setup_whatsapp_channel) == {"WABrowserId": "b"}
    record = sessions.get(setup_whatsapp_channel.id)
    assert record.state == SessionState.READY
    assert record.qr is None
    assert manager.is_ready(setup_whatsapp_channel.id) is True
    assert channel_status_events(events)[-1]["session_state"] == SessionState.READY.value


@pytest.mark.asyncio
async def test_connect_ready_channel_is_noop(manager, fake_whatsapp, setup_whatsapp_channel):
    await paired(manager, fake_whatsapp, setup_whatsapp_channel.id)

    outcome = await manager.connect(setup_whatsapp_channel.id)

    assert outcome.already_connected is True
    assert len(fake_whatsapp.created) == 1


@pytest.mark.asyncio
async def test_reconnect_replaces_stale_session(
    manager, fake_whatsapp, sessions, setup_whatsapp_channel
):
    await manager.connect(setup_whatsapp_channel.id)
    stale = fake_whatsapp.created[0]

    await manager.connect(setup_whatsapp_channel.id)
    current = fake_whatsapp.created[1]

    assert stale.stopped is True
    assert sessions.get(setup_whatsapp_channel.id).session is current

    await manager.on_qr(setup_whatsapp_channel.id, stale, "old-qr")
    assert sessions.get(setup_whatsapp_channel.id).qr is None


@pytest.mark.asyncio
async def test_start_failure_marks_error(db, manager, fake_whatsapp, sessions, setup_whatsapp_channel):
    fake_whatsapp.fail_start = True

    with pytest.raises(ProviderError):
        await manager.connect(setup_whatsapp_channel.id)

    assert sessions.get(setup_whatsapp_channel.id) is None
    db.refresh(setup_whatsapp_channel)
    assert setup_whatsapp_channel.status == ChannelStatus.ERROR.value


@pytest.mark.asyncio
async def test_ready_with_number_in_use_marks_error(db, manager, fake_whatsapp, sessions):
    svc = ChannelService(db)
    svc.create_channel(
        ChannelCreate(
            platform=Platform.WHATSAPP,
            name="Existing",
            external_id=PHONE,
            status=ChannelStatus.ACTIVE,
        )
    )
    channel = svc.create_channel(ChannelCreate(platform=Platform.WHATSAPP, name="Second"))

    session = await paired(manager, fake_whatsapp, channel.id)

    db.refresh(channel)
    assert channel.status == ChannelStatus.ERROR.value
    assert session.stopped is True
    assert sessions.get(channel.id) is None


@pytest.mark.asyncio
async def test_auth_failure_clears_credentials(
    db, manager, fake_whatsapp, sessions, events, setup_whatsapp_channel
):
    await manager.connect(setup_whatsapp_channel.id)
    session = fake_whatsapp.created[0]
    await manager.on_authenticated(setup_whatsapp_channel.id, session, {"token": "x"})

    await manager.on_auth_failure(setup_whatsapp_channel.id, session, "Unpaired from phone")

    db.refresh(setup_whatsapp_channel)
    assert setup_whatsapp_channel.status == ChannelStatus.ERROR.value
    assert setup_whatsapp_channel.session_data is None
    assert session.stopped is True
    assert sessions.get(setup_whatsapp_channel.id) is None
    last = channel_status_events(events)[-1]
    assert last["session_state"] == SessionState.AUTH_FAILED.value
    assert "Unpaired from phone" in last["error"]


@pytest.mark.asyncio
async def test_session_disconnect_marks_channel(db, manager, fake_whatsapp, sessions, setup_whatsapp_channel):
    session = await paired(manager, fake_whatsapp, setup_whatsapp_channel.id)

    await manager.on_disconnected(setup_whatsapp_channel.id, session, "NAVIGATION")

    db.refresh(setup_whatsapp_channel)
    assert setup_whatsapp_channel.status == ChannelStatus.DISCONNECTED.value
    assert sessions.get(setup_whatsapp_channel.id) is None
    assert manager.is_ready(setup_whatsapp_channel.id) is False


# --- teardown ---


@pytest.mark.asyncio
async def test_disconnect_logs_out(db, manager, fake_whatsapp, sessions, setup_whatsapp_channel):
    session = await paired(manager, fake_whatsapp, setup_whatsapp_channel.id)
    await manager.on_authenticated(setup_whatsapp_channel.id, session, {"token": "x"})

    channel = await manager.disconnect(setup_whatsapp_channel.id)

    assert channel.status == ChannelStatus.DISCONNECTED.value
    assert channel.session_data is None
    assert session.stopped is True
    assert session.logged_out is True
    assert fake_whatsapp.torn_down == [setup_whatsapp_channel.id]
    assert sessions.get(setup_whatsapp_channel.id) is None


@pytest.mark.asyncio
async def test_disconnect_webhook_channel(db, manager, setup_messenger_channel):
    channel = await manager.disconnect(setup_messenger_channel.id)
    assert channel.status == ChannelStatus.DISCONNECTED.value


@pytest.mark.asyncio
async def test_delete_channel_stops_session(db, manager, fake_whatsapp, setup_whatsapp_channel):
    session = await paired(manager, fake_whatsapp, setup_whatsapp_channel.id)

    assert await manager.delete_channel(setup_whatsapp_channel.id) is True

    assert session.stopped is True
    assert ChannelService(db).get_channel(setup_whatsapp_channel.id) is None
    assert await manager.delete_channel(setup_whatsapp_channel.id) is False


@pytest.mark.asyncio
async def test_resume_sessions(db, manager, fake_whatsapp, setup_whatsapp_channel):
    svc = ChannelService(db)
    svc.update_channel_status(setup_whatsapp_channel.id, ChannelStatus.ACTIVE, external_id=PHONE)
    svc.update_session_data(setup_whatsapp_channel.id, {"token": "stored"})
    svc.create_channel(ChannelCreate(platform=Platform.WHATSAPP, name="Never paired"))

    assert await manager.resume_sessions() == 1

    [session] = fake_whatsapp.created
    assert session.channel_id == setup_whatsapp_channel.id
    assert session.session_data == {"token": "stored"}
    db.refresh(setup_whatsapp_channel)
    assert setup_whatsapp_channel.status == ChannelStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_shutdown_keeps_channel_status(db, manager, fake_whatsapp, sessions, setup_whatsapp_channel):
    session = await paired(manager, fake_whatsapp, setup_whatsapp_channel.id)

    await manager.shutdown()

    assert session.stopped is True
    assert session.logged_out is False
    assert manager.list_sessions() == []
    db.refresh(setup_whatsapp_channel)
    assert setup_whatsapp_channel.status == ChannelStatus.ACTIVE.value


# --- webhook channels ---


@pytest.mark.asyncio
async def test_connect_webhook_channel(db, manager, graph_api):
    graph_api.add("POST", "/555000111/subscribed_apps", {"success": True})

    channel = await manager.connect_webhook_channel(
        Platform.FACEBOOK, "555000111", "page-token", name="Acme Support"
    )

    assert channel.status == ChannelStatus.ACTIVE.value
    assert channel.name == "Acme Support"
    assert channel.external_id == "555000111"
    assert ChannelService(db).get_access_token(channel) == "page-token"


@pytest.mark.asyncio
async def test_reconnect_webhook_channel_reuses_row(db, manager, graph_api, setup_messenger_channel):
    graph_api.add("POST", f"/{setup_messenger_channel.external_id}/subscribed_apps", {"success": True})
    ChannelService(db).update_channel_status(setup_messenger_channel.id, ChannelStatus.DISCONNECTED)

    channel = await manager.connect_webhook_channel(
        Platform.FACEBOOK, setup_messenger_channel.external_id, "new-token"
    )

    assert channel.id == setup_messenger_channel.id
    assert channel.status == ChannelStatus.ACTIVE.value
    assert ChannelService(db).get_access_token(channel) == "new-token"


@pytest.mark.asyncio
async def test_connect_webhook_channel_provider_failure(db, manager, graph_api):
    graph_api.add(
        "POST",
        "/555000111/subscribed_apps",
        {"error": {"message": "Invalid OAuth access token."}},
        status_code=400,
    )

    with pytest.raises(ProviderError):
        await manager.connect_webhook_channel(Platform.FACEBOOK, "555000111", "bad-token")

    channel = ChannelService(db).get_channel_by_external_id(Platform.FACEBOOK, "555000111")
    assert channel.status == ChannelStatus.ERROR.value


@pytest.mark.asyncio
async def test_connect_webhook_rejects_session_platform(manager):
    with pytest.raises(ConfigurationError):
        await manager.connect_webhook_channel(Platform.WHATSAPP, PHONE, "token")


# --- history sync and inbound routing ---


def history_envelope(channel_id, message_id, content, from_me=False):
    return InboundEnvelope(
        platform=Platform.WHATSAPP,
        channel_id=channel_id,
        contact_id="15557654321@c.us",
        content=content,
        platform_message_id=message_id,
        from_me=from_me,
    )


@pytest.mark.asyncio
async def test_sync_messages(db, manager, fake_whatsapp, setup_whatsapp_conversation):
    channel_id = setup_whatsapp_conversation.channel_id
    session = await paired(manager, fake_whatsapp, channel_id)
    MessageService(db).create_message(
        conversation_id=setup_whatsapp_conversation.id,
        direction=MessageDirection.INCOMING,
        content="already here",
        status=MessageStatus.DELIVERED,
        external_id="h1",
    )
    session.history = [
        history_envelope(channel_id, "h1", "already here"),
        history_envelope(channel_id, "h2", "older question"),
        history_envelope(channel_id, "h3", "older answer", from_me=True),
        history_envelope(channel_id, None, "no id"),
    ]

    result = await manager.sync_messages(setup_whatsapp_conversation.id)

    assert result.imported == 2
    assert result.skipped == 2
    answer = db.query(Message).filter(Message.external_id == "h3").one()
    assert answer.direction == MessageDirection.OUTGOING.value
    assert answer.status == MessageStatus.SENT.value
    assert answer.extra["synced"] is True
    db.refresh(setup_whatsapp_conversation)
    assert setup_whatsapp_conversation.unread_count == 0


@pytest.mark.asyncio
async def test_sync_requires_ready_session(manager, setup_whatsapp_conversation):
    with pytest.raises(SessionNotReady):
        await manager.sync_messages(setup_whatsapp_conversation.id)


@pytest.mark.asyncio
async def test_session_message_reaches_store(db, manager, fake_whatsapp, setup_whatsapp_channel):
    await paired(manager, fake_whatsapp, setup_whatsapp_channel.id)

    await manager.on_message(
        setup_whatsapp_channel.id,
        history_envelope(setup_whatsapp_channel.id, "false_9", "new question"),
    )

    message = db.query(Message).one()
    assert message.content == "new question"
    assert message.conversation.unread_count == 1

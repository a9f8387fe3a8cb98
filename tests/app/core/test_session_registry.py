"""Tests for ChannelSessionRegistry."""

import asyncio
from uuid import uuid4

import pytest

from app.constants.inbox import Platform, SessionState
from app.core.session_registry import ChannelSessionRegistry, SessionRecord


def record_for(channel_id, session):
    return SessionRecord(channel_id=channel_id, platform=Platform.WHATSAPP, session=session)


@pytest.mark.asyncio
async def test_put_replaces_previous_session():
    sessions = ChannelSessionRegistry()
    channel_id = uuid4()
    old, new = object(), object()

    await sessions.put(record_for(channel_id, old))
    await sessions.put(record_for(channel_id, new))

    assert sessions.get(channel_id).session is new
    assert len(sessions.list()) == 1


@pytest.mark.asyncio
async def test_stale_session_cannot_update_or_remove():
    sessions = ChannelSessionRegistry()
    channel_id = uuid4()
    stale, current = object(), object()
    await sessions.put(record_for(channel_id, current))

    assert await sessions.update(channel_id, stale, state=SessionState.READY) is None
    assert await sessions.pop(channel_id, stale) is None
    assert sessions.get(channel_id).state == SessionState.INITIALIZING


@pytest.mark.asyncio
async def test_update_tracks_state_and_qr():
    sessions = ChannelSessionRegistry()
    channel_id = uuid4()
    session = object()
    await sessions.put(record_for(channel_id, session))

    await sessions.update(channel_id, session, state=SessionState.WAITING_FOR_SCAN, qr="qr-1")
    assert sessions.get(channel_id).qr == "qr-1"
    assert sessions.is_ready(channel_id) is False

    await sessions.update(channel_id, session, state=SessionState.READY, qr=None)
    assert sessions.get(channel_id).qr is None
    assert sessions.is_ready(channel_id) is True


@pytest.mark.asyncio
async def test_pop_without_owner_check():
    sessions = ChannelSessionRegistry()
    channel_id = uuid4()
    await sessions.put(record_for(channel_id, object()))

    assert (await sessions.pop(channel_id)).channel_id == channel_id
    assert await sessions.pop(channel_id) is None
    assert sessions.is_ready(channel_id) is False


@pytest.mark.asyncio
async def test_concurrent_puts_keep_one_record_per_channel():
    sessions = ChannelSessionRegistry()
    channel_ids = [uuid4() for _ in range(5)]

    await asyncio.gather(
        *(sessions.put(record_for(cid, object())) for cid in channel_ids for _ in range(3))
    )

    assert {r.channel_id for r in sessions.list()} == set(channel_ids)
    assert len(sessions.list()) == 5

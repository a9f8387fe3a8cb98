"""Tests for the inbox conversation endpoints."""

from uuid import uuid4

import pytest

from app.constants.inbox import ConversationStatus
from app.schemas.inbox import ConversationCreate
from app.services.inbox_store import InboxStore


@pytest.fixture
def setup_unread_conversation(db, setup_conversation):
    store = InboxStore(db)
    for n in range(3):
        store.ingest_incoming_message(setup_conversation, f"question {n}", external_id=f"m_in_{n}")
    db.refresh(setup_conversation)
    return setup_conversation


def test_list_conversations(client, setup_unread_conversation, setup_whatsapp_conversation):
    response = client.get("/inbox/conversations")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["items"][0]["id"] == str(setup_unread_conversation.id)
    assert body["items"][0]["last_message"] == "question 2"


def test_list_conversations_filters(client, setup_unread_conversation, setup_whatsapp_conversation):
    by_platform = client.get("/inbox/conversations", params={"platform": "whatsapp"}).json()
    assert [c["id"] for c in by_platform["items"]] == [str(setup_whatsapp_conversation.id)]
    assert by_platform["items"][0]["platform"] == "whatsapp"

    unread = client.get("/inbox/conversations", params={"unread": True}).json()
    assert [c["id"] for c in unread["items"]] == [str(setup_unread_conversation.id)]

    search = client.get(
        "/inbox/conversations", params={"search": setup_whatsapp_conversation.contact_phone}
    ).json()
    assert search["total"] == 1


def test_open_conversation_marks_read(client, db, setup_unread_conversation):
    response = client.get(f"/inbox/conversations/{setup_unread_conversation.id}")

    assert response.status_code == 200
    body = response.json()
    assert body["unread_count"] == 0
    assert [m["content"] for m in body["messages"]] == ["question 0", "question 1", "question 2"]
    db.refresh(setup_unread_conversation)
    assert setup_unread_conversation.unread_count == 0


def test_unknown_conversation(client):
    response = client.get(f"/inbox/conversations/{uuid4()}")
    assert response.status_code == 404
    assert response.json()["detail"] == "Conversation not found"


def test_update_conversation(client, setup_conversation):
    response = client.patch(
        f"/inbox/conversations/{setup_conversation.id}",
        json={"status": "archived", "labels": ["vip"], "notes": "Wants a refund"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == ConversationStatus.ARCHIVED.value
    assert body["labels"] == ["vip"]
    assert body["notes"] == "Wants a refund"


def test_assign_to_acting_agent(client, setup_conversation):
    agent_id = uuid4()

    response = client.post(
        f"/inbox/conversations/{setup_conversation.id}/assign",
        json={},
        headers={"X-Agent-Id": str(agent_id)},
    )

    assert response.status_code == 200
    assert response.json()["assigned_agent_id"] == str(agent_id)


def test_unassign(client, db, setup_conversation):
    InboxStore(db).assign_agent(setup_conversation.id, uuid4())

    response = client.post(
        f"/inbox/conversations/{setup_conversation.id}/assign",
        json={"agent_id": None},
        headers={"X-Agent-Id": str(uuid4())},
    )

    assert response.json()["assigned_agent_id"] is None


def test_invalid_agent_header(client, setup_conversation):
    response = client.post(
        f"/inbox/conversations/{setup_conversation.id}/assign",
        json={},
        headers={"X-Agent-Id": "not-a-uuid"},
    )
    assert response.status_code == 400


def test_mark_read(client, setup_unread_conversation):
    response = client.post(f"/inbox/conversations/{setup_unread_conversation.id}/read")
    assert response.json()["unread_count"] == 0


def test_list_messages(client, setup_unread_conversation):
    response = client.get(
        f"/inbox/conversations/{setup_unread_conversation.id}/messages", params={"size": 2}
    )

    body = response.json()
    assert body["total"] == 3
    assert [m["external_id"] for m in body["items"]] == ["m_in_0", "m_in_1"]


def test_send_message(client, graph_api, setup_conversation):
    graph_api.add("POST", "/me/messages", {"message_id": "m_out_9"})
    agent_id = uuid4()

    response = client.post(
        "/inbox/send",
        json={"conversation_id": str(setup_conversation.id), "content": "We shipped it today"},
        headers={"X-Agent-Id": str(agent_id)},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "sent"
    assert body["external_id"] == "m_out_9"
    assert body["agent_id"] == str(agent_id)
    assert body["direction"] == "outgoing"


def test_send_provider_failure_is_still_created(client, graph_api, setup_conversation):
    graph_api.add(
        "POST", "/me/messages", {"error": {"message": "Token expired"}}, status_code=401
    )

    response = client.post(
        "/inbox/send",
        json={"conversation_id": str(setup_conversation.id), "content": "Hello?"},
    )

    assert response.status_code == 201
    assert response.json()["status"] == "failed"


def test_send_to_unknown_conversation(client):
    response = client.post("/inbox/send", json={"conversation_id": str(uuid4()), "content": "x"})
    assert response.status_code == 404


def test_send_without_ready_session(client, setup_whatsapp_conversation):
    response = client.post(
        "/inbox/send",
        json={"conversation_id": str(setup_whatsapp_conversation.id), "content": "x"},
    )
    assert response.status_code == 409


def test_sync_without_session(client, setup_whatsapp_conversation):
    response = client.post(f"/inbox/conversations/{setup_whatsapp_conversation.id}/sync")
    assert response.status_code == 409


def test_stats(client, db, setup_unread_conversation, setup_whatsapp_channel):
    InboxStore(db).create_conversation(
        ConversationCreate(channel_id=setup_whatsapp_channel.id, contact_identifier="1@c.us")
    )

    body = client.get("/inbox/stats").json()

    assert body["total_unread"] == 3
    stats = {s["platform"]: s for s in body["channels"]}
    assert stats["facebook"] == {"platform": "facebook", "total": 1, "active": 1}
    assert stats["whatsapp"] == {"platform": "whatsapp", "total": 1, "active": 0}
    assert stats["instagram"]["total"] == 0

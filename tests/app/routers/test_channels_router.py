"""Tests for the channel endpoints."""

from uuid import uuid4

from app.constants.inbox import SessionState
from app.services.channel_service import ChannelService

PAGE_ID = "555000111"


def test_list_channels_grouped(client, setup_messenger_channel, setup_whatsapp_channel):
    response = client.get("/channels")

    assert response.status_code == 200
    body = response.json()
    assert [c["id"] for c in body["facebook"]] == [str(setup_messenger_channel.id)]
    assert [c["id"] for c in body["whatsapp"]] == [str(setup_whatsapp_channel.id)]
    assert body["instagram"] == []
    assert "access_token" not in body["facebook"][0]
    stats = {s["platform"]: s for s in body["stats"]}
    assert stats["facebook"]["active"] == 1


def test_get_channel(client, setup_messenger_channel):
    response = client.get(f"/channels/{setup_messenger_channel.id}")
    assert response.json()["external_id"] == setup_messenger_channel.external_id

    assert client.get(f"/channels/{uuid4()}").status_code == 404


def test_whatsapp_init_starts_pairing(client, app, fake_whatsapp):
    response = client.post("/channels/whatsapp/init", json={"name": "Support line"})

    assert response.status_code == 200
    body = response.json()
    assert body["channel"]["name"] == "Support line"
    assert body["channel"]["status"] == "pending"
    assert body["session_state"] == SessionState.INITIALIZING.value
    assert body["already_connected"] is False
    assert fake_whatsapp.created[0].started is True

    channel_id = body["channel"]["id"]
    record = app.state.inbox.sessions.get(fake_whatsapp.created[0].channel_id)
    record.state = SessionState.WAITING_FOR_SCAN
    record.qr = "2@scan-me"

    qr = client.get(f"/channels/whatsapp/{channel_id}/qr").json()
    assert qr["session_state"] == SessionState.WAITING_FOR_SCAN.value
    assert qr["qr"] == "2@scan-me"


def test_whatsapp_init_reuses_channel(client, fake_whatsapp, setup_whatsapp_channel):
    response = client.post(
        "/channels/whatsapp/init", json={"channel_id": str(setup_whatsapp_channel.id)}
    )

    assert response.json()["channel"]["id"] == str(setup_whatsapp_channel.id)
    assert fake_whatsapp.created[0].channel_id == setup_whatsapp_channel.id


def test_whatsapp_init_bridge_failure(client, fake_whatsapp, setup_whatsapp_channel):
    fake_whatsapp.fail_start = True

    response = client.post(
        "/channels/whatsapp/init", json={"channel_id": str(setup_whatsapp_channel.id)}
    )

    assert response.status_code == 502
    assert response.json()["detail"] == "Bridge unreachable"


def test_qr_for_webhook_channel(client, setup_messenger_channel):
    response = client.get(f"/channels/whatsapp/{setup_messenger_channel.id}/qr")
    assert response.status_code == 400


def test_connect_facebook_page(client, db, graph_api):
    graph_api.add("POST", f"/{PAGE_ID}/subscribed_apps", {"success": True})

    response = client.post(
        "/channels/facebook/connect",
        json={"page_id": PAGE_ID, "page_name": "Acme Support", "access_token": "page-token"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "active"
    assert body["name"] == "Acme Support"
    channel = ChannelService(db).get_channel_by_external_id("facebook", PAGE_ID)
    assert ChannelService(db).get_access_token(channel) == "page-token"


def test_connect_facebook_page_provider_error(client, graph_api):
    graph_api.add(
        "POST",
        f"/{PAGE_ID}/subscribed_apps",
        {"error": {"message": "Invalid OAuth access token."}},
        status_code=400,
    )

    response = client.post(
        "/channels/facebook/connect", json={"page_id": PAGE_ID, "access_token": "bad"}
    )

    assert response.status_code == 502
    assert "Invalid OAuth access token" in response.json()["detail"]


def test_connect_instagram_account_prefixes_name(client, graph_api):
    graph_api.add("POST", "/1784001/subscribed_apps", {"success": True})

    response = client.post(
        "/channels/instagram/connect",
        json={"account_id": "1784001", "account_name": "acme.store", "access_token": "tok"},
    )

    assert response.status_code == 201
    assert response.json()["name"] == "@acme.store"


def test_facebook_oauth_url(client):
    response = client.get(
        "/channels/facebook/oauth-url",
        params={"redirect_uri": "https://inbox.example.com/callback", "state": "xyz"},
    )

    url = response.json()["url"]
    assert url.startswith("https://www.facebook.com/v18.0/dialog/oauth?")
    assert "state=xyz" in url
    assert "pages_messaging" in url


def test_list_facebook_pages(client, graph_api):
    graph_api.add(
        "GET",
        "/me/accounts",
        {"data": [{"id": PAGE_ID, "name": "Acme", "access_token": "pt", "category": "Shopping"}]},
    )

    response = client.post("/channels/facebook/pages", json={"access_token": "user-token"})

    assert response.status_code == 200
    assert response.json() == [
        {"id": PAGE_ID, "name": "Acme", "access_token": "pt", "category": "Shopping"}
    ]


def test_list_facebook_pages_requires_token(client):
    response = client.post("/channels/facebook/pages", json={})
    assert response.status_code == 400


def test_list_instagram_accounts(client, graph_api):
    graph_api.add("GET", "/me/accounts", {"data": [{"id": PAGE_ID, "name": "Acme", "access_token": "pt"}]})
    graph_api.add(
        "GET",
        f"/{PAGE_ID}",
        {"instagram_business_account": {"id": "1784001", "username": "acme.store"}},
    )

    response = client.post("/channels/instagram/accounts", json={"access_token": "user-token"})

    [account] = response.json()
    assert account["id"] == "1784001"
    assert account["username"] == "acme.store"
    assert account["page_id"] == PAGE_ID
    assert account["page_access_token"] == "pt"


def test_disconnect_channel(client, setup_messenger_channel):
    response = client.post(f"/channels/{setup_messenger_channel.id}/disconnect")

    assert response.status_code == 200
    assert response.json()["status"] == "disconnected"


def test_disconnect_unknown_channel(client):
    assert client.post(f"/channels/{uuid4()}/disconnect").status_code == 404


def test_delete_channel(client, db, setup_conversation):
    channel_id = setup_conversation.channel_id

    assert client.delete(f"/channels/{channel_id}").status_code == 204
    assert client.delete(f"/channels/{channel_id}").status_code == 404
    assert ChannelService(db).get_channel(channel_id) is None


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert sorted(body["platforms"]) == ["facebook", "instagram", "whatsapp"]
    assert body["sessions"] == 0

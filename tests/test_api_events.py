import asyncio
import json

import pytest
from starlette.websockets import WebSocketDisconnect

from mercboard.services.broadcast import SSESubscriber, Subscriber, hub
from mercboard.services.events import event_payload, public_settings
from mercboard.storage.memory_provider import MemoryCollectionStore
from mercboard.services.seed import initialize_store
from mercboard.storage.provider import LEDGER


def _token(headers):
    return headers["Authorization"].split(" ", 1)[1]


class TestPayloads:
    def test_settings_payload_hides_passwords(self):
        store = MemoryCollectionStore()
        payload = event_payload(store, "settings", "update")
        assert payload["action"] == "update"
        assert "adminPassword" not in payload["settings"]
        assert public_settings({"a": 1, "clientPassword": "x"}) == {"a": 1}

    def test_collection_payloads(self):
        store = MemoryCollectionStore()
        initialize_store(store)
        assert len(event_payload(store, "jobs", "create")["jobs"]) == 6
        assert "balances" in event_payload(store, "manna", "update")
        assert len(event_payload(store, "facilities-minor-slots", "update")["minorFacilities"]["slots"]) == 6


class TestWebSocket:
    def test_rejects_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/events"):
                pass
        assert exc.value.code == 4401

    def test_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/events?token=garbage"):
                pass
        assert exc.value.code == 4401

    def test_connected_and_ping(self, client, client_headers):
        with client.websocket_connect(f"/ws/events?token={_token(client_headers)}") as ws:
            hello = json.loads(ws.receive_text())
            assert hello["event"] == "connected"
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

    def test_receives_change_events(self, client, client_headers, admin_headers):
        with client.websocket_connect(f"/ws/events?token={_token(client_headers)}") as ws:
            ws.receive_text()
            r = client.post("/api/jobs", json={"name": "Escort", "rank": 1}, headers=admin_headers)
            assert r.status_code == 200
            first = json.loads(ws.receive_text())
            assert first["event"] == "jobs"
            assert first["data"]["action"] == "create"
            assert any(j["name"] == "Escort" for j in first["data"]["jobs"])
            second = json.loads(ws.receive_text())
            assert second["event"] == "factions"


def test_sse_requires_token(client):
    assert client.get("/api/sse").status_code == 401


class DeadSubscriber(Subscriber):
    async def send(self, event, data):
        raise ConnectionResetError("peer went away")


def test_dead_subscriber_does_not_fail_the_write(client, admin_headers, store, fund_pilots):
    fund_pilots(store, 100)
    dead = DeadSubscriber()
    listener = SSESubscriber()
    asyncio.run(hub.connect(dead))
    asyncio.run(hub.connect(listener))
    try:
        r = client.post("/api/manna/transaction", json={"amount": 25, "description": "Bounty"}, headers=admin_headers)
        assert r.status_code == 200
        assert len(store.read(LEDGER)["transactions"]) == 2

        frames = []
        while not listener.queue.empty():
            frames.append(listener.queue.get_nowait())
        assert [f.split("\n", 1)[0] for f in frames] == ["event: manna", "event: pilots"]
    finally:
        asyncio.run(hub.disconnect(dead))
        asyncio.run(hub.disconnect(listener))

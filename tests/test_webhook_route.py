from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from settings import settings
from main import create_app
from routes import webhook


@pytest.fixture
def queued(monkeypatch):
    items = []
    monkeypatch.setattr(webhook, "queue_events", lambda batch: items.extend(batch))
    return items


@pytest.fixture
def client():
    return TestClient(create_app(manage_pool=False))


def _auth():
    return {"Authorization": f"Bearer {settings.API_KEY}"}


def test_webhook_requires_api_key(client, queued):
    resp = client.post("/v1/webhook", json={"event": "new_transaction", "params": {}})
    assert resp.status_code == 401, resp.text

    resp = client.post(
        "/v1/webhook",
        json={"event": "new_transaction", "params": {}},
        headers={"Authorization": "Bearer wrong-key-123"},
    )
    assert resp.status_code == 401, resp.text
    assert queued == []


def test_webhook_queues_event_with_fresh_id(client, queued):
    params = {"senderTgId": "111", "recipientTgId": "222", "amount": "5", "eventId": "client-chosen"}
    resp = client.post("/v1/webhook", json={"event": "new_transaction", "params": params}, headers=_auth())

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["event"] == "new_transaction"

    (event_id, event, queued_params), = queued
    assert body["event_ids"] == [event_id]
    assert event == "new_transaction"
    assert queued_params["eventId"] == event_id != "client-chosen"
    assert queued_params["amount"] == "5"


def test_transaction_batch_fans_out(client, queued):
    items = [{"senderTgId": "111", "recipientTgId": str(200 + i), "amount": "1"} for i in range(3)]
    resp = client.post("/v1/webhook", json={"event": "new_transaction_batch", "params": items}, headers=_auth())

    assert resp.status_code == 200, resp.text
    assert [e for _, e, _ in queued] == ["new_transaction"] * 3
    assert len(set(resp.json()["event_ids"])) == 3


def test_batch_with_object_params_rejected(client, queued):
    resp = client.post(
        "/v1/webhook",
        json={"event": "new_transaction_batch", "params": {"senderTgId": "111"}},
        headers=_auth(),
    )
    assert resp.status_code == 422, resp.text
    assert queued == []


def test_unknown_event_still_queued(client, queued):
    resp = client.post("/v1/webhook", json={"event": "new_airdrop", "params": {"x": 1}}, headers=_auth())
    assert resp.status_code == 200, resp.text
    assert len(queued) == 1

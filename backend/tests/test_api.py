from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from giggle.db import repo
from giggle.main import app

from conftest import ALICE, BOB


@pytest_asyncio.fixture
async def client(router, session_factory):
    async def _session():
        async with session_factory() as s:
            yield s

    app.state.router = router
    app.dependency_overrides[repo.get_session] = _session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert set(body["services"]) >= {"wallet", "messaging", "coupons", "pending_store"}


async def test_whatsapp_webhook_returns_twiml(client):
    resp = await client.post("/whatsapp", data={
        "From": f"whatsapp:{ALICE}", "Body": "hi", "MessageSid": "SM123",
    })
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    assert resp.text.startswith("<?xml")
    assert "<Response><Message>" in resp.text
    assert "Welcome to Giggle Pay" in resp.text


async def test_status_callback(client):
    resp = await client.post("/status-callback", data={"MessageSid": "SM1", "MessageStatus": "delivered"})
    assert resp.json() == {"ok": True}


async def test_audit_logs(client):
    await client.post("/whatsapp", data={"From": f"whatsapp:{ALICE}", "Body": "hi", "MessageSid": "SM9"})
    resp = await client.get("/audit/logs")
    logs = resp.json()["logs"]
    assert logs[0]["action"] == "message_received"
    assert logs[0]["channel_message_id"] == "SM9"


async def test_scheduled_intents_endpoints(client, session_factory):
    async with session_factory() as s:
        alice = await repo.get_or_create_user(s, ALICE)

    when = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    resp = await client.post("/scheduled-intents", json={
        "user_id": alice.id, "amount": "10", "recipient": BOB, "scheduled_for": when,
    })
    assert resp.status_code == 201
    created = resp.json()
    assert created["amount"] == "10.00"
    assert created["status"] == "pending"

    listed = (await client.get("/scheduled-intents", params={"user_id": alice.id})).json()["intents"]
    assert [i["id"] for i in listed] == [created["id"]]

    resp = await client.post(f"/scheduled-intents/{created['id']}/cancel")
    assert resp.json()["status"] == "cancelled"
    assert (await client.post(f"/scheduled-intents/{created['id']}/cancel")).status_code == 409
    assert (await client.post("/scheduled-intents/nope/cancel")).status_code == 404


@pytest.mark.parametrize("payload,code", [
    ({"user_id": "nobody", "amount": "1", "recipient": BOB}, 404),
    ({"amount": "-1", "recipient": BOB}, 400),
])
async def test_scheduled_intent_errors(client, session_factory, payload, code):
    async with session_factory() as s:
        alice = await repo.get_or_create_user(s, ALICE)
    body = {"user_id": alice.id, "scheduled_for": "2030-01-01T00:00:00Z", **payload}
    assert (await client.post("/scheduled-intents", json=body)).status_code == code

import json

import httpx
import pytest
import pytest_asyncio

import main
from app.errors import WebhookVerificationError
from app.types.records import SendStatus

SECRET = "s3cret"
AUTH = {"Authorization": f"Bearer {SECRET}"}
SIGNED = {"telnyx-signature-ed25519": "c2lnbmF0dXJl", "telnyx-timestamp": "1767225600"}


@pytest_asyncio.fixture
async def client(services, monkeypatch):
    monkeypatch.setattr(main.app.state, "services", services, raising=False)
    monkeypatch.setattr(main.settings, "CRON_SECRET", SECRET)
    monkeypatch.setattr(main.settings, "TELNYX_PUBLIC_KEY", "test-public-key")
    monkeypatch.setattr(main, "verify_webhook", lambda *args: None)
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


def _status_event(message_id, status, event_type="message.finalized"):
    return {
        "data": {
            "event_type": event_type,
            "payload": {"id": message_id, "to": [{"phone_number": "+15551234567", "status": status}]},
        }
    }


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.json() == {"ok": True}


@pytest.mark.asyncio
async def test_cron_requires_bearer_secret(client):
    assert (await client.get("/v1/cron/send-reminders")).status_code == 401
    bad = await client.get("/v1/cron/send-reminders", headers={"Authorization": "Bearer wrong"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_cron_runs_dispatch(client, factory):
    await factory.tenant("t1")

    resp = await client.get("/v1/cron/send-reminders", headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert {"checked", "sent", "failed", "skipped", "timestamp"} <= set(body)


@pytest.mark.asyncio
async def test_cron_open_when_secret_unset(client, monkeypatch):
    monkeypatch.setattr(main.settings, "CRON_SECRET", None)
    resp = await client.get("/v1/cron/send-reminders")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_webhook_without_public_key_is_server_error(client, monkeypatch):
    monkeypatch.setattr(main.settings, "TELNYX_PUBLIC_KEY", None)
    resp = await client.post("/v1/webhooks/telnyx", content=b"{}", headers=SIGNED)
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_webhook_missing_signature_headers(client):
    resp = await client.post("/v1/webhooks/telnyx", content=b"{}")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_bad_signature_is_forbidden(client, monkeypatch):
    def _reject(*args):
        raise WebhookVerificationError("Signature mismatch")

    monkeypatch.setattr(main, "verify_webhook", _reject)
    resp = await client.post("/v1/webhooks/telnyx", content=b"{}", headers=SIGNED)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_webhook_missing_fields(client):
    resp = await client.post(
        "/v1/webhooks/telnyx", content=json.dumps(_status_event(None, "delivered")), headers=SIGNED
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_ignores_non_message_events(client):
    event = {"data": {"event_type": "call.initiated", "payload": {}}}
    resp = await client.post("/v1/webhooks/telnyx", content=json.dumps(event), headers=SIGNED)
    assert resp.status_code == 200
    assert resp.json()["ignored"] == "call.initiated"


@pytest.mark.asyncio
async def test_webhook_updates_send_record(client, services):
    record = await services.send_log.create_pending("t1", "appt-1", "+15551234567", "Hi", template_id="tpl")
    await services.send_log.mark_sent(record.id, "msg-42")

    resp = await client.post(
        "/v1/webhooks/telnyx", content=json.dumps(_status_event("msg-42", "delivered")), headers=SIGNED
    )

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "status": "delivered", "outcome": "applied"}
    assert (await services.send_log.get(record.id)).status == SendStatus.DELIVERED


@pytest.mark.asyncio
async def test_webhook_unknown_message_is_acknowledged(client):
    resp = await client.post(
        "/v1/webhooks/telnyx", content=json.dumps(_status_event("unknown", "delivered")), headers=SIGNED
    )
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "not_found"


@pytest.mark.asyncio
async def test_sms_test_endpoint(client, factory, carrier):
    await factory.tenant("t1", credits=1)

    ok = await client.post("/v1/sms/test", json={"tenant_id": "t1", "phone_number": "555-123-4567"}, headers=AUTH)
    denied = await client.post("/v1/sms/test", json={"tenant_id": "t1", "phone_number": "555-123-4567"}, headers=AUTH)

    assert ok.status_code == 200
    assert ok.json()["message_id"] == "msg-1"
    assert denied.status_code == 402
    assert denied.json()["action"] == "subscribe"
    assert len(carrier.sent) == 1


@pytest.mark.asyncio
async def test_sms_test_rejects_bad_number_and_unknown_tenant(client):
    bad = await client.post("/v1/sms/test", json={"tenant_id": "t1", "phone_number": "123"}, headers=AUTH)
    missing = await client.post(
        "/v1/sms/test", json={"tenant_id": "ghost", "phone_number": "555-123-4567"}, headers=AUTH
    )
    assert bad.status_code == 400
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_phone_validate(client):
    resp = await client.post("/v1/phone/validate", json={"phone_number": "(555) 123-4567"})
    assert resp.json() == {"valid": True, "phone_number": "+15551234567", "error": None}

    resp = await client.post("/v1/phone/validate", json={"phone_number": "+44 20 7946 0958"})
    assert resp.json()["valid"] is False


@pytest.mark.asyncio
async def test_seed_default_templates(client, factory):
    assert (await client.post("/v1/tenants/ghost/templates/defaults", headers=AUTH)).status_code == 404

    await factory.tenant("t1")
    resp = await client.post("/v1/tenants/t1/templates/defaults", headers=AUTH)
    assert resp.json() == {"created": 3}


@pytest.mark.asyncio
async def test_update_profile_changes_only_given_fields(client, factory, services):
    assert (await client.patch("/v1/tenants/t1/profile", json={"clinic_name": "X"})).status_code == 401
    assert (await client.patch("/v1/tenants/ghost/profile", json={}, headers=AUTH)).status_code == 404

    await factory.tenant("t1", clinic_name="Smile Dental", clinic_phone="555-0100")
    resp = await client.patch("/v1/tenants/t1/profile", json={"clinic_name": "Bright Smiles"}, headers=AUTH)

    assert resp.status_code == 200
    assert resp.json() == {"tenant_id": "t1", "clinic_name": "Bright Smiles", "clinic_phone": "555-0100"}
    assert (await services.tenants.get("t1")).clinic_name == "Bright Smiles"


@pytest.mark.asyncio
async def test_tenant_stats_counts_sends_by_outcome(client, factory, services):
    await factory.tenant("t1", credits=17)
    delivered = await services.send_log.create_pending("t1", "appt-1", "+15551234567", "Hi", template_id="tpl-1")
    await services.send_log.mark_sent(delivered.id, "msg-1")
    await services.reconciler.on_carrier_callback("msg-1", "delivered")
    sent = await services.send_log.create_pending("t1", "appt-2", "+15551234567", "Hi", template_id="tpl-1")
    await services.send_log.mark_sent(sent.id, "msg-2")
    failed = await services.send_log.create_pending("t1", "appt-3", "+15551234567", "Hi", template_id="tpl-1")
    await services.send_log.mark_failed(failed.id, "Invalid destination number", error_code="40310")
    await services.send_log.create_pending("other", "appt-9", "+15551234567", "Hi", template_id="tpl-1")

    resp = await client.get("/v1/tenants/t1/stats", params={"limit": 2}, headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["credits_remaining"] == 17
    assert body["stats"] == {"total": 3, "sent": 1, "delivered": 1, "failed": 1}
    assert len(body["recent"]) == 2
    assert {r["tenant_id"] for r in body["recent"]} == {"t1"}


@pytest.mark.asyncio
async def test_tenant_stats_requires_auth_and_known_tenant(client):
    assert (await client.get("/v1/tenants/t1/stats")).status_code == 401
    assert (await client.get("/v1/tenants/ghost/stats", headers=AUTH)).status_code == 404
    assert (await client.get("/v1/tenants/ghost/stats", params={"limit": 0}, headers=AUTH)).status_code == 422

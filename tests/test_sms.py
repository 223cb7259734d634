from types import SimpleNamespace

import pytest
import telnyx

from app.errors import CarrierError, ConfigurationError, WebhookVerificationError
from app.utils import sms


def _settings(**overrides):
    values = dict(
        TELNYX_API_KEY=None,
        TELNYX_FROM_NUMBER=None,
        STATUS_CALLBACK_URL=None,
        SMS_DRY_RUN=False,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_missing_credentials_is_configuration_error():
    with pytest.raises(ConfigurationError):
        sms.carrier_from_settings(_settings())


def test_dry_run_carrier_when_enabled():
    assert isinstance(sms.carrier_from_settings(_settings(SMS_DRY_RUN=True)), sms.DryRunCarrier)


def test_telnyx_carrier_when_configured():
    carrier = sms.carrier_from_settings(_settings(TELNYX_API_KEY="KEY", TELNYX_FROM_NUMBER="+15550001111"))
    assert isinstance(carrier, sms.TelnyxCarrier)


@pytest.mark.asyncio
async def test_dry_run_send_returns_message_id():
    result = await sms.DryRunCarrier().send("+15551234567", "Hi")
    assert result.message_id.startswith("dry-run-")


@pytest.mark.asyncio
async def test_telnyx_send_passes_callback_and_maps_result(monkeypatch):
    calls = []

    def fake_create(**params):
        calls.append(params)
        return SimpleNamespace(id="40317f3a", to=[{"phone_number": params["to"], "status": "queued"}])

    monkeypatch.setattr(telnyx.Message, "create", fake_create)
    carrier = sms.TelnyxCarrier("KEY", "+15550001111", status_callback_url="https://example.test/hook")

    result = await carrier.send("+15551234567", "Hi")

    assert result == sms.SendResult(message_id="40317f3a", status="queued")
    assert calls[0]["from_"] == "+15550001111"
    assert calls[0]["webhook_url"] == "https://example.test/hook"
    assert calls[0]["api_key"] == "KEY"


@pytest.mark.asyncio
async def test_telnyx_error_becomes_carrier_error(monkeypatch):
    def fake_create(**params):
        raise telnyx.error.TelnyxError("Invalid 'to' address")

    monkeypatch.setattr(telnyx.Message, "create", fake_create)
    carrier = sms.TelnyxCarrier("KEY", "+15550001111")

    with pytest.raises(CarrierError, match="Invalid 'to' address"):
        await carrier.send("+15551234567", "Hi")


def test_verify_webhook_wraps_failures(monkeypatch):
    def fake_construct_event(payload, signature, timestamp):
        raise ValueError("Signature mismatch")

    monkeypatch.setattr(telnyx.Webhook, "construct_event", fake_construct_event)

    with pytest.raises(WebhookVerificationError):
        sms.verify_webhook(b"{}", "sig", "1767225600", "public-key")

"""Outbound SMS through Telnyx, plus webhook signature verification.

Domain code only sees the ``Carrier`` protocol: ``await carrier.send(to, body)``
returning a ``SendResult`` or raising ``CarrierError``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

import telnyx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from app.errors import CarrierError, ConfigurationError, WebhookVerificationError
from app.utils.phone import mask

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    message_id: str
    status: str | None = None


class Carrier(Protocol):
    async def send(self, to: str, body: str) -> SendResult: ...


class TelnyxCarrier:
    def __init__(self, api_key: str, from_number: str, status_callback_url: str | None = None):
        self._api_key = api_key
        self._from = from_number
        self._callback = status_callback_url

    async def send(self, to: str, body: str) -> SendResult:
        try:
            message = await asyncio.to_thread(self._create, to, body)
        except telnyx.error.TelnyxError as exc:
            raise CarrierError(str(exc) or exc.__class__.__name__, code=_error_code(exc)) from exc
        status = None
        recipients = getattr(message, "to", None) or []
        if recipients:
            status = recipients[0].get("status")
        _LOGGER.info("[SMS] Telnyx accepted message %s to %s", message.id, mask(to))
        return SendResult(message_id=message.id, status=status)

    # Only rate limiting is retried: a transport error may hide an accepted send.
    @retry(
        wait=wait_random_exponential(multiplier=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(telnyx.error.RateLimitError),
        reraise=True,
    )
    def _create(self, to: str, body: str):
        params = dict(from_=self._from, to=to, text=body)
        if self._callback:
            params["webhook_url"] = self._callback
        return telnyx.Message.create(api_key=self._api_key, **params)


class DryRunCarrier:
    """Local development stand-in: logs instead of sending."""

    async def send(self, to: str, body: str) -> SendResult:
        _LOGGER.info("[SMS] DEV mode: would send to %s: %s", mask(to), body)
        return SendResult(message_id=f"dry-run-{uuid.uuid4()}", status="sent")


def carrier_from_settings(settings) -> Carrier:
    if settings.TELNYX_API_KEY and settings.TELNYX_FROM_NUMBER:
        return TelnyxCarrier(
            settings.TELNYX_API_KEY,
            settings.TELNYX_FROM_NUMBER,
            status_callback_url=settings.STATUS_CALLBACK_URL,
        )
    if settings.SMS_DRY_RUN:
        return DryRunCarrier()
    raise ConfigurationError("TELNYX_API_KEY and TELNYX_FROM_NUMBER must be set (or SMS_DRY_RUN=true)")


def verify_webhook(raw_body: bytes, signature: str, timestamp: str, public_key: str) -> None:
    """Raise ``WebhookVerificationError`` unless the ed25519 signature matches."""
    telnyx.public_key = public_key
    try:
        telnyx.Webhook.construct_event(raw_body.decode("utf-8"), signature, timestamp)
    except (telnyx.error.SignatureVerificationError, ValueError) as exc:
        raise WebhookVerificationError(str(exc)) from exc


def _error_code(exc: Exception) -> str | None:
    code = getattr(exc, "code", None)
    if code:
        return str(code)
    errors = getattr(exc, "errors", None) or []
    if errors and isinstance(errors[0], dict) and errors[0].get("code"):
        return str(errors[0]["code"])
    return None

"""Apply carrier delivery-status callbacks to the send log.

A callback that lands before the dispatch path has stored the carrier message
id finds no record and is acknowledged as ``not_found``; the carrier's later
final event for the same id still applies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from app.services.send_log import SendLog
from app.types.records import SendStatus

_LOGGER = logging.getLogger(__name__)

# Carrier vocabulary (Telnyx plus the generic names) → SendRecord status.
STATUS_MAP: dict[str, SendStatus] = {
    "queued": SendStatus.QUEUED,
    "sending": SendStatus.SENDING,
    "sent": SendStatus.SENT,
    "delivered": SendStatus.DELIVERED,
    "undelivered": SendStatus.UNDELIVERED,
    "failed": SendStatus.FAILED,
    "sending_failed": SendStatus.FAILED,
    "delivery_failed": SendStatus.UNDELIVERED,
}


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"  # status not in STATUS_MAP
    STALE = "stale"  # record already further along


@dataclass(frozen=True)
class CarrierCallback:
    message_id: str | None
    status: str | None
    error_code: str | None = None
    error_message: str | None = None


def compose_error(error_code: str | None, error_message: str | None) -> str | None:
    if not error_message:
        return None
    return f"{error_code or 'Error'}: {error_message}"


def parse_telnyx_event(event: Mapping[str, Any]) -> CarrierCallback:
    """Pull the fields we need out of a Telnyx ``message.*`` webhook body."""
    data = event.get("data") or {}
    payload = data.get("payload") or {}
    recipients = payload.get("to") or []
    status = recipients[0].get("status") if recipients and isinstance(recipients[0], dict) else None
    errors = payload.get("errors") or []
    code = message = None
    if errors and isinstance(errors[0], dict):
        first = errors[0]
        code = str(first["code"]) if first.get("code") is not None else None
        message = first.get("detail") or first.get("title")
    return CarrierCallback(
        message_id=payload.get("id"),
        status=status,
        error_code=code,
        error_message=message,
    )


class DeliveryStatusReconciler:
    def __init__(self, send_log: SendLog):
        self.send_log = send_log

    async def on_carrier_callback(
        self,
        carrier_message_id: str,
        carrier_status: str,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> ReconcileOutcome:
        status = STATUS_MAP.get(carrier_status.strip().lower())
        if status is None:
            _LOGGER.warning("Unknown carrier status %r for message %s", carrier_status, carrier_message_id)
            return ReconcileOutcome.IGNORED

        outcome = await self.send_log.apply_carrier_status(
            carrier_message_id,
            status,
            error_code=error_code,
            error=compose_error(error_code, error_message),
        )
        if not outcome.found:
            _LOGGER.warning("Send record not found for carrier message %s", carrier_message_id)
            return ReconcileOutcome.NOT_FOUND
        if not outcome.applied:
            _LOGGER.info(
                "Ignoring %s for message %s: already %s",
                status.value, carrier_message_id, outcome.previous.value if outcome.previous else "?",
            )
            return ReconcileOutcome.STALE

        _LOGGER.info("SMS status updated: %s -> %s", carrier_message_id, status.value)
        return ReconcileOutcome.APPLIED

"""Exception types shared across the backend.

Admission denials are deliberately absent: running out of credits is an
expected outcome and is modelled as a value (see ``app.services.credits``).
"""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for application errors."""


class ConfigurationError(ReminderError):
    """Missing or invalid deployment configuration. Fatal to a run or request."""


class RecordDecodeError(ReminderError):
    """A persisted row could not be decoded into its typed record."""

    def __init__(self, entity: str, record_id: str | None, detail: str):
        self.entity = entity
        self.record_id = record_id
        self.detail = detail
        super().__init__(f"Could not decode {entity} {record_id or '<unknown>'}: {detail}")


class CarrierError(ReminderError):
    """The SMS carrier rejected a send or could not be reached."""

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)


class WebhookVerificationError(ReminderError):
    """Inbound carrier webhook failed signature verification."""


class NotFoundError(ReminderError):
    """Record missing, or owned by a different tenant."""


class DuplicateSendError(ReminderError):
    """A SendRecord already exists for this (appointment, template) pair."""

    def __init__(self, appointment_id: str, template_id: str | None):
        self.appointment_id = appointment_id
        self.template_id = template_id
        super().__init__(f"Reminder for appointment {appointment_id} with template {template_id} already recorded")

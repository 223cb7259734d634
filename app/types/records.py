"""Typed records handed between the stores and the dispatch/reconcile logic.

ORM rows never leave the ``app.services`` stores; each store converts rows
through ``<Record>.from_row`` so a missing or malformed column surfaces as a
``RecordDecodeError`` instead of a ``None`` travelling through the engine.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.errors import RecordDecodeError

TEST_SEND_APPOINTMENT_ID = "test"


class SubscriptionState(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ReminderTiming(str, Enum):
    ONE_WEEK = "one_week"
    ONE_DAY = "one_day"
    SAME_DAY = "same_day"

    @property
    def days_ahead(self) -> int:
        return _DAYS_AHEAD[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_DAYS_AHEAD = {
    ReminderTiming.ONE_WEEK: 7,
    ReminderTiming.ONE_DAY: 1,
    ReminderTiming.SAME_DAY: 0,
}

_LABELS = {
    ReminderTiming.ONE_WEEK: "1 Week Before",
    ReminderTiming.ONE_DAY: "1 Day Before",
    ReminderTiming.SAME_DAY: "Same Day",
}


class SendStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    UNDELIVERED = "undelivered"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self.rank == _TERMINAL_RANK


_TERMINAL_RANK = 4

# Position in the carrier lifecycle; a record never moves to a lower rank.
_STATUS_RANK = {
    SendStatus.PENDING: 0,
    SendStatus.QUEUED: 1,
    SendStatus.SENDING: 2,
    SendStatus.SENT: 3,
    SendStatus.DELIVERED: _TERMINAL_RANK,
    SendStatus.UNDELIVERED: _TERMINAL_RANK,
    SendStatus.FAILED: _TERMINAL_RANK,
}


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    entity: ClassVar[str] = "record"

    @classmethod
    def from_row(cls, row: Any):
        try:
            return cls.model_validate(row)
        except ValidationError as exc:
            raise RecordDecodeError(cls.entity, getattr(row, "id", None), str(exc)) from exc


class Tenant(_Record):
    entity: ClassVar[str] = "tenant"

    id: str
    subscription_state: SubscriptionState
    credits_remaining: int = Field(ge=0)
    plan: Optional[str] = None
    billing_renews_at: Optional[datetime] = None
    clinic_name: Optional[str] = None
    clinic_phone: Optional[str] = None
    calendar_credentials: Optional[dict[str, Any]] = None
    last_calendar_sync_at: Optional[datetime] = None


class ReminderSchedule(_Record):
    entity: ClassVar[str] = "reminder_schedule"

    id: str
    tenant_id: str
    timing: ReminderTiming
    template_id: str
    enabled: bool


class MessageTemplate(_Record):
    entity: ClassVar[str] = "message_template"

    id: str
    tenant_id: str
    name: str
    body: str
    is_default: bool = False


class Appointment(_Record):
    entity: ClassVar[str] = "appointment"

    id: str
    tenant_id: str
    calendar_event_id: str
    patient_name: str
    patient_phone: Optional[str] = None
    start_at: datetime
    end_at: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    reminder_sent: bool = False
    reminder_sent_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None


class SendRecord(_Record):
    entity: ClassVar[str] = "send_record"

    id: str
    tenant_id: str
    appointment_id: str
    template_id: Optional[str] = None
    recipient: str
    body: str
    status: SendStatus
    carrier_message_id: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class Attendee(BaseModel):
    email: str = ""
    display_name: Optional[str] = None
    response_status: Optional[str] = None


class CalendarEvent(BaseModel):
    """One timed event as returned by the calendar provider."""

    id: str
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start: datetime
    end: datetime
    attendees: List[Attendee] = Field(default_factory=list)

    @field_validator("start", "end")
    def _require_tz(cls, v: datetime):  # noqa: N805
        if v.tzinfo is None:
            raise ValueError("event times must be timezone-aware")
        return v

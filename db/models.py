from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.db import Base, UTCDateTime, utcnow


def _uuid() -> str:
    return str(uuid4())


class Tenant(Base):
    __tablename__ = "tenants"

    id:                   Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    subscription_state:   Mapped[str] = mapped_column(String(16), default="trial")
    credits_remaining:    Mapped[int] = mapped_column(Integer, default=0)
    plan:                 Mapped[str | None] = mapped_column(String(32))
    billing_renews_at:    Mapped[datetime | None] = mapped_column(UTCDateTime())
    clinic_name:          Mapped[str | None] = mapped_column(String(200))
    clinic_phone:         Mapped[str | None] = mapped_column(String(32))
    # Opaque; owned by the calendar provider integration.
    calendar_credentials: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    last_calendar_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    created_at:           Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at:           Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_tenants_credits_non_negative"),
    )


class ReminderSchedule(Base):
    __tablename__ = "reminder_schedules"

    id:          Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    tenant_id:   Mapped[str] = mapped_column(String(64), index=True)
    timing:      Mapped[str] = mapped_column(String(16))
    template_id: Mapped[str] = mapped_column(String(64))
    enabled:     Mapped[bool] = mapped_column(default=True)
    created_at:  Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at:  Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "timing", name="uq_reminder_schedules_tenant_timing"),
    )


class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id:         Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    tenant_id:  Mapped[str] = mapped_column(String(64), index=True)
    name:       Mapped[str] = mapped_column(String(100))
    body:       Mapped[str] = mapped_column(Text)
    is_default: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow)


class Appointment(Base):
    __tablename__ = "appointments"

    id:                Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    tenant_id:         Mapped[str] = mapped_column(String(64))
    calendar_event_id: Mapped[str] = mapped_column(String(255))
    patient_name:      Mapped[str] = mapped_column(String(200))
    patient_phone:     Mapped[str | None] = mapped_column(String(32))
    start_at:          Mapped[datetime] = mapped_column(UTCDateTime())
    end_at:            Mapped[datetime] = mapped_column(UTCDateTime())
    description:       Mapped[str | None] = mapped_column(Text)
    location:          Mapped[str | None] = mapped_column(Text)
    reminder_sent:     Mapped[bool] = mapped_column(default=False)
    reminder_sent_at:  Mapped[datetime | None] = mapped_column(UTCDateTime())
    last_synced_at:    Mapped[datetime | None] = mapped_column(UTCDateTime())
    created_at:        Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at:        Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "calendar_event_id", name="uq_appointments_tenant_event"),
        Index("ix_appointments_tenant_start", "tenant_id", "start_at"),
    )


class SendRecord(Base):
    """Append-only log of dispatch attempts.

    ``appointment_id`` is a plain column, not a foreign key: appointments may be
    deleted by calendar sync while their send history stays.
    """

    __tablename__ = "send_records"

    id:                 Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    tenant_id:          Mapped[str] = mapped_column(String(64), index=True)
    appointment_id:     Mapped[str] = mapped_column(String(64))
    template_id:        Mapped[str | None] = mapped_column(String(64))
    recipient:          Mapped[str] = mapped_column(String(32))
    body:               Mapped[str] = mapped_column(Text)
    status:             Mapped[str] = mapped_column(String(16), default="pending")
    carrier_message_id: Mapped[str | None] = mapped_column(String(128), unique=True)
    error_code:         Mapped[str | None] = mapped_column(String(64))
    error:              Mapped[str | None] = mapped_column(Text)
    created_at:         Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    sent_at:            Mapped[datetime | None] = mapped_column(UTCDateTime())
    delivered_at:       Mapped[datetime | None] = mapped_column(UTCDateTime())
    updated_at:         Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # NULL template ids (test sends) never collide.
        UniqueConstraint("appointment_id", "template_id", name="uq_send_records_appointment_template"),
    )

"""Mirror a tenant's calendar window into appointment rows.

The calendar provider itself (OAuth, event listing) lives outside this
service and is reached through ``CalendarProvider``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Protocol, Sequence

from app.errors import NotFoundError
from app.services.appointments import AppointmentStore, PatientInfo, SyncResult
from app.services.tenants import TenantStore
from app.types.records import Attendee, CalendarEvent
from db.db import utcnow

_LOGGER = logging.getLogger(__name__)

_VISIT_SUFFIX = re.compile(r"\s*[-–]\s*(checkup|cleaning|exam|consultation|appointment|visit).*", re.IGNORECASE)
_LABELLED_PHONE = re.compile(r"(?:phone|tel|mobile|cell)[:\s]*([+\d\s()-]{10,})", re.IGNORECASE)
_ANY_PHONE = re.compile(r"\b((?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})\b")


class CalendarProvider(Protocol):
    async def list_events(
        self,
        credentials: dict[str, Any],
        time_min: datetime,
        time_max: datetime,
        max_results: int,
    ) -> list[CalendarEvent]: ...


def extract_patient_info(
    summary: str | None,
    description: str | None,
    attendees: Sequence[Attendee] = (),
) -> PatientInfo:
    """Best-effort patient name and phone from a free-form calendar event.

    Summaries usually look like "Jane Doe - Checkup". The first attendee's
    display name wins over the summary. A phone is taken from a labelled
    "Phone: ..." line in the description, else the first phone-like run.
    """
    name = "Unknown Patient"
    phone = None

    if summary:
        cleaned = _VISIT_SUFFIX.sub("", summary).strip()
        if cleaned:
            name = cleaned

    if attendees and attendees[0].display_name:
        name = attendees[0].display_name

    if description:
        match = _LABELLED_PHONE.search(description)
        if match:
            phone = match.group(1).strip()
        else:
            match = _ANY_PHONE.search(description)
            if match:
                phone = match.group(1)

    return PatientInfo(name=name, phone=phone)


class CalendarSync:
    def __init__(
        self,
        tenants: TenantStore,
        appointments: AppointmentStore,
        provider: CalendarProvider,
        window_days: int = 30,
        max_events: int = 100,
    ):
        self.tenants = tenants
        self.appointments = appointments
        self.provider = provider
        self.window_days = window_days
        self.max_events = max_events

    async def sync_tenant(self, tenant_id: str, now: datetime | None = None) -> SyncResult:
        tenant = await self.tenants.get(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        if not tenant.calendar_credentials:
            raise NotFoundError(f"Tenant {tenant_id} has no calendar connected")

        now = now or utcnow()
        window_end = now + timedelta(days=self.window_days)
        events = await self.provider.list_events(tenant.calendar_credentials, now, window_end, self.max_events)
        _LOGGER.info("Found %d calendar events for tenant %s", len(events), tenant_id)

        patients = [extract_patient_info(e.summary, e.description, e.attendees) for e in events]
        result = await self.appointments.reconcile(tenant_id, events, patients, now, window_end, synced_at=now)
        await self.tenants.touch_calendar_sync(tenant_id)
        return result

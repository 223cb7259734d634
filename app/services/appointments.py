from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.types.records import Appointment, CalendarEvent
from db import models
from db.db import utcnow

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientInfo:
    name: str
    phone: str | None = None


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    total_events: int = 0

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "total_events": self.total_events,
        }


class AppointmentStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._sessions = session_maker

    async def get(self, appointment_id: str) -> Appointment | None:
        async with self._sessions() as s:
            row = await s.get(models.Appointment, appointment_id)
            return Appointment.from_row(row) if row else None

    async def list_starting_between(
        self, tenant_id: str, start: datetime, end: datetime
    ) -> list[Appointment]:
        """Appointments whose start lies in ``[start, end)``, in query order."""
        async with self._sessions() as s:
            stmt = (
                select(models.Appointment)
                .where(
                    models.Appointment.tenant_id == tenant_id,
                    models.Appointment.start_at >= start,
                    models.Appointment.start_at < end,
                )
                .order_by(models.Appointment.start_at, models.Appointment.id)
            )
            res = await s.execute(stmt)
            return [Appointment.from_row(r) for r in res.scalars()]

    async def list_upcoming(self, tenant_id: str, now: datetime | None = None) -> list[Appointment]:
        async with self._sessions() as s:
            stmt = (
                select(models.Appointment)
                .where(
                    models.Appointment.tenant_id == tenant_id,
                    models.Appointment.start_at >= (now or utcnow()),
                )
                .order_by(models.Appointment.start_at)
            )
            res = await s.execute(stmt)
            return [Appointment.from_row(r) for r in res.scalars()]

    async def mark_reminder_sent(self, appointment_id: str, sent_at: datetime | None = None) -> None:
        # A row deleted by a concurrent sync is fine to miss.
        async with self._sessions() as s:
            await s.execute(
                update(models.Appointment)
                .where(models.Appointment.id == appointment_id)
                .values(reminder_sent=True, reminder_sent_at=sent_at or utcnow(), updated_at=utcnow())
            )
            await s.commit()

    async def reconcile(
        self,
        tenant_id: str,
        events: Sequence[CalendarEvent],
        patients: Iterable[PatientInfo],
        window_start: datetime,
        window_end: datetime,
        synced_at: datetime | None = None,
    ) -> SyncResult:
        """Apply one calendar fetch to the tenant's appointment rows.

        ``patients`` is parallel to ``events``. Existing rows are read once;
        rows whose event vanished are deleted only if they start inside the
        fetched window. The reminder-sent marker is never touched here.
        """
        synced_at = synced_at or utcnow()
        result = SyncResult(total_events=len(events))

        async with self._sessions() as s:
            res = await s.execute(
                select(models.Appointment).where(models.Appointment.tenant_id == tenant_id)
            )
            existing = {row.calendar_event_id: row for row in res.scalars()}
            seen: set[str] = set()

            for event, patient in zip(events, patients):
                if event.id in seen:
                    continue
                seen.add(event.id)
                row = existing.get(event.id)
                if row is not None:
                    row.patient_name = patient.name
                    row.patient_phone = patient.phone
                    row.start_at = event.start
                    row.end_at = event.end
                    row.description = event.description
                    row.location = event.location
                    row.last_synced_at = synced_at
                    result.updated += 1
                else:
                    s.add(
                        models.Appointment(
                            tenant_id=tenant_id,
                            calendar_event_id=event.id,
                            patient_name=patient.name,
                            patient_phone=patient.phone,
                            start_at=event.start,
                            end_at=event.end,
                            description=event.description,
                            location=event.location,
                            reminder_sent=False,
                            last_synced_at=synced_at,
                        )
                    )
                    result.created += 1

            stale_ids = [
                row.id
                for event_id, row in existing.items()
                if event_id not in seen and window_start <= row.start_at <= window_end
            ]
            if stale_ids:
                await s.execute(delete(models.Appointment).where(models.Appointment.id.in_(stale_ids)))
                result.deleted = len(stale_ids)

            await s.commit()

        _LOGGER.info(
            "Calendar reconcile for tenant %s: %d created, %d updated, %d deleted",
            tenant_id, result.created, result.updated, result.deleted,
        )
        return result

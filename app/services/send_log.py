"""Append-only log of reminder dispatch attempts.

A record is addressable by its own id and, once the carrier accepted the
message, by ``carrier_message_id``; delivery callbacks use the latter.
The existence of a record for an (appointment, template) pair is what keeps a
reminder from going out twice. A unique constraint on that pair enforces it
across processes; test sends have no template and are not constrained.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import DuplicateSendError
from app.types.records import SendRecord, SendStatus
from db import models
from db.db import utcnow

_LOGGER = logging.getLogger(__name__)

_BELOW_SENT = [s.value for s in SendStatus if s.rank < SendStatus.SENT.rank]


@dataclass(frozen=True)
class ApplyResult:
    found: bool
    applied: bool
    previous: SendStatus | None = None


class SendLog:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._sessions = session_maker

    async def create_pending(
        self,
        tenant_id: str,
        appointment_id: str,
        recipient: str,
        body: str,
        template_id: str | None = None,
    ) -> SendRecord:
        row = models.SendRecord(
            tenant_id=tenant_id,
            appointment_id=appointment_id,
            template_id=template_id,
            recipient=recipient,
            body=body,
            status=SendStatus.PENDING.value,
            created_at=utcnow(),
        )
        async with self._sessions() as s:
            s.add(row)
            try:
                await s.commit()
            except IntegrityError as exc:
                raise DuplicateSendError(appointment_id, template_id) from exc
            return SendRecord.from_row(row)

    async def mark_sent(self, record_id: str, carrier_message_id: str, sent_at: datetime | None = None) -> None:
        """Record the carrier's acceptance.

        A delivery callback may already have moved the record past ``sent``;
        in that case only the id and timestamp are filled in.
        """
        async with self._sessions() as s:
            await s.execute(
                update(models.SendRecord)
                .where(models.SendRecord.id == record_id)
                .values(
                    carrier_message_id=carrier_message_id,
                    sent_at=sent_at or utcnow(),
                    status=case(
                        (models.SendRecord.status.in_(_BELOW_SENT), SendStatus.SENT.value),
                        else_=models.SendRecord.status,
                    ),
                    updated_at=utcnow(),
                )
            )
            await s.commit()

    async def mark_failed(self, record_id: str, error: str, error_code: str | None = None) -> None:
        async with self._sessions() as s:
            await s.execute(
                update(models.SendRecord)
                .where(models.SendRecord.id == record_id)
                .values(
                    status=SendStatus.FAILED.value,
                    error=error,
                    error_code=error_code,
                    updated_at=utcnow(),
                )
            )
            await s.commit()

    async def exists_for(self, appointment_id: str, template_id: str) -> bool:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.SendRecord.id)
                .where(
                    models.SendRecord.appointment_id == appointment_id,
                    models.SendRecord.template_id == template_id,
                )
                .limit(1)
            )
            return res.first() is not None

    async def get(self, record_id: str) -> SendRecord | None:
        async with self._sessions() as s:
            row = await s.get(models.SendRecord, record_id)
            return SendRecord.from_row(row) if row else None

    async def apply_carrier_status(
        self,
        carrier_message_id: str,
        status: SendStatus,
        error_code: str | None = None,
        error: str | None = None,
        at: datetime | None = None,
    ) -> ApplyResult:
        """Overwrite status fields for the record matching ``carrier_message_id``.

        Does not assume the dispatch path already wrote ``sent``. Transitions to
        a lower lifecycle rank, or from one final status to another, are
        refused.
        """
        at = at or utcnow()
        async with self._sessions() as s:
            res = await s.execute(
                select(models.SendRecord)
                .where(models.SendRecord.carrier_message_id == carrier_message_id)
                .with_for_update()
            )
            row = res.scalar_one_or_none()
            if row is None:
                return ApplyResult(found=False, applied=False)

            previous = SendStatus(row.status)
            if status.rank < previous.rank or (previous.is_terminal and status != previous):
                await s.rollback()
                return ApplyResult(found=True, applied=False, previous=previous)

            row.status = status.value
            if status == SendStatus.DELIVERED and row.delivered_at is None:
                row.delivered_at = at
            if status in (SendStatus.FAILED, SendStatus.UNDELIVERED):
                if error_code:
                    row.error_code = error_code
                if error:
                    row.error = error
            row.updated_at = at
            await s.commit()
            return ApplyResult(found=True, applied=True, previous=previous)

    async def list_for_tenant(self, tenant_id: str, limit: int = 50) -> list[SendRecord]:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.SendRecord)
                .where(models.SendRecord.tenant_id == tenant_id)
                .order_by(models.SendRecord.created_at.desc())
                .limit(limit)
            )
            return [SendRecord.from_row(r) for r in res.scalars()]

    async def list_for_appointment(self, appointment_id: str) -> list[SendRecord]:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.SendRecord)
                .where(models.SendRecord.appointment_id == appointment_id)
                .order_by(models.SendRecord.created_at.desc())
            )
            return [SendRecord.from_row(r) for r in res.scalars()]

    async def stats_for_tenant(self, tenant_id: str) -> dict[str, int]:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.SendRecord.status, func.count())
                .where(models.SendRecord.tenant_id == tenant_id)
                .group_by(models.SendRecord.status)
            )
            counts = {status: n for status, n in res.all()}
        return {
            "total": sum(counts.values()),
            "sent": counts.get(SendStatus.SENT.value, 0),
            "delivered": counts.get(SendStatus.DELIVERED.value, 0),
            "failed": counts.get(SendStatus.FAILED.value, 0) + counts.get(SendStatus.UNDELIVERED.value, 0),
        }

"""Tenant-owned reminder configuration: schedules and message templates."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import NotFoundError
from app.types.records import MessageTemplate, ReminderSchedule, ReminderTiming
from app.utils.templates import DEFAULT_TEMPLATES, MAX_TEMPLATE_LENGTH, MAX_TEMPLATE_NAME_LENGTH
from db import models
from db.db import utcnow

_LOGGER = logging.getLogger(__name__)


def _check_template(name: str | None, body: str | None) -> None:
    if name is not None and not (1 <= len(name) <= MAX_TEMPLATE_NAME_LENGTH):
        raise ValueError(f"template name must be 1-{MAX_TEMPLATE_NAME_LENGTH} characters")
    if body is not None and not (1 <= len(body) <= MAX_TEMPLATE_LENGTH):
        raise ValueError(f"template body must be 1-{MAX_TEMPLATE_LENGTH} characters")


class ScheduleStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._sessions = session_maker

    async def list_enabled(self) -> list[ReminderSchedule]:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.ReminderSchedule)
                .where(models.ReminderSchedule.enabled.is_(True))
                .order_by(models.ReminderSchedule.tenant_id, models.ReminderSchedule.created_at)
            )
            return [ReminderSchedule.from_row(r) for r in res.scalars()]

    async def list_for_tenant(self, tenant_id: str) -> list[ReminderSchedule]:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.ReminderSchedule)
                .where(models.ReminderSchedule.tenant_id == tenant_id)
                .order_by(models.ReminderSchedule.created_at.desc())
            )
            return [ReminderSchedule.from_row(r) for r in res.scalars()]

    async def upsert(
        self,
        tenant_id: str,
        timing: ReminderTiming,
        template_id: str,
        enabled: bool = True,
    ) -> ReminderSchedule:
        """One schedule per (tenant, timing): an existing one is edited in place."""
        async with self._sessions() as s:
            res = await s.execute(
                select(models.ReminderSchedule).where(
                    models.ReminderSchedule.tenant_id == tenant_id,
                    models.ReminderSchedule.timing == timing.value,
                )
            )
            row = res.scalar_one_or_none()
            if row is None:
                row = models.ReminderSchedule(
                    tenant_id=tenant_id,
                    timing=timing.value,
                    template_id=template_id,
                    enabled=enabled,
                )
                s.add(row)
            else:
                row.template_id = template_id
                row.enabled = enabled
            await s.commit()
            return ReminderSchedule.from_row(row)

    async def update(
        self,
        schedule_id: str,
        tenant_id: str,
        template_id: str | None = None,
        enabled: bool | None = None,
    ) -> None:
        values: dict[str, Any] = {"updated_at": utcnow()}
        if template_id is not None:
            values["template_id"] = template_id
        if enabled is not None:
            values["enabled"] = enabled
        async with self._sessions() as s:
            res = await s.execute(
                update(models.ReminderSchedule)
                .where(
                    models.ReminderSchedule.id == schedule_id,
                    models.ReminderSchedule.tenant_id == tenant_id,
                )
                .values(**values)
            )
            await s.commit()
        if res.rowcount == 0:
            raise NotFoundError("Reminder schedule not found or access denied")

    async def delete(self, schedule_id: str, tenant_id: str) -> None:
        async with self._sessions() as s:
            res = await s.execute(
                delete(models.ReminderSchedule).where(
                    models.ReminderSchedule.id == schedule_id,
                    models.ReminderSchedule.tenant_id == tenant_id,
                )
            )
            await s.commit()
        if res.rowcount == 0:
            raise NotFoundError("Reminder schedule not found or access denied")


class TemplateStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._sessions = session_maker

    async def get(self, template_id: str) -> MessageTemplate | None:
        async with self._sessions() as s:
            row = await s.get(models.MessageTemplate, template_id)
            return MessageTemplate.from_row(row) if row else None

    async def list_for_tenant(self, tenant_id: str) -> list[MessageTemplate]:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.MessageTemplate)
                .where(models.MessageTemplate.tenant_id == tenant_id)
                .order_by(models.MessageTemplate.created_at.desc(), models.MessageTemplate.id)
            )
            return [MessageTemplate.from_row(r) for r in res.scalars()]

    async def get_default(self, tenant_id: str) -> MessageTemplate | None:
        async with self._sessions() as s:
            res = await s.execute(
                select(models.MessageTemplate)
                .where(
                    models.MessageTemplate.tenant_id == tenant_id,
                    models.MessageTemplate.is_default.is_(True),
                )
                .limit(1)
            )
            row = res.scalar_one_or_none()
            return MessageTemplate.from_row(row) if row else None

    async def create(self, tenant_id: str, name: str, body: str, is_default: bool = False) -> MessageTemplate:
        _check_template(name, body)
        async with self._sessions() as s:
            if is_default:
                await self._unset_defaults(s, tenant_id)
            row = models.MessageTemplate(tenant_id=tenant_id, name=name, body=body, is_default=is_default)
            s.add(row)
            await s.commit()
            return MessageTemplate.from_row(row)

    async def update(
        self,
        template_id: str,
        tenant_id: str,
        name: str | None = None,
        body: str | None = None,
        is_default: bool | None = None,
    ) -> MessageTemplate:
        _check_template(name, body)
        async with self._sessions() as s:
            row = await s.get(models.MessageTemplate, template_id)
            if row is None or row.tenant_id != tenant_id:
                raise NotFoundError("Template not found or access denied")
            if is_default:
                await self._unset_defaults(s, tenant_id, keep=template_id)
            if name is not None:
                row.name = name
            if body is not None:
                row.body = body
            if is_default is not None:
                row.is_default = is_default
            row.updated_at = utcnow()
            await s.commit()
            return MessageTemplate.from_row(row)

    async def delete(self, template_id: str, tenant_id: str) -> None:
        async with self._sessions() as s:
            res = await s.execute(
                delete(models.MessageTemplate).where(
                    models.MessageTemplate.id == template_id,
                    models.MessageTemplate.tenant_id == tenant_id,
                )
            )
            await s.commit()
        if res.rowcount == 0:
            raise NotFoundError("Template not found or access denied")

    async def ensure_defaults(self, tenant_id: str) -> int:
        """Seed the stock templates for a tenant that has none. Returns how many were added."""
        async with self._sessions() as s:
            res = await s.execute(
                select(models.MessageTemplate.id)
                .where(models.MessageTemplate.tenant_id == tenant_id)
                .limit(1)
            )
            if res.first() is not None:
                return 0
            for tpl in DEFAULT_TEMPLATES:
                s.add(models.MessageTemplate(tenant_id=tenant_id, **tpl))
            await s.commit()
        _LOGGER.info("Seeded %d default templates for tenant %s", len(DEFAULT_TEMPLATES), tenant_id)
        return len(DEFAULT_TEMPLATES)

    @staticmethod
    async def _unset_defaults(s: AsyncSession, tenant_id: str, keep: str | None = None) -> None:
        stmt = (
            update(models.MessageTemplate)
            .where(
                models.MessageTemplate.tenant_id == tenant_id,
                models.MessageTemplate.is_default.is_(True),
            )
            .values(is_default=False, updated_at=utcnow())
        )
        if keep:
            stmt = stmt.where(models.MessageTemplate.id != keep)
        await s.execute(stmt)

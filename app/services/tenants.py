from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import NotFoundError
from app.types.records import SubscriptionState, Tenant
from db import models
from db.db import utcnow

_LOGGER = logging.getLogger(__name__)


class TenantStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], trial_credits: int = 20):
        self._sessions = session_maker
        self._trial_credits = trial_credits

    async def get(self, tenant_id: str) -> Tenant | None:
        async with self._sessions() as s:
            row = await s.get(models.Tenant, tenant_id)
            return Tenant.from_row(row) if row else None

    async def create(
        self,
        tenant_id: str | None = None,
        clinic_name: str | None = None,
        clinic_phone: str | None = None,
    ) -> Tenant:
        """First sign-in: a trial account with the one-time trial grant."""
        row = models.Tenant(
            subscription_state=SubscriptionState.TRIAL.value,
            credits_remaining=self._trial_credits,
            clinic_name=clinic_name,
            clinic_phone=clinic_phone,
        )
        if tenant_id:
            row.id = tenant_id
        async with self._sessions() as s:
            s.add(row)
            await s.commit()
            _LOGGER.info("Tenant %s created on trial with %d credits", row.id, self._trial_credits)
            return Tenant.from_row(row)

    async def get_or_create(self, tenant_id: str) -> Tenant:
        existing = await self.get(tenant_id)
        if existing:
            return existing
        return await self.create(tenant_id)

    async def update_profile(
        self,
        tenant_id: str,
        clinic_name: str | None = None,
        clinic_phone: str | None = None,
    ) -> None:
        values: dict[str, Any] = {}
        if clinic_name is not None:
            values["clinic_name"] = clinic_name
        if clinic_phone is not None:
            values["clinic_phone"] = clinic_phone
        if values:
            await self._update(tenant_id, **values)

    async def set_calendar_credentials(self, tenant_id: str, credentials: dict[str, Any] | None) -> None:
        await self._update(tenant_id, calendar_credentials=credentials)

    async def touch_calendar_sync(self, tenant_id: str) -> None:
        await self._update(tenant_id, last_calendar_sync_at=utcnow())

    async def _update(self, tenant_id: str, **values: Any) -> None:
        async with self._sessions() as s:
            res = await s.execute(
                update(models.Tenant)
                .where(models.Tenant.id == tenant_id)
                .values(updated_at=utcnow(), **values)
            )
            await s.commit()
        if res.rowcount == 0:
            raise NotFoundError(f"Tenant {tenant_id} not found")

"""Prepaid send-credit admission control.

``try_reserve`` spends one credit up front with a guarded UPDATE
(``credits_remaining > 0``), so two processes racing for a tenant's last
credit cannot both be admitted and the balance never drops below zero. A send
that does not go out hands its credit back through ``refund``.
``tenant_lock`` only orders one process's work for a tenant; the database
decides admission.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import NotFoundError
from app.types.records import SubscriptionState, Tenant
from db import models
from db.db import utcnow

_LOGGER = logging.getLogger(__name__)

# Monthly send allotment per billing plan.
PLAN_CREDITS = {
    "solo": 300,
    "practice": 800,
    "clinic": 2000,
}
DEFAULT_PLAN_CREDITS = 300


class RemediationAction(str, Enum):
    SUBSCRIBE = "subscribe"
    UPGRADE = "upgrade"


@dataclass(frozen=True)
class Admitted:
    tenant_id: str
    remaining: int

    allowed = True


@dataclass(frozen=True)
class Denied:
    tenant_id: str
    reason: str
    action: RemediationAction

    allowed = False


Admission = Union[Admitted, Denied]


def admission_for(tenant: Tenant) -> Admission:
    """Pure admission policy over a freshly read tenant."""
    if tenant.credits_remaining > 0:
        return Admitted(tenant.id, tenant.credits_remaining)
    return denial_for(tenant)


def denial_for(tenant: Tenant) -> Denied:
    if tenant.subscription_state == SubscriptionState.TRIAL:
        return Denied(tenant.id, "exhausted trial credits", RemediationAction.SUBSCRIBE)
    if tenant.subscription_state == SubscriptionState.ACTIVE:
        return Denied(tenant.id, "exhausted plan credits", RemediationAction.UPGRADE)
    return Denied(tenant.id, "subscription inactive", RemediationAction.SUBSCRIBE)


def plan_credits(plan: str | None) -> int:
    return PLAN_CREDITS.get(plan or "", DEFAULT_PLAN_CREDITS)


class CreditLedger:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], trial_credits: int = 20):
        self._sessions = session_maker
        self._trial_credits = trial_credits
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def tenant_lock(self, tenant_id: str) -> asyncio.Lock:
        return self._locks[tenant_id]

    async def try_reserve(self, tenant_id: str) -> Admission:
        """Spend one credit now. ``Admitted.remaining`` is the balance after the spend."""
        async with self._sessions() as s:
            res = await s.execute(
                update(models.Tenant)
                .where(models.Tenant.id == tenant_id, models.Tenant.credits_remaining > 0)
                .values(
                    credits_remaining=models.Tenant.credits_remaining - 1,
                    updated_at=utcnow(),
                )
            )
            await s.commit()
            row = await s.get(models.Tenant, tenant_id, populate_existing=True)
            if row is None:
                raise NotFoundError(f"Tenant {tenant_id} not found")
            tenant = Tenant.from_row(row)
        if res.rowcount == 0:
            return denial_for(tenant)
        return Admitted(tenant.id, tenant.credits_remaining)

    async def refund(self, tenant_id: str) -> None:
        """Return a credit reserved for a send that did not go out."""
        async with self._sessions() as s:
            await s.execute(
                update(models.Tenant)
                .where(models.Tenant.id == tenant_id)
                .values(
                    credits_remaining=models.Tenant.credits_remaining + 1,
                    updated_at=utcnow(),
                )
            )
            await s.commit()
        _LOGGER.info("Refunded one credit to tenant %s", tenant_id)

    # ------------------------------------------------------------------
    # Writes made on behalf of the billing provider
    # ------------------------------------------------------------------
    async def grant_trial(self, tenant_id: str) -> None:
        await self._set(
            tenant_id,
            subscription_state=SubscriptionState.TRIAL.value,
            credits_remaining=self._trial_credits,
        )

    async def apply_renewal(self, tenant_id: str, plan: str | None, period_end: datetime | None = None) -> int:
        """Billing period renewed: reset (not top up) to the plan allotment."""
        allotment = plan_credits(plan)
        values = dict(
            subscription_state=SubscriptionState.ACTIVE.value,
            credits_remaining=allotment,
            billing_renews_at=period_end,
        )
        if plan:
            values["plan"] = plan
        await self._set(tenant_id, **values)
        _LOGGER.info("Credits reset for tenant %s: %d", tenant_id, allotment)
        return allotment

    async def apply_upgrade(self, tenant_id: str, plan: str) -> int:
        """New plan purchased: keep the remaining balance and add the allotment."""
        async with self._sessions() as s:
            row = await s.get(models.Tenant, tenant_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Tenant {tenant_id} not found")
            row.credits_remaining = row.credits_remaining + plan_credits(plan)
            row.plan = plan
            row.subscription_state = SubscriptionState.ACTIVE.value
            await s.commit()
            return row.credits_remaining

    async def mark_inactive(self, tenant_id: str) -> None:
        await self._set(tenant_id, subscription_state=SubscriptionState.INACTIVE.value)

    async def _set(self, tenant_id: str, **values) -> None:
        async with self._sessions() as s:
            res = await s.execute(
                update(models.Tenant)
                .where(models.Tenant.id == tenant_id)
                .values(updated_at=utcnow(), **values)
            )
            await s.commit()
        if res.rowcount == 0:
            raise NotFoundError(f"Tenant {tenant_id} not found")

"""Daily reminder dispatch.

One call to ``DispatchEngine.run`` is one scheduled run: every enabled
schedule is examined, due appointments are looked up for the schedule's
target day, and each one goes through

    phone check → idempotency check → reserve credit → render →
    pending SendRecord → carrier send → record outcome (refund on failure)

Failures are isolated: a carrier error only fails its own SendRecord, a
tenant-level error only skips that tenant, and the run reports partial
counters instead of rolling anything back. Re-running the same day is safe
because an existing SendRecord for (appointment, template) blocks a resend,
and the unique key on that pair also holds when runs overlap across processes.
The per-tenant time limit is checked between appointments; a send that has
started always finishes.

Day windows use UTC calendar-day boundaries, not the tenant's local day.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from app.errors import CarrierError, ConfigurationError, DuplicateSendError
from app.services.appointments import AppointmentStore
from app.services.credits import Admitted, CreditLedger, Denied
from app.services.schedules import TemplateStore, ScheduleStore
from app.services.send_log import SendLog
from app.services.tenants import TenantStore
from app.types.records import (
    TEST_SEND_APPOINTMENT_ID,
    Appointment,
    MessageTemplate,
    ReminderSchedule,
    SubscriptionState,
    Tenant,
)
from app.utils import phone
from app.utils.sms import Carrier, SendResult
from app.utils.templates import appointment_variables, render
from db.db import utcnow

_LOGGER = logging.getLogger(__name__)

TEST_MESSAGE = (
    "This is a test message from your appointment reminder service. "
    "Your SMS integration is working correctly! Reply STOP to opt out."
)


def day_window(run_date: date, days_ahead: int) -> tuple[datetime, datetime]:
    """UTC ``[start, end)`` covering the calendar day ``days_ahead`` after ``run_date``."""
    target = run_date + timedelta(days=days_ahead)
    start = datetime.combine(target, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


@dataclass
class RunResult:
    checked: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "timestamp": (self.finished_at or self.started_at).isoformat(),
        }


@dataclass
class SendTestResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
    denied: Denied | None = None


@dataclass
class RunContext:
    """Lookups memoised for the duration of one run. Credits are never cached."""

    run_date: date
    tenants: dict[str, Tenant | None] = field(default_factory=dict)
    templates: dict[str, MessageTemplate | None] = field(default_factory=dict)


class _TenantHalted(Exception):
    """Admission denied mid-batch; nothing more is sent for this tenant this run."""


class DispatchEngine:
    def __init__(
        self,
        tenants: TenantStore,
        schedules: ScheduleStore,
        templates: TemplateStore,
        appointments: AppointmentStore,
        send_log: SendLog,
        ledger: CreditLedger,
        carrier: Carrier,
        send_timeout: float = 15.0,
        concurrency: int = 1,
        tenant_timeout: float | None = None,
    ):
        self.tenants = tenants
        self.schedules = schedules
        self.templates = templates
        self.appointments = appointments
        self.send_log = send_log
        self.ledger = ledger
        self.carrier = carrier
        self.send_timeout = send_timeout
        self.concurrency = max(1, concurrency)
        self.tenant_timeout = tenant_timeout

    # ------------------------------------------------------------------
    # Scheduled run
    # ------------------------------------------------------------------
    async def run(self, run_date: date | None = None) -> RunResult:
        result = RunResult()
        ctx = RunContext(run_date=run_date or result.started_at.date())
        _LOGGER.info("[Dispatch] Starting reminder run for %s", ctx.run_date.isoformat())

        schedules = await self.schedules.list_enabled()
        _LOGGER.info("[Dispatch] Found %d enabled reminder schedules", len(schedules))

        by_tenant: OrderedDict[str, list[ReminderSchedule]] = OrderedDict()
        for schedule in schedules:
            by_tenant.setdefault(schedule.tenant_id, []).append(schedule)

        gate = asyncio.Semaphore(self.concurrency)

        async def _guarded(tenant_id: str, tenant_schedules: list[ReminderSchedule]) -> None:
            async with gate:
                deadline = None
                if self.tenant_timeout:
                    deadline = asyncio.get_running_loop().time() + self.tenant_timeout
                try:
                    await self._run_tenant(ctx, tenant_id, tenant_schedules, result, deadline)
                except ConfigurationError:
                    raise
                except Exception:
                    _LOGGER.exception("[Dispatch] Tenant %s failed; continuing with other tenants", tenant_id)

        await asyncio.gather(*(_guarded(t, s) for t, s in by_tenant.items()))

        result.finished_at = utcnow()
        _LOGGER.info("[Dispatch] Run completed: %s", result.to_dict())
        return result

    async def _run_tenant(
        self,
        ctx: RunContext,
        tenant_id: str,
        schedules: list[ReminderSchedule],
        result: RunResult,
        deadline: float | None = None,
    ) -> None:
        tenant = await self._tenant(ctx, tenant_id)
        if tenant is None:
            _LOGGER.warning("[Dispatch] Tenant %s not found, skipping", tenant_id)
            return

        for schedule in schedules:
            try:
                await self._run_schedule(ctx, tenant, schedule, result, deadline)
            except _TenantHalted:
                return

    async def _run_schedule(
        self,
        ctx: RunContext,
        tenant: Tenant,
        schedule: ReminderSchedule,
        result: RunResult,
        deadline: float | None = None,
    ) -> None:
        # Cheap pre-check on trial accounts; admission is re-checked per send.
        if tenant.subscription_state == SubscriptionState.TRIAL:
            current = await self.tenants.get(tenant.id)
            if current is not None and current.credits_remaining <= 0:
                _LOGGER.info("[Dispatch] Tenant %s trial credits exhausted, skipping %s", tenant.id, schedule.timing.value)
                return

        template = await self._template(ctx, schedule.template_id)
        if template is None or template.tenant_id != tenant.id:
            _LOGGER.warning(
                "[Dispatch] Template %s not found for schedule %s, skipping",
                schedule.template_id, schedule.id,
            )
            return

        start, end = day_window(ctx.run_date, schedule.timing.days_ahead)
        due = await self.appointments.list_starting_between(tenant.id, start, end)
        _LOGGER.info(
            "[Dispatch] Tenant %s %s: %d appointments in %s..%s",
            tenant.id, schedule.timing.value, len(due), start.isoformat(), end.isoformat(),
        )

        for index, appointment in enumerate(due):
            # Checked between sends only: a send in flight is never cancelled.
            if deadline is not None and asyncio.get_running_loop().time() >= deadline:
                remainder = len(due) - index
                result.checked += remainder
                result.skipped += remainder
                _LOGGER.error(
                    "[Dispatch] Tenant %s hit its %ss time limit; %d appointments left for the next run",
                    tenant.id, self.tenant_timeout, remainder,
                )
                raise _TenantHalted()

            result.checked += 1
            try:
                await self._process(tenant, template, appointment, result)
            except _TenantHalted:
                remainder = len(due) - index - 1
                result.checked += remainder
                result.skipped += 1 + remainder
                raise

    async def _process(
        self,
        tenant: Tenant,
        template: MessageTemplate,
        appointment: Appointment,
        result: RunResult,
    ) -> None:
        if not appointment.patient_phone:
            _LOGGER.info("[Dispatch] Skipping appointment %s: no phone number", appointment.id)
            result.skipped += 1
            return

        recipient = phone.normalize(appointment.patient_phone)
        if recipient is None:
            _LOGGER.info("[Dispatch] Skipping appointment %s: phone number out of scope", appointment.id)
            result.skipped += 1
            return

        if await self.send_log.exists_for(appointment.id, template.id):
            _LOGGER.info("[Dispatch] Skipping appointment %s: reminder already sent", appointment.id)
            result.skipped += 1
            return

        async with self.ledger.tenant_lock(tenant.id):
            # An overlapping run in this process may have claimed it while we waited.
            if await self.send_log.exists_for(appointment.id, template.id):
                _LOGGER.info("[Dispatch] Skipping appointment %s: reminder already sent", appointment.id)
                result.skipped += 1
                return

            admission = await self.ledger.try_reserve(tenant.id)
            if isinstance(admission, Denied):
                _LOGGER.warning(
                    "[Dispatch] Tenant %s denied (%s); halting batch", tenant.id, admission.reason
                )
                raise _TenantHalted()

            message = render(template.body, appointment_variables(appointment, tenant))
            try:
                record = await self.send_log.create_pending(
                    tenant_id=tenant.id,
                    appointment_id=appointment.id,
                    template_id=template.id,
                    recipient=recipient,
                    body=message,
                )
            except DuplicateSendError:
                # Another process recorded it first.
                await self.ledger.refund(tenant.id)
                _LOGGER.info("[Dispatch] Skipping appointment %s: claimed by a concurrent run", appointment.id)
                result.skipped += 1
                return
            except Exception:
                await self.ledger.refund(tenant.id)
                raise

            sent = await self._send(record.id, tenant.id, recipient, message)
            if sent is None:
                result.failed += 1
                _LOGGER.error("[Dispatch] Failed to send reminder for appointment %s", appointment.id)
                return

            now = utcnow()
            await self.send_log.mark_sent(record.id, sent.message_id, sent_at=now)
            await self.appointments.mark_reminder_sent(appointment.id, sent_at=now)

        result.sent += 1
        _LOGGER.info("[Dispatch] Reminder sent for appointment %s: %s", appointment.id, sent.message_id)

    async def _send(self, record_id: str, tenant_id: str, recipient: str, message: str) -> SendResult | None:
        """Carrier call for a reserved credit. On failure the record is failed and the credit refunded."""
        error_code = None
        try:
            return await asyncio.wait_for(self.carrier.send(recipient, message), timeout=self.send_timeout)
        except CarrierError as exc:
            error, error_code = str(exc), exc.code
            _LOGGER.error("[Dispatch] Carrier rejected send to %s: %s", phone.mask(recipient), exc)
        except asyncio.TimeoutError:
            error = f"carrier send timed out after {self.send_timeout}s"
            _LOGGER.error("[Dispatch] Carrier send to %s timed out", phone.mask(recipient))
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or exc.__class__.__name__
            _LOGGER.exception("[Dispatch] Unexpected error sending to %s", phone.mask(recipient))

        await self.send_log.mark_failed(record_id, error, error_code=error_code)
        await self.ledger.refund(tenant_id)
        return None

    async def _tenant(self, ctx: RunContext, tenant_id: str) -> Tenant | None:
        if tenant_id not in ctx.tenants:
            ctx.tenants[tenant_id] = await self.tenants.get(tenant_id)
        return ctx.tenants[tenant_id]

    async def _template(self, ctx: RunContext, template_id: str) -> MessageTemplate | None:
        if template_id not in ctx.templates:
            ctx.templates[template_id] = await self.templates.get(template_id)
        return ctx.templates[template_id]

    # ------------------------------------------------------------------
    # Test send
    # ------------------------------------------------------------------
    async def send_test(self, tenant_id: str, phone_number: str) -> SendTestResult:
        """Send the fixed test message to ``phone_number`` on the tenant's credits."""
        recipient = phone.normalize(phone_number)
        if recipient is None:
            return SendTestResult(success=False, error=phone.rejection_message(phone_number))

        async with self.ledger.tenant_lock(tenant_id):
            admission = await self.ledger.try_reserve(tenant_id)
            if not isinstance(admission, Admitted):
                return SendTestResult(success=False, error=admission.reason, denied=admission)

            try:
                record = await self.send_log.create_pending(
                    tenant_id=tenant_id,
                    appointment_id=TEST_SEND_APPOINTMENT_ID,
                    recipient=recipient,
                    body=TEST_MESSAGE,
                )
            except Exception:
                await self.ledger.refund(tenant_id)
                raise

            sent = await self._send(record.id, tenant_id, recipient, TEST_MESSAGE)
            if sent is None:
                failed = await self.send_log.get(record.id)
                return SendTestResult(success=False, error=failed.error if failed else "carrier send failed")

            await self.send_log.mark_sent(record.id, sent.message_id)

        _LOGGER.info("[Dispatch] Test SMS sent for tenant %s (%s credits left)", tenant_id, admission.remaining)
        return SendTestResult(success=True, message_id=sent.message_id)

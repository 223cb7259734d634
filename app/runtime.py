"""Wire stores, carrier and engines together for one process.

Entry points (FastAPI startup, the Celery task, the cron script) call
``build_services`` once and own the returned bundle's lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.appointments import AppointmentStore
from app.services.calendar_sync import CalendarProvider, CalendarSync
from app.services.credits import CreditLedger
from app.services.dispatch import DispatchEngine
from app.services.reconciler import DeliveryStatusReconciler
from app.services.schedules import ScheduleStore, TemplateStore
from app.services.send_log import SendLog
from app.services.tenants import TenantStore
from app.utils.sms import Carrier, carrier_from_settings
from config import settings as default_settings
from db.db import get_session_maker


@dataclass
class Services:
    tenants: TenantStore
    schedules: ScheduleStore
    templates: TemplateStore
    appointments: AppointmentStore
    send_log: SendLog
    ledger: CreditLedger
    carrier: Carrier
    engine: DispatchEngine
    reconciler: DeliveryStatusReconciler
    calendar_sync: CalendarSync | None = None


def build_services(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    carrier: Carrier | None = None,
    calendar: CalendarProvider | None = None,
    settings=None,
) -> Services:
    settings = settings or default_settings
    sessions = session_maker or get_session_maker()
    carrier = carrier or carrier_from_settings(settings)

    tenants = TenantStore(sessions, trial_credits=settings.TRIAL_CREDITS)
    schedules = ScheduleStore(sessions)
    templates = TemplateStore(sessions)
    appointments = AppointmentStore(sessions)
    send_log = SendLog(sessions)
    ledger = CreditLedger(sessions, trial_credits=settings.TRIAL_CREDITS)

    engine = DispatchEngine(
        tenants=tenants,
        schedules=schedules,
        templates=templates,
        appointments=appointments,
        send_log=send_log,
        ledger=ledger,
        carrier=carrier,
        send_timeout=settings.TELNYX_SEND_TIMEOUT,
        concurrency=settings.DISPATCH_CONCURRENCY,
        tenant_timeout=settings.DISPATCH_TENANT_TIMEOUT,
    )

    calendar_sync = None
    if calendar is not None:
        calendar_sync = CalendarSync(
            tenants,
            appointments,
            calendar,
            window_days=settings.CALENDAR_SYNC_DAYS,
            max_events=settings.CALENDAR_SYNC_MAX_EVENTS,
        )

    return Services(
        tenants=tenants,
        schedules=schedules,
        templates=templates,
        appointments=appointments,
        send_log=send_log,
        ledger=ledger,
        carrier=carrier,
        engine=engine,
        reconciler=DeliveryStatusReconciler(send_log),
        calendar_sync=calendar_sync,
    )

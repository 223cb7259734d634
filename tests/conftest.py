from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from app.errors import CarrierError
from app.runtime import build_services
from app.types.records import ReminderTiming
from app.utils.sms import SendResult
from db import models
from db.db import create_all


class FakeCarrier:
    """Records every send; recipients in ``fail_for`` get a carrier rejection.

    ``delay`` holds each send open so tests can overlap them.
    """

    def __init__(self, delay: float = 0.0):
        self.sent: list[tuple[str, str]] = []
        self.fail_for: set[str] = set()
        self.next_ids: list[str] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, to: str, body: str) -> SendResult:
        self.sent.append((to, body))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if to in self.fail_for:
            raise CarrierError("Invalid destination number", code="40310")
        message_id = self.next_ids.pop(0) if self.next_ids else f"msg-{len(self.sent)}"
        return SendResult(message_id=message_id, status="queued")


class FakeCalendar:
    def __init__(self, events=None):
        self.events = list(events or [])
        self.calls: list[tuple[datetime, datetime, int]] = []

    async def list_events(self, credentials, time_min, time_max, max_results):
        self.calls.append((time_min, time_max, max_results))
        return list(self.events)


class Factory:
    """Insert rows directly so tests control every column."""

    def __init__(self, session_maker):
        self._sessions = session_maker

    async def _add(self, row):
        async with self._sessions() as s:
            s.add(row)
            await s.commit()
            return row.id

    async def tenant(
        self,
        tenant_id: str = "t1",
        credits: int = 20,
        state: str = "trial",
        clinic_name: str | None = "Smile Dental",
        clinic_phone: str | None = "555-0100",
        plan: str | None = None,
        calendar_credentials: dict | None = None,
    ) -> str:
        return await self._add(
            models.Tenant(
                id=tenant_id,
                subscription_state=state,
                credits_remaining=credits,
                clinic_name=clinic_name,
                clinic_phone=clinic_phone,
                plan=plan,
                calendar_credentials=calendar_credentials,
            )
        )

    async def template(
        self,
        tenant_id: str = "t1",
        body: str = "Hi {{patientName}}, see you {{appointmentDate}} at {{appointmentTime}} - {{clinicName}}",
        name: str = "Reminder",
        is_default: bool = False,
    ) -> str:
        return await self._add(
            models.MessageTemplate(tenant_id=tenant_id, name=name, body=body, is_default=is_default)
        )

    async def schedule(
        self,
        tenant_id: str,
        template_id: str,
        timing: ReminderTiming = ReminderTiming.ONE_DAY,
        enabled: bool = True,
    ) -> str:
        return await self._add(
            models.ReminderSchedule(
                tenant_id=tenant_id, timing=timing.value, template_id=template_id, enabled=enabled
            )
        )

    async def appointment(
        self,
        tenant_id: str,
        start_at: datetime,
        phone: str | None = "(555) 123-4567",
        name: str = "Jane Doe",
        event_id: str | None = None,
        duration_minutes: int = 30,
    ) -> str:
        return await self._add(
            models.Appointment(
                tenant_id=tenant_id,
                calendar_event_id=event_id or f"evt-{name}-{start_at.isoformat()}",
                patient_name=name,
                patient_phone=phone,
                start_at=start_at,
                end_at=start_at + timedelta(minutes=duration_minutes),
            )
        )


@pytest.fixture
def service_settings():
    return SimpleNamespace(
        TRIAL_CREDITS=20,
        TELNYX_SEND_TIMEOUT=5.0,
        DISPATCH_CONCURRENCY=1,
        DISPATCH_TENANT_TIMEOUT=None,
        CALENDAR_SYNC_DAYS=30,
        CALENDAR_SYNC_MAX_EVENTS=100,
    )


@pytest_asyncio.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_all(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def carrier():
    return FakeCarrier()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def services(session_maker, carrier, calendar, service_settings):
    return build_services(
        session_maker=session_maker,
        carrier=carrier,
        calendar=calendar,
        settings=service_settings,
    )


@pytest.fixture
def factory(session_maker):
    return Factory(session_maker)


@pytest_asyncio.fixture
async def file_session_maker(tmp_path):
    """A database file shared by independent engines, one per simulated process."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}"
    engines = []

    def _make():
        engine = create_async_engine(url, poolclass=NullPool, connect_args={"timeout": 15})
        engines.append(engine)
        return async_sessionmaker(engine, expire_on_commit=False)

    setup = create_async_engine(url, poolclass=NullPool)
    await create_all(setup)
    await setup.dispose()
    yield _make
    for engine in engines:
        await engine.dispose()


@pytest.fixture
def process_services(file_session_maker, calendar, service_settings):
    """Build a service bundle with its own engine, locks and carrier, like a separate worker.

    The bundle's carrier is ``services.engine.carrier``."""

    def _build(delay: float = 0.0, **overrides):
        settings = SimpleNamespace(**{**vars(service_settings), **overrides})
        return build_services(
            session_maker=file_session_maker(),
            carrier=FakeCarrier(delay),
            calendar=calendar,
            settings=settings,
        )

    return _build


@pytest.fixture
def file_factory(file_session_maker):
    return Factory(file_session_maker())

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import StatementError

from db import models
from db.db import UTCDateTime


def test_utc_datetime_rejects_naive_values():
    with pytest.raises(ValueError, match="timezone-aware"):
        UTCDateTime().process_bind_param(datetime(2025, 4, 25, 15, 0, 0), None)


def test_utc_datetime_normalises_to_utc():
    eastern = timezone(timedelta(hours=-5))
    bound = UTCDateTime().process_bind_param(datetime(2025, 4, 25, 10, 0, tzinfo=eastern), None)
    assert bound == datetime(2025, 4, 25, 15, 0, tzinfo=timezone.utc)
    assert bound.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_insert_naive_datetime_raises(session_maker):
    async with session_maker() as s:
        s.add(
            models.Appointment(
                tenant_id="t1",
                calendar_event_id="evt-naive",
                patient_name="Naive",
                start_at=datetime(2025, 4, 25, 15, 0, 0),
                end_at=datetime(2025, 4, 25, 15, 30, 0),
            )
        )
        with pytest.raises((ValueError, StatementError), match="timezone-aware"):
            await s.commit()


@pytest.mark.asyncio
async def test_aware_datetime_round_trips_as_utc(services, factory):
    eastern = timezone(timedelta(hours=-5))
    appointment_id = await factory.appointment("t1", datetime(2025, 4, 25, 10, 0, tzinfo=eastern))

    appointment = await services.appointments.get(appointment_id)

    assert appointment.start_at == datetime(2025, 4, 25, 15, 0, tzinfo=timezone.utc)
    assert appointment.start_at.tzinfo is not None

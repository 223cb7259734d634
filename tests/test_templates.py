from datetime import datetime, timezone

from app.types.records import Appointment, Tenant
from app.utils.templates import (
    DEFAULT_TEMPLATES,
    appointment_variables,
    format_date,
    format_time,
    render,
)


def _tenant(**overrides):
    data = dict(id="t1", subscription_state="active", credits_remaining=5, clinic_name="Smile Dental", clinic_phone="555-0100")
    data.update(overrides)
    return Tenant(**data)


def _appointment(**overrides):
    start = datetime(2026, 3, 5, 9, 30, tzinfo=timezone.utc)
    data = dict(
        id="a1",
        tenant_id="t1",
        calendar_event_id="evt-1",
        patient_name="Sam",
        start_at=start,
        end_at=start,
    )
    data.update(overrides)
    return Appointment(**data)


def test_missing_value_leaves_placeholder_untouched():
    body = "Hi {{patientName}}, see you at {{clinicPhone}}"
    assert render(body, {"patientName": "Sam"}) == "Hi Sam, see you at {{clinicPhone}}"


def test_empty_value_is_treated_as_missing():
    assert render("Call {{clinicPhone}}", {"clinicPhone": ""}) == "Call {{clinicPhone}}"


def test_unknown_placeholder_is_kept_and_repeats_replaced():
    body = "{{patientName}} {{patientName}} {{doctor}}"
    assert render(body, {"patientName": "Sam", "doctor": "Who"}) == "Sam Sam {{doctor}}"


def test_render_is_idempotent():
    variables = {"patientName": "Sam", "clinicName": "Smile Dental"}
    once = render("Hi {{patientName}} from {{clinicName}}", variables)
    assert render(once, variables) == once


def test_date_and_time_formatting():
    when = datetime(2026, 3, 5, 14, 5, tzinfo=timezone.utc)
    assert format_date(when) == "March 5, 2026"
    assert format_time(when) == "2:05 PM"
    assert format_time(when.replace(hour=0)) == "12:05 AM"
    assert format_time(when.replace(hour=12)) == "12:05 PM"


def test_appointment_variables_fallbacks():
    variables = appointment_variables(_appointment(patient_name=""), _tenant(clinic_name=None, clinic_phone=None))
    assert variables["patientName"] == "Patient"
    assert variables["clinicName"] == "the clinic"
    assert variables["clinicPhone"] == ""
    assert variables["appointmentDate"] == "March 5, 2026"
    assert variables["appointmentTime"] == "9:30 AM"


def test_exactly_one_stock_template_is_default():
    assert sum(1 for t in DEFAULT_TEMPLATES if t["is_default"]) == 1
    assert all("Reply STOP" in t["body"] for t in DEFAULT_TEMPLATES)

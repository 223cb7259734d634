"""Placeholder substitution for reminder message bodies."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping, Optional

from app.types.records import Appointment, Tenant

PLACEHOLDERS = {
    "patientName": "{{patientName}}",
    "appointmentDate": "{{appointmentDate}}",
    "appointmentTime": "{{appointmentTime}}",
    "clinicName": "{{clinicName}}",
    "clinicPhone": "{{clinicPhone}}",
}

MAX_TEMPLATE_LENGTH = 500
MAX_TEMPLATE_NAME_LENGTH = 100

# Seeded for a tenant with no templates; opt-out text is required for A2P 10DLC.
DEFAULT_TEMPLATES = [
    {
        "name": "Appointment Reminder - 1 Day Before",
        "body": (
            "Hi {{patientName}}, this is a reminder of your appointment tomorrow "
            "at {{appointmentTime}} with {{clinicName}}. Please call {{clinicPhone}} "
            "if you need to reschedule. Reply STOP to opt out."
        ),
        "is_default": True,
    },
    {
        "name": "Appointment Reminder - Same Day",
        "body": (
            "Hi {{patientName}}, reminder - your appointment at {{clinicName}} is "
            "TODAY at {{appointmentTime}}. Please arrive a few minutes early. "
            "Reply STOP to opt out."
        ),
        "is_default": False,
    },
    {
        "name": "Appointment Reminder - 1 Week Before",
        "body": (
            "Hi {{patientName}}, reminder of your upcoming appointment on "
            "{{appointmentDate}} at {{appointmentTime}} with {{clinicName}}. "
            "Reply STOP to opt out."
        ),
        "is_default": False,
    },
]


def render(body: str, variables: Mapping[str, Optional[str]]) -> str:
    """Substitute known placeholders that have a non-empty value.

    Tokens without a value are left in place, as are unknown tokens.
    """
    result = body
    for name, token in PLACEHOLDERS.items():
        value = variables.get(name)
        if value:
            result = result.replace(token, value)
    return result


def format_date(when: datetime) -> str:
    # "March 5, 2026"
    return f"{when:%B} {when.day}, {when.year}"


def format_time(when: datetime) -> str:
    # "9:30 AM"
    hour = when.hour % 12 or 12
    return f"{hour}:{when:%M} {when:%p}"


def appointment_variables(appointment: Appointment, tenant: Tenant) -> dict[str, str]:
    start = appointment.start_at.astimezone(timezone.utc)
    return {
        "patientName": appointment.patient_name or "Patient",
        "appointmentDate": format_date(start),
        "appointmentTime": format_time(start),
        "clinicName": tenant.clinic_name or "the clinic",
        "clinicPhone": tenant.clinic_phone or "",
    }

import pytest

from app.utils import phone


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("555-123-4567", "+15551234567"),
        ("(555) 123-4567", "+15551234567"),
        ("5551234567", "+15551234567"),
        ("1 555 123 4567", "+15551234567"),
        ("+1 (555) 123-4567", "+15551234567"),
        ("+15551234567", "+15551234567"),
    ],
)
def test_normalize_in_scope(raw, expected):
    assert phone.normalize(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "   ",
        "555-1234",
        "+44 20 7946 0958",
        "+4420794609",
        "+555 123 4567",
        "25551234567",
        "+1 555 123 45678",
        None,
        5551234567,
    ],
)
def test_normalize_out_of_scope_returns_none(raw):
    assert phone.normalize(raw) is None
    assert phone.is_in_scope(raw) is False


def test_normalize_is_idempotent():
    once = phone.normalize("(555) 123-4567")
    assert phone.normalize(once) == once


def test_rejection_messages():
    assert phone.rejection_message("") == "Please enter a phone number."
    assert phone.rejection_message("555-12").startswith("Phone number is too short")
    assert phone.rejection_message("+44 20 7946 0958").startswith("Only US and Canadian numbers")
    assert phone.rejection_message("+4420794609").startswith("Only US and Canadian numbers")
    assert phone.rejection_message("555-123-4567") is None


def test_mask_keeps_last_four_digits():
    assert phone.mask("+15551234567") == "***4567"
    assert phone.mask(None) == "<none>"

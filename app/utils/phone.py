"""Recipient number normalisation for the North American numbering plan.

Everything here is pure and total: malformed input yields ``None``/``False``
rather than an exception.
"""

from __future__ import annotations

import re

COUNTRY_CODE = "1"
NATIONAL_LENGTH = 10

_NON_DIGITS = re.compile(r"\D")


def normalize(raw: object) -> str | None:
    """Return ``+1XXXXXXXXXX`` for an in-scope number, else ``None``.

    A leading ``+`` means the country code is present, so ``+`` followed by
    ten digits is a foreign number, not a national one.
    """
    if not isinstance(raw, str):
        return None
    digits = _NON_DIGITS.sub("", raw)
    international = raw.strip().startswith("+")
    if len(digits) == NATIONAL_LENGTH and not international:
        return f"+{COUNTRY_CODE}{digits}"
    if len(digits) == NATIONAL_LENGTH + 1 and digits.startswith(COUNTRY_CODE):
        return f"+{digits}"
    return None


def is_in_scope(raw: object) -> bool:
    return normalize(raw) is not None


def rejection_message(raw: object) -> str | None:
    """User-facing reason a number cannot be texted, or ``None`` if it can."""
    if not isinstance(raw, str) or not raw.strip():
        return "Please enter a phone number."
    if is_in_scope(raw):
        return None
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) < NATIONAL_LENGTH:
        return "Phone number is too short. Enter a 10-digit US or Canadian number."
    return "Only US and Canadian numbers (+1 followed by 10 digits) are supported."


def mask(number: str | None) -> str:
    """Hide all but the last four digits for log output."""
    if not number:
        return "<none>"
    return "***" + number[-4:]

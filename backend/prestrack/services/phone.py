"""Phone number canonicalization.

Two entry points:

- ``normalize_chat_id`` turns whatever identifier the messaging gateway sends
  (``"23276123456@c.us"``, ``"+232 76 123 456"``) into E.164, or None.
- ``validate_e164`` is the boundary check for API fields that must already be
  E.164. It is the identity on valid input and None on anything else.

Neither raises. None means "unroutable": callers drop the interaction or
reject the field, never fail the surrounding request with a 500.
"""

import re

E164_PATTERN = re.compile(r"\+[0-9]{6,15}")
_DIGITS_PATTERN = re.compile(r"[0-9]{6,15}")
_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_chat_id(raw: object) -> str | None:
    """Strip any ``@suffix`` and non-digits, require 6-15 digits, prefix ``+``."""
    if raw is None:
        return None
    local = str(raw).split("@", 1)[0]
    digits = _NON_DIGITS.sub("", local)
    if not _DIGITS_PATTERN.fullmatch(digits):
        return None
    return f"+{digits}"


def validate_e164(value: object) -> str | None:
    """Return ``value`` if it is already a valid E.164 string."""
    if not isinstance(value, str):
        return None
    return value if E164_PATTERN.fullmatch(value) else None


def mask_phone(phone: str | None) -> str:
    """Phone form safe for log lines."""
    if not phone:
        return "<none>"
    return f"***{phone[-4:]}"

"""Phone number validation for inbound leads."""

import re

_ALLOWED_CHARS = re.compile(r"^[+\d\s().\-]+$")

# E.164 caps numbers at 15 digits; anything under 8 cannot be dialed.
MIN_DIGITS = 8
MAX_DIGITS = 15


class InvalidPhoneError(ValueError):
    """Raised when a lead has no usable phone number."""


def normalize_phone(raw) -> str:
    """Return a dialable number ("+" prefix kept, separators stripped).

    Raises InvalidPhoneError when the value is missing or malformed.
    """
    if raw is None:
        raise InvalidPhoneError("MISSING_PHONE: lead has no phone number")

    phone = str(raw).strip()
    if not phone:
        raise InvalidPhoneError("MISSING_PHONE: lead has no phone number")

    if not _ALLOWED_CHARS.match(phone):
        raise InvalidPhoneError(f"INVALID_PHONE: unexpected characters in {phone!r}")

    if phone.count("+") > 1 or ("+" in phone and not phone.startswith("+")):
        raise InvalidPhoneError(f"INVALID_PHONE: misplaced '+' in {phone!r}")

    digits = "".join(c for c in phone if c.isdigit())
    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        raise InvalidPhoneError(
            f"INVALID_PHONE: expected {MIN_DIGITS}-{MAX_DIGITS} digits, got {len(digits)}"
        )

    return f"+{digits}" if phone.startswith("+") else digits

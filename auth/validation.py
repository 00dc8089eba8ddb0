"""
auth/validation.py -- Pure input validators shared by registration forms and the service.

None of these raise. validate_password() collects every failing rule so a
form can show all of them at once.
"""

from __future__ import annotations

import re

from auth.models import PasswordCheck
from core.config import Settings, get_settings

_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

# No "@": a username must never be mistaken for an email address at login.
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,64}$")

SPECIAL_CHARACTERS = "@$!%*?&"


def validate_email(value: str) -> bool:
    """Return True if value is a syntactically valid email address."""
    if not isinstance(value, str):
        return False
    value = value.strip()
    if len(value) > 254:
        return False
    local, _, _ = value.partition("@")
    if len(local) > 64:
        return False
    return _EMAIL_RE.match(value) is not None


def validate_username(value: str) -> bool:
    return isinstance(value, str) and _USERNAME_RE.match(value) is not None


def validate_password(value: str, settings: Settings | None = None) -> PasswordCheck:
    """Check value against the configured password policy.

    Rules: minimum length always; with require_mixed_case_digit_special also
    a lower-case letter, an upper-case letter, a digit, and one of @$!%*?&.
    """
    settings = settings or get_settings()
    value = value or ""
    errors: list[str] = []

    if len(value) < settings.password_min_length:
        errors.append(f"Password must be at least {settings.password_min_length} characters long")

    if settings.require_mixed_case_digit_special:
        if not re.search(r"[a-z]", value):
            errors.append("Password must contain at least one lowercase letter")
        if not re.search(r"[A-Z]", value):
            errors.append("Password must contain at least one uppercase letter")
        if not re.search(r"\d", value):
            errors.append("Password must contain at least one number")
        if not any(ch in SPECIAL_CHARACTERS for ch in value):
            errors.append(f"Password must contain at least one special character ({SPECIAL_CHARACTERS})")

    return PasswordCheck(is_valid=not errors, errors=errors)

"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers). Stores and the session service do
the work; the only behaviour here is the role ordering and the helper that
strips the password hash before an Identity leaves the core. The UTC clock
type lives here too, since tokens and the rate limiter both take one.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware UTC clock; the default for every time-dependent component."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Staff roles, totally ordered by privilege: admin > manager > employee."""

    admin = "admin"
    manager = "manager"
    employee = "employee"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: Role | str) -> bool:
        """Return True if this role carries at least the privilege of other."""
        return self.rank >= Role(other).rank


_ROLE_RANK = {Role.admin: 3, Role.manager: 2, Role.employee: 1}


class SessionState(str, Enum):
    """Lifecycle of the session held by one AuthSessionService.

    anonymous -> authenticating -> authenticated -> (expired | logged_out),
    and any of the last two return to anonymous on the next login attempt.
    """

    anonymous = "anonymous"
    authenticating = "authenticating"
    authenticated = "authenticated"
    expired = "expired"
    logged_out = "logged_out"


@dataclass
class Identity:
    """One authenticable salon staff account.

    email and username are unique case-insensitively across the store: a
    single submitted identifier must never match two identities.

    hashed_password is excluded from repr and is set to None by public()
    before an Identity is handed to anything outside the core.
    Accounts are never hard-deleted; deactivation flips is_active.
    """

    email: str
    username: str
    role: Role = Role.employee
    first_name: str = ""
    last_name: str = ""
    id: str | None = None
    is_active: bool = True
    hashed_password: str | None = field(default=None, repr=False)
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def public(self) -> Identity:
        """Return a copy safe to expose: same fields, no password hash."""
        return dataclasses.replace(self, hashed_password=None)


@dataclass(frozen=True)
class LoginAttempt:
    """Immutable record of one login attempt, kept in a sliding window."""

    identifier: str
    timestamp: datetime
    success: bool
    origin_address: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """Bearer credentials issued at login or refresh.

    Invariant: expires_at <= refresh_expires_at.
    """

    access_token: str
    refresh_token: str
    issued_at: datetime
    expires_at: datetime
    refresh_expires_at: datetime
    remember_me: bool = False


@dataclass
class AuthResult:
    """Successful outcome of login, refresh, or register.

    register() fills identity only; login() and refresh() fill everything.
    """

    identity: Identity
    access_token: str | None = None
    refresh_token: str | None = None
    csrf_token: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class SessionCheck:
    is_valid: bool
    identity: Identity | None = None


@dataclass(frozen=True)
class PasswordCheck:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class Registration:
    """Input to AuthSessionService.register().

    role is a request, not a grant: the service decides the final role.
    """

    email: str
    username: str
    password: str = field(repr=False)
    first_name: str = ""
    last_name: str = ""
    role: Role | None = None

"""
auth/errors.py -- The closed set of failures the auth core reports.

Every class carries a stable machine-readable `code` and a user-facing
`message`. Only AuthSessionService chooses which class (and therefore which
wording) a caller sees; the hasher, token verifier, and stores raise the
narrow structural errors (InvalidTokenError, DuplicateIdentityError) or
return booleans.

Information disclosure:
  [E1] InvalidCredentialsError has one message for "unknown identifier" and
       "wrong password". Never subclass it or add detail per cause.
  [E2] InvalidTokenError has one message for missing, malformed, expired,
       and tampered tokens so verification is not an oracle.
"""

from __future__ import annotations

import math
from datetime import timedelta


class AuthError(Exception):
    """Base class. Catch this to handle every auth outcome exhaustively."""

    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input: empty fields, bad email syntax, weak password."""

    code = "validation_error"
    message = "Invalid input."

    def __init__(self, message: str | None = None, errors: list[str] | None = None) -> None:
        self.errors: list[str] = list(errors) if errors else []
        if message is None and self.errors:
            message = ", ".join(self.errors)
        super().__init__(message)


class RateLimitedError(AuthError):
    """Login blocked for this identifier until the lockout window slides."""

    code = "rate_limited"

    def __init__(self, retry_after: timedelta) -> None:
        self.retry_after = retry_after
        # Display value: whole minutes, rounded up, never below 1.
        self.minutes = max(1, math.ceil(retry_after.total_seconds() / 60))
        super().__init__(f"Account temporarily locked. Try again in {self.minutes} minutes.")


class InvalidCredentialsError(AuthError):
    """Unknown identifier or wrong password -- deliberately indistinguishable [E1]."""

    code = "invalid_credentials"
    message = "Invalid credentials."


class AccountDisabledError(AuthError):
    code = "account_disabled"
    message = "Account disabled. Contact the administrator."


class InvalidTokenError(AuthError):
    """Any token verification failure [E2]."""

    code = "invalid_token"
    message = "Invalid or expired token."


class DuplicateIdentityError(AuthError):
    code = "duplicate_identity"
    message = "A user with that email or username already exists."


class PermissionDeniedError(AuthError):
    """The caller may not perform the request, e.g. grant a role above its own."""

    code = "permission_denied"
    message = "Insufficient permissions."


class InternalAuthError(AuthError):
    """Unexpected failure inside the core. Details are logged, never returned."""

    code = "internal_error"
    message = "An unexpected error occurred."

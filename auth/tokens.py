"""
auth/tokens.py -- JWT issuance and verification for access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed, not encrypted -- claims are
       readable by the holder but cannot be forged without the key.

  Key separation [K1]: access tokens are signed with SECRET_KEY, refresh
       tokens with REFRESH_SECRET_KEY, and each carries a typ claim. A refresh
       token presented as an access token fails signature verification.

  Claims:
       access  -- sub (identity id), email, role, iss, aud, iat, exp, typ
       refresh -- sub (identity id), iat, exp, jti, typ
       The refresh jti lets the session service revoke a single refresh token
       on rotation or logout.

  Lifetimes: access = SESSION_TIMEOUT_MINUTES, or REMEMBER_ME_DURATION_DAYS
       with remember-me. Refresh = REFRESH_TOKEN_DURATION_DAYS, stretched to
       the access expiry when that is later so access expiry <= refresh expiry.

  Expiry is checked here against the injected clock, not inside jose, so
       tests control time and the boundary is exact: a token presented at its
       exp instant is expired (fails closed).

  Every failure -- bad signature, wrong audience, missing claim, expired --
       raises the same InvalidTokenError. The cause is logged at DEBUG only [E2].

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from jose import JWTError, jwt

from auth.errors import InvalidTokenError
from auth.models import Clock, Identity, Role, TokenPair, utcnow
from core.config import Settings, get_settings

logger = logging.getLogger("salonauth.tokens")

_ALGORITHM = "HS256"
ACCESS_TYPE = "access"
REFRESH_TYPE = "refresh"


class TokenIssuer:
    """Creates and validates signed, time-bounded access and refresh tokens."""

    def __init__(self, settings: Settings | None = None, clock: Clock = utcnow) -> None:
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Lifetimes
    # ------------------------------------------------------------------

    def access_lifetime(self, remember_me: bool) -> timedelta:
        if remember_me:
            return timedelta(days=self.settings.remember_me_duration_days)
        return timedelta(minutes=self.settings.session_timeout_minutes)

    @property
    def refresh_lifetime(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_duration_days)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, identity: Identity, remember_me: bool = False) -> TokenPair:
        """Issue an access + refresh pair for identity.

        Args:
            identity:    The authenticated identity. Must have an id.
            remember_me: Long-lived access token (days) instead of a
                         session-length one (minutes).
        """
        if identity.id is None:
            raise ValueError("Cannot issue tokens for an identity without an id")
        now = self.clock()
        expires_at = now + self.access_lifetime(remember_me)
        refresh_expires_at = max(now + self.refresh_lifetime, expires_at)

        access_claims = {
            "sub": str(identity.id),
            "email": identity.email,
            "role": Role(identity.role).value,
            "iss": self.settings.token_issuer,
            "aud": self.settings.token_audience,
            "iat": _epoch(now),
            "exp": _epoch(expires_at),
            "typ": ACCESS_TYPE,
        }
        refresh_claims = {
            "sub": str(identity.id),
            "iat": _epoch(now),
            "exp": _epoch(refresh_expires_at),
            "jti": uuid.uuid4().hex,
            "typ": REFRESH_TYPE,
        }
        return TokenPair(
            access_token=jwt.encode(access_claims, self.settings.secret_key, algorithm=_ALGORITHM),
            refresh_token=jwt.encode(refresh_claims, self.settings.refresh_secret_key, algorithm=_ALGORITHM),
            issued_at=now,
            expires_at=expires_at,
            refresh_expires_at=refresh_expires_at,
            remember_me=remember_me,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str | None) -> dict:
        """Return the claims of a valid access token or raise InvalidTokenError."""
        claims = self._decode(
            token,
            self.settings.secret_key,
            audience=self.settings.token_audience,
            issuer=self.settings.token_issuer,
        )
        if claims.get("typ") != ACCESS_TYPE or not claims.get("email") or "role" not in claims:
            logger.debug("Access token rejected: missing claims")
            raise InvalidTokenError()
        return claims

    def verify_refresh(self, token: str | None) -> dict:
        """Return the claims of a valid refresh token or raise InvalidTokenError."""
        claims = self._decode(token, self.settings.refresh_secret_key)
        if claims.get("typ") != REFRESH_TYPE or not claims.get("jti"):
            logger.debug("Refresh token rejected: missing claims")
            raise InvalidTokenError()
        return claims

    def _decode(self, token: str | None, key: str, **expected) -> dict:
        if not token or not isinstance(token, str):
            raise InvalidTokenError()
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
                **expected,
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise InvalidTokenError() from None
        exp = claims.get("exp")
        if not isinstance(exp, int) or not claims.get("sub"):
            logger.debug("Token rejected: missing exp or sub")
            raise InvalidTokenError()
        if _epoch(self.clock()) >= exp:
            logger.debug("Token rejected: expired")
            raise InvalidTokenError()
        return claims


def _epoch(moment: datetime) -> int:
    return int(moment.timestamp())

"""
core/config.py -- Centralized configuration for the salon auth core via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
directly -- take a Settings instance (constructor injection) or fall back to
get_settings().

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance afterwards. Components accept an
      explicit Settings so tests can inject their own without touching env.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. secret_key -> SECRET_KEY, max_login_attempts -> MAX_LOGIN_ATTEMPTS).

  @model_validator(mode="after"): cross-field checks once every value is
      resolved -- secret generation in debug mode, key length, and
      access/refresh key separation.

Security notes:
  [K1] Access and refresh tokens are signed with different keys. A refresh
       token must never verify as an access token, so the two keys may not
       be equal.

  [K2] Keys shorter than 32 chars are rejected outright. HS256 signing relies
       on key entropy.

  [K3] In production mode (DEBUG not set or false) missing keys are a hard
       startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("salonauth.config")


class Settings(BaseSettings):
    """Auth core settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments. The defaults mirror the salon app's security policy:
    5 failed logins inside 15 minutes lock an identifier, sessions last
    30 minutes (30 days with remember-me), refresh tokens 7 days.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured"; see validate_keys().
    secret_key: str = ""
    refresh_secret_key: str = ""
    database_url: str = "sqlite:///salonauth.db"

    # ------------------------------------------------------------------
    # Login throttling
    # ------------------------------------------------------------------

    max_login_attempts: int = 5
    lockout_duration_minutes: int = 15
    attempt_retention_hours: int = 24
    # Per-IP ceiling on the HTTP login route (slowapi syntax).
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    session_timeout_minutes: int = 30
    remember_me_duration_days: int = 30
    refresh_token_duration_days: int = 7
    token_issuer: str = "beauty-salon-app"
    token_audience: str = "beauty-salon-users"
    csrf_token_bytes: int = 32
    secure_cookies: bool = True

    # ------------------------------------------------------------------
    # Passwords and registration
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    password_min_length: int = 8
    require_mixed_case_digit_special: bool = True
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_keys(self) -> "Settings":
        """Enforce the signing key policy [K1][K2][K3].

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start without both keys.
        """
        for field in ("secret_key", "refresh_secret_key"):
            if getattr(self, field):
                continue
            if not self.debug:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", field.upper())
        if len(self.secret_key) < 32 or len(self.refresh_secret_key) < 32:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must be at least 32 characters.")
        if secrets.compare_digest(self.secret_key.encode("utf-8"), self.refresh_secret_key.encode("utf-8")):
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must differ.")
        return self

    @model_validator(mode="after")
    def validate_policy(self) -> "Settings":
        """Reject policy values that would silently disable a control."""
        if self.max_login_attempts < 1:
            raise ValueError("MAX_LOGIN_ATTEMPTS must be at least 1.")
        positive = (
            "lockout_duration_minutes",
            "attempt_retention_hours",
            "session_timeout_minutes",
            "remember_me_duration_days",
            "refresh_token_duration_days",
            "password_min_length",
        )
        for field in positive:
            if getattr(self, field) <= 0:
                raise ValueError(f"{field.upper()} must be positive.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.csrf_token_bytes < 32:
            raise ValueError("CSRF_TOKEN_BYTES must be at least 32.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings singleton.

    In tests: call get_settings.cache_clear() between cases if you need to
    inject different environment variables, or pass Settings(...) directly
    to the component under test.
    """
    return Settings()

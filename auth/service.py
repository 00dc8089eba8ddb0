"""
auth/service.py -- AuthSessionService: login, logout, session checks, refresh, registration.

This is the only auth component the rest of the application talks to. It
composes the credential store, password hasher, token issuer, rate limiter,
and CSRF manager, and it is the single place that turns their structural
outcomes into the AuthError taxonomy (auth/errors.py).

Login ordering is a security property -- cheap rejects before expensive work:
  1. empty identifier/password        -> ValidationError
  2. rate limiter says blocked        -> RateLimitedError (store untouched)
  3. identity lookup (case-insensitive email or username)
       no match                       -> failed attempt, InvalidCredentialsError
  4. identity inactive                -> failed attempt, AccountDisabledError
  5. bcrypt verify
       mismatch                       -> failed attempt, InvalidCredentialsError
  6. success: record + reset limiter, rehash if the stored cost is below
     the configured cost, issue tokens, stamp last_login.

Unknown identifiers still pay for one bcrypt verification, and the
failed attempt is keyed by the identifier as submitted, so neither timing
nor lockout behaviour reveals whether an account exists.

Suspension points: store calls and bcrypt run in worker threads via
asyncio.to_thread. Nothing is spawned in the background. An abandoned call
may already have recorded attempts or stamped last_login; callers re-check
session state rather than assume rollback.

Session model: one service instance holds one CSRF token and one SessionState.
It keeps no copy of issued tokens; callers hold those. When one instance
serves many HTTP clients (api/main.py), routes rely only on the tokens each
request presents and on verify_session(), never on state.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Iterator

from auth.csrf import CsrfTokenManager
from auth.errors import (
    AccountDisabledError,
    AuthError,
    DuplicateIdentityError,
    InternalAuthError,
    InvalidCredentialsError,
    InvalidTokenError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from auth.models import AuthResult, Clock, Identity, Registration, Role, SessionCheck, SessionState, utcnow
from auth.passwords import PasswordHasher
from auth.ratelimit import RateLimiter
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from auth.validation import validate_email, validate_password, validate_username
from core.config import Settings, get_settings

logger = logging.getLogger("salonauth.auth")


def require_role(identity: Identity, role: Role | str) -> None:
    """Raise PermissionDeniedError unless identity is active and ranks at least role."""
    if not identity.is_active or not Role(identity.role).at_least(role):
        raise PermissionDeniedError()


class AuthSessionService:
    """Orchestrates the auth core for one session manager.

    Usage:
        service = AuthSessionService(SqlCredentialStore(settings.database_url), settings)
        result = await service.login("ana@salon.com", "Abcdef1!", remember_me=False)
        check = await service.verify_session(result.access_token)
        await service.logout(result.refresh_token)
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings | None = None,
        *,
        hasher: PasswordHasher | None = None,
        tokens: TokenIssuer | None = None,
        rate_limiter: RateLimiter | None = None,
        csrf: CsrfTokenManager | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.clock = clock
        self.hasher = hasher or PasswordHasher(rounds=self.settings.bcrypt_rounds)
        self.tokens = tokens or TokenIssuer(self.settings, clock=clock)
        self.rate_limiter = rate_limiter or RateLimiter(self.settings, clock=clock)
        self.csrf = csrf or CsrfTokenManager(self.settings.csrf_token_bytes)
        self.state = SessionState.anonymous
        self._revoked_lock = threading.Lock()
        # jti -> exp (epoch seconds); entries past exp are useless and dropped lazily.
        self._revoked_refresh: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Error boundary
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _boundary(self, operation: str) -> Iterator[None]:
        """Pass AuthError through; log and collapse anything else to InternalAuthError."""
        try:
            yield
        except AuthError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error during %s", operation)
            raise InternalAuthError() from exc

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(
        self,
        identifier: str,
        password: str,
        remember_me: bool = False,
        origin_address: str | None = None,
    ) -> AuthResult:
        """Authenticate by email or username and open a session.

        Raises ValidationError, RateLimitedError, InvalidCredentialsError,
        AccountDisabledError, or InternalAuthError.
        """
        identifier = (identifier or "").strip()
        if not identifier or not password:
            raise ValidationError("Email/username and password are required.")

        self.state = SessionState.authenticating
        try:
            with self._boundary("login"):
                result = await self._login(identifier, password, remember_me, origin_address)
        except AuthError:
            self.state = SessionState.anonymous
            raise
        self.state = SessionState.authenticated
        return result

    async def _login(
        self, identifier: str, password: str, remember_me: bool, origin_address: str | None
    ) -> AuthResult:
        if self.rate_limiter.is_blocked(identifier):
            retry_after = self.rate_limiter.remaining_lockout(identifier)
            logger.warning("Blocked login attempt for %r (origin=%s)", identifier, origin_address)
            raise RateLimitedError(retry_after)

        identity = await asyncio.to_thread(self.store.find_by_email_or_username, identifier)
        if identity is None:
            await asyncio.to_thread(self.hasher.dummy_verify, password)
            self._fail(identifier, origin_address, "unknown identifier")
            raise InvalidCredentialsError()

        if not identity.is_active:
            self._fail(identifier, origin_address, "disabled account")
            raise AccountDisabledError()

        if not await asyncio.to_thread(self.hasher.verify, password, identity.hashed_password):
            self._fail(identifier, origin_address, "wrong password")
            raise InvalidCredentialsError()

        self.rate_limiter.record_attempt(identifier, True, origin_address)
        self.rate_limiter.reset(identifier)

        if self.hasher.needs_rehash(identity.hashed_password):
            upgraded = await asyncio.to_thread(self.hasher.hash, password)
            await asyncio.to_thread(self.store.update_password_hash, identity.id, upgraded)
            logger.info("Upgraded password hash cost for identity %s", identity.id)

        pair = self.tokens.issue(identity, remember_me)
        identity.last_login = pair.issued_at
        await asyncio.to_thread(self.store.update_last_login, identity.id, pair.issued_at)
        logger.info("Login succeeded for identity %s (remember_me=%s)", identity.id, remember_me)
        return AuthResult(
            identity=identity.public(),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            csrf_token=self.csrf.current(),
            expires_at=pair.expires_at,
        )

    def _fail(self, identifier: str, origin_address: str | None, reason: str) -> None:
        self.rate_limiter.record_attempt(identifier, False, origin_address)
        logger.warning("Login failed for %r: %s (origin=%s)", identifier, reason, origin_address)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self, refresh_token: str | None = None) -> None:
        """End the session. Never raises.

        A presented refresh token is revoked best-effort: if that fails the
        error is logged and the local session still ends. The CSRF token is
        rotated on every call.
        """
        if refresh_token:
            try:
                self._revoke(self.tokens.verify_refresh(refresh_token))
            except InvalidTokenError:
                pass
            except Exception:
                logger.exception("Refresh token revocation failed during logout")
        self.csrf.rotate()
        self.state = SessionState.logged_out
        logger.info("Session logged out")

    # ------------------------------------------------------------------
    # Session verification
    # ------------------------------------------------------------------

    async def verify_session(self, access_token: str | None) -> SessionCheck:
        """Check a presented access token and re-resolve its identity.

        Fails closed: a structurally valid token whose identity is missing or
        deactivated is invalid, so deactivation takes effect before expiry.
        Never raises for token or identity problems.
        """
        try:
            claims = self.tokens.verify_access(access_token)
        except InvalidTokenError:
            if self.state is SessionState.authenticated:
                self.state = SessionState.expired
            return SessionCheck(is_valid=False)

        with self._boundary("verify_session"):
            identity = await asyncio.to_thread(self.store.find_by_email_or_username, claims["email"])
        if identity is None or not identity.is_active or identity.id != claims["sub"]:
            return SessionCheck(is_valid=False)
        return SessionCheck(is_valid=True, identity=identity.public())

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str | None) -> AuthResult:
        """Exchange a refresh token for a new pair.

        The presented refresh token is revoked (rotation). The new access
        token is always session-length: refresh never grants remember-me
        lifetimes. Raises InvalidTokenError or AccountDisabledError.
        """
        claims = self.tokens.verify_refresh(refresh_token)
        # Claimed before the first await: a concurrent replay of the same token
        # loses here. The token stays spent even if the checks below fail.
        if not self._claim(claims):
            logger.warning("Revoked refresh token presented for identity %s", claims["sub"])
            raise InvalidTokenError()

        with self._boundary("refresh"):
            identity = await asyncio.to_thread(self.store.get_by_id, claims["sub"])
        if identity is None:
            raise InvalidTokenError()
        if not identity.is_active:
            raise AccountDisabledError()

        pair = self.tokens.issue(identity, remember_me=False)
        result = AuthResult(
            identity=identity.public(),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            csrf_token=self.csrf.current(),
            expires_at=pair.expires_at,
        )
        self.state = SessionState.authenticated
        return result

    def _claim(self, claims: dict) -> bool:
        """Mark the refresh jti spent. Returns False if it already was."""
        now = int(self.clock().timestamp())
        with self._revoked_lock:
            self._revoked_refresh = {jti: exp for jti, exp in self._revoked_refresh.items() if exp > now}
            if claims["jti"] in self._revoked_refresh:
                return False
            self._revoked_refresh[claims["jti"]] = claims["exp"]
            return True

    def _revoke(self, claims: dict) -> None:
        self._claim(claims)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, registration: Registration, created_by: Identity | None = None) -> AuthResult:
        """Create a new identity and return it (no tokens, no password hash).

        Role assignment:
          - empty store: the first identity becomes admin (tenant bootstrap).
          - self-service (created_by is None): requires
            self_registration_enabled and always yields employee.
          - created by staff: created_by must be an active manager or admin
            and may grant at most its own role.

        Raises ValidationError, DuplicateIdentityError, PermissionDeniedError.
        """
        email = (registration.email or "").strip()
        username = (registration.username or "").strip()
        if not validate_email(email):
            raise ValidationError("Invalid email address.")
        if not validate_username(username):
            raise ValidationError("Username must be 3-64 letters, digits, dots, dashes or underscores.")
        check = validate_password(registration.password, self.settings)
        if not check.is_valid:
            raise ValidationError(errors=check.errors)

        with self._boundary("register"):
            if await asyncio.to_thread(self.store.find_by_email_or_username, email) or await asyncio.to_thread(
                self.store.find_by_email_or_username, username
            ):
                raise DuplicateIdentityError()
            role = self._assign_role(registration.role, created_by, await asyncio.to_thread(self.store.has_identities))
            hashed = await asyncio.to_thread(self.hasher.hash, registration.password)
            identity = await asyncio.to_thread(
                self.store.insert,
                Identity(
                    email=email,
                    username=username,
                    first_name=registration.first_name.strip(),
                    last_name=registration.last_name.strip(),
                    role=role,
                    hashed_password=hashed,
                ),
            )
        logger.info("Registered identity %s with role %s", identity.id, role.value)
        return AuthResult(identity=identity.public())

    def _assign_role(self, requested: Role | None, created_by: Identity | None, has_identities: bool) -> Role:
        if not has_identities:
            return Role.admin
        if created_by is None:
            if not self.settings.self_registration_enabled:
                raise PermissionDeniedError("Self-registration is disabled.")
            if requested is not None and Role(requested) is not Role.employee:
                raise PermissionDeniedError("Self-registration can only create employee accounts.")
            return Role.employee
        require_role(created_by, Role.manager)
        role = Role(requested) if requested is not None else Role.employee
        if not Role(created_by.role).at_least(role):
            raise PermissionDeniedError("Cannot grant a role above your own.")
        return role

    # ------------------------------------------------------------------
    # Administration and CSRF
    # ------------------------------------------------------------------

    async def set_active(self, identity_id: str, active: bool, changed_by: Identity) -> Identity:
        """Activate or deactivate an identity. Admin only; admins cannot deactivate themselves."""
        require_role(changed_by, Role.admin)
        if not active and identity_id == changed_by.id:
            raise PermissionDeniedError("You cannot deactivate your own account.")
        with self._boundary("set_active"):
            if not await asyncio.to_thread(self.store.set_active, identity_id, active):
                raise ValidationError("Unknown identity.")
            identity = await asyncio.to_thread(self.store.get_by_id, identity_id)
        logger.info("Identity %s set active=%s by %s", identity_id, active, changed_by.id)
        return identity.public()

    def get_csrf_token(self) -> str:
        return self.csrf.current()

    def rotate_csrf_token(self) -> str:
        return self.csrf.rotate()

    def validate_csrf_token(self, token: str | None) -> bool:
        return self.csrf.validate(token)

"""Tests for auth/service.py -- AuthSessionService orchestration.

Covers:
- login by email or username; verify_session on the returned token
- lockout after five failures, even with the right password afterwards
- unknown account and wrong password are indistinguishable
- disabled accounts, empty input, reset after success
- logout rotates CSRF every call and never raises; revokes refresh tokens
- verify_session fails closed on deactivation and expiry
- refresh rotation, short-lived access on refresh, revoked token replay,
  concurrent replay of one refresh token
- weaker stored hashes are upgraded on successful login
- registration: validation, duplicates, no password in the result, role rules
- unexpected store failures surface as InternalAuthError
"""

from __future__ import annotations

import asyncio

import pytest

from auth.errors import (
    AccountDisabledError,
    DuplicateIdentityError,
    InternalAuthError,
    InvalidCredentialsError,
    InvalidTokenError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from auth.models import Registration, Role, SessionState
from auth.passwords import PasswordHasher
from auth.service import AuthSessionService, require_role
from auth.store import MemoryCredentialStore, SqlCredentialStore
from conftest import ADMIN_PASSWORD, EMPLOYEE_PASSWORD, FakeClock, run
from core.config import Settings


def _register_e1(service: AuthSessionService):
    return run(service.register(Registration(email="e1@x.com", username="e1user", password="Abcdef1!")))


class TestLogin:
    @pytest.mark.parametrize("identifier", ["admin@beautysalon.com", "ADMIN@beautysalon.com", "admin", "Admin"])
    def test_login_by_email_or_username(self, service: AuthSessionService, identifier: str) -> None:
        result = run(service.login(identifier, ADMIN_PASSWORD, False))
        assert result.identity.email == "admin@beautysalon.com"
        assert result.identity.hashed_password is None
        assert result.access_token and result.refresh_token
        assert result.csrf_token == service.get_csrf_token()
        assert service.state is SessionState.authenticated

    @pytest.mark.parametrize("remember_me", [False, True])
    def test_login_then_verify_session(self, service: AuthSessionService, remember_me: bool) -> None:
        result = run(service.login("stylist", EMPLOYEE_PASSWORD, remember_me))
        check = run(service.verify_session(result.access_token))
        assert check.is_valid is True
        assert check.identity.id == result.identity.id

    def test_display_expiry_follows_remember_me(self, service: AuthSessionService, clock: FakeClock) -> None:
        short = run(service.login("admin", ADMIN_PASSWORD, False))
        long = run(service.login("admin", ADMIN_PASSWORD, True))
        assert (short.expires_at - clock()).total_seconds() == 30 * 60
        assert (long.expires_at - clock()).days == 30

    def test_login_stamps_last_login(self, service: AuthSessionService, store: MemoryCredentialStore, clock: FakeClock) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        assert result.identity.last_login == clock()
        assert store.get_by_id(result.identity.id).last_login == clock()

    @pytest.mark.parametrize("identifier,password", [("", "x"), ("admin", ""), ("   ", "x"), (None, None)])
    def test_empty_input_is_validation_error(self, service: AuthSessionService, identifier, password) -> None:
        with pytest.raises(ValidationError):
            run(service.login(identifier, password, False))
        assert service.rate_limiter.attempts(identifier or "") == []

    def test_unknown_and_wrong_password_are_identical(self, service: AuthSessionService) -> None:
        _register_e1(service)
        with pytest.raises(InvalidCredentialsError) as unknown:
            run(service.login("nonexistent@x.com", "anything", False))
        with pytest.raises(InvalidCredentialsError) as wrong:
            run(service.login("e1@x.com", "wrongpw", False))
        assert type(unknown.value) is type(wrong.value)
        assert str(unknown.value) == str(wrong.value)
        assert unknown.value.code == wrong.value.code

    def test_unknown_identifier_still_counts_toward_lockout(self, service: AuthSessionService) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("ghost@x.com", "anything", False))
        with pytest.raises(RateLimitedError):
            run(service.login("ghost@x.com", "anything", False))

    def test_disabled_account(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        stylist = store.find_by_email_or_username("stylist")
        store.set_active(stylist.id, False)
        with pytest.raises(AccountDisabledError) as excinfo:
            run(service.login("stylist", EMPLOYEE_PASSWORD, False))
        assert "disabled" in str(excinfo.value).lower()
        assert len(service.rate_limiter.attempts("stylist")) == 1
        assert service.state is SessionState.anonymous

    def test_login_upgrades_weak_hash(self, store: MemoryCredentialStore, settings: Settings) -> None:
        stronger = AuthSessionService(store, settings, hasher=PasswordHasher(rounds=5))
        admin_id = store.find_by_email_or_username("admin").id
        assert store.get_by_id(admin_id).hashed_password.split("$")[2] == "04"
        run(stronger.login("admin", ADMIN_PASSWORD, False))
        upgraded = store.get_by_id(admin_id).hashed_password
        assert upgraded.split("$")[2] == "05"
        assert stronger.hasher.verify(ADMIN_PASSWORD, upgraded)
        assert run(stronger.login("admin", ADMIN_PASSWORD, False)).identity.id == admin_id

    def test_login_keeps_current_hash(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        before = store.find_by_email_or_username("admin").hashed_password
        run(service.login("admin", ADMIN_PASSWORD, False))
        assert store.find_by_email_or_username("admin").hashed_password == before


class TestLockout:
    def test_sixth_attempt_locked_even_with_correct_password(self, service: AuthSessionService) -> None:
        _register_e1(service)
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("e1@x.com", "wrongpw", False))
        with pytest.raises(RateLimitedError) as excinfo:
            run(service.login("e1@x.com", "Abcdef1!", False))
        assert excinfo.value.minutes == 15
        assert "15 minutes" in str(excinfo.value)

    def test_locked_login_does_not_touch_store(self, service: AuthSessionService, monkeypatch) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("admin", "wrongpw", False))

        def boom(identifier):
            raise AssertionError("store consulted while locked")

        monkeypatch.setattr(service.store, "find_by_email_or_username", boom)
        with pytest.raises(RateLimitedError):
            run(service.login("admin", ADMIN_PASSWORD, False))

    def test_remaining_minutes_round_up(self, service: AuthSessionService, clock: FakeClock) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("admin", "wrongpw", False))
        clock.advance(minutes=3, seconds=30)
        with pytest.raises(RateLimitedError) as excinfo:
            run(service.login("admin", ADMIN_PASSWORD, False))
        assert excinfo.value.minutes == 12

    def test_lockout_expires(self, service: AuthSessionService, clock: FakeClock) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("admin", "wrongpw", False))
        clock.advance(minutes=15)
        assert run(service.login("admin", ADMIN_PASSWORD, False)).identity.username == "admin"

    def test_success_resets_failures(self, service: AuthSessionService) -> None:
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("admin", "wrongpw", False))
        run(service.login("admin", ADMIN_PASSWORD, False))
        assert service.rate_limiter.is_blocked("admin") is False
        assert service.rate_limiter.attempts("admin") == []
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("admin", "wrongpw", False))
        assert service.rate_limiter.is_blocked("admin") is False

    def test_lockout_is_per_identifier(self, service: AuthSessionService) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(service.login("admin", "wrongpw", False))
        assert run(service.login("manager@beautysalon.com", "Manager123!", False)).identity.role is Role.manager


class TestLogout:
    def test_logout_twice_rotates_twice(self, service: AuthSessionService) -> None:
        initial = service.get_csrf_token()
        run(service.logout())
        first = service.get_csrf_token()
        run(service.logout())
        second = service.get_csrf_token()
        assert len({initial, first, second}) == 3
        assert service.validate_csrf_token(initial) is False
        assert service.validate_csrf_token(second) is True

    def test_logout_clears_session(self, service: AuthSessionService) -> None:
        run(service.login("admin", ADMIN_PASSWORD, False))
        run(service.logout())
        assert service.state is SessionState.logged_out

    def test_logout_with_garbage_refresh_token_succeeds(self, service: AuthSessionService) -> None:
        run(service.logout("not-a-token"))
        assert service.state is SessionState.logged_out

    def test_logout_survives_revocation_failure(self, service: AuthSessionService, monkeypatch) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        before = service.get_csrf_token()

        def broken(claims):
            raise RuntimeError("revocation backend down")

        monkeypatch.setattr(service, "_revoke", broken)
        run(service.logout(result.refresh_token))
        assert service.get_csrf_token() != before
        assert service.state is SessionState.logged_out

    def test_logout_revokes_refresh_token(self, service: AuthSessionService) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        run(service.logout(result.refresh_token))
        with pytest.raises(InvalidTokenError):
            run(service.refresh(result.refresh_token))


class TestVerifySession:
    def test_deactivation_invalidates_live_token(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        registered = _register_e1(service)
        result = run(service.login("e1@x.com", "Abcdef1!", False))
        store.set_active(registered.identity.id, False)
        check = run(service.verify_session(result.access_token))
        assert check.is_valid is False
        assert check.identity is None

    def test_expired_token(self, service: AuthSessionService, clock: FakeClock) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        clock.advance(minutes=30)
        assert run(service.verify_session(result.access_token)).is_valid is False
        assert service.state is SessionState.expired

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_bad_tokens(self, service: AuthSessionService, token) -> None:
        assert run(service.verify_session(token)).is_valid is False

    def test_refresh_token_is_not_a_session(self, service: AuthSessionService) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        assert run(service.verify_session(result.refresh_token)).is_valid is False


class TestRefresh:
    def test_refresh_issues_new_pair(self, service: AuthSessionService, clock: FakeClock) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        clock.advance(minutes=20)
        refreshed = run(service.refresh(result.refresh_token))
        assert refreshed.refresh_token != result.refresh_token
        assert refreshed.access_token != result.access_token
        assert refreshed.identity.id == result.identity.id
        assert run(service.verify_session(refreshed.access_token)).is_valid is True

    def test_refresh_never_grants_remember_me(self, service: AuthSessionService, clock: FakeClock) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, True))
        refreshed = run(service.refresh(result.refresh_token))
        assert (refreshed.expires_at - clock()).total_seconds() == 30 * 60

    def test_refresh_token_is_single_use(self, service: AuthSessionService) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        run(service.refresh(result.refresh_token))
        with pytest.raises(InvalidTokenError):
            run(service.refresh(result.refresh_token))

    def test_refresh_rejects_inactive_identity(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        result = run(service.login("stylist", EMPLOYEE_PASSWORD, False))
        store.set_active(result.identity.id, False)
        with pytest.raises(AccountDisabledError):
            run(service.refresh(result.refresh_token))

    def test_refresh_rejects_access_token(self, service: AuthSessionService) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        with pytest.raises(InvalidTokenError):
            run(service.refresh(result.access_token))

    def test_refresh_after_expiry(self, service: AuthSessionService, clock: FakeClock) -> None:
        result = run(service.login("admin", ADMIN_PASSWORD, False))
        clock.advance(days=7)
        with pytest.raises(InvalidTokenError):
            run(service.refresh(result.refresh_token))

    def test_concurrent_refresh_with_one_token_succeeds_once(self, service: AuthSessionService) -> None:
        """Two refreshes racing on the same token: exactly one gets a new pair."""
        token = run(service.login("admin", ADMIN_PASSWORD, False)).refresh_token

        async def race():
            return await asyncio.gather(service.refresh(token), service.refresh(token), return_exceptions=True)

        outcomes = run(race())
        successes = [o for o in outcomes if not isinstance(o, BaseException)]
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidTokenError)

    def test_token_stays_spent_after_disabled_refresh(
        self, service: AuthSessionService, store: MemoryCredentialStore
    ) -> None:
        result = run(service.login("stylist", EMPLOYEE_PASSWORD, False))
        store.set_active(result.identity.id, False)
        with pytest.raises(AccountDisabledError):
            run(service.refresh(result.refresh_token))
        store.set_active(result.identity.id, True)
        with pytest.raises(InvalidTokenError):
            run(service.refresh(result.refresh_token))


class TestRegister:
    def test_register_returns_identity_without_password(self, service: AuthSessionService) -> None:
        result = _register_e1(service)
        assert result.identity.email == "e1@x.com"
        assert result.identity.hashed_password is None
        assert "hashed_password" not in repr(result.identity)
        assert result.access_token is None

    def test_registered_identity_can_log_in(self, service: AuthSessionService) -> None:
        _register_e1(service)
        assert run(service.login("E1@X.COM", "Abcdef1!", False)).identity.username == "e1user"

    def test_invalid_email(self, service: AuthSessionService) -> None:
        with pytest.raises(ValidationError):
            run(service.register(Registration(email="not-an-email", username="e1user", password="Abcdef1!")))

    def test_weak_password_lists_reasons(self, service: AuthSessionService) -> None:
        with pytest.raises(ValidationError) as excinfo:
            run(service.register(Registration(email="e1@x.com", username="e1user", password="weak")))
        assert len(excinfo.value.errors) == 4

    @pytest.mark.parametrize(
        "email,username",
        [("ADMIN@beautysalon.com", "newuser"), ("new@x.com", "ADMIN"), ("new@x.com", "admin@beautysalon.com")],
    )
    def test_duplicates(self, service: AuthSessionService, email: str, username: str) -> None:
        with pytest.raises((DuplicateIdentityError, ValidationError)):
            run(service.register(Registration(email=email, username=username, password="Abcdef1!")))

    def test_duplicate_email_error_class(self, service: AuthSessionService) -> None:
        with pytest.raises(DuplicateIdentityError):
            run(service.register(Registration(email="Admin@BeautySalon.com", username="newuser", password="Abcdef1!")))

    def test_self_service_is_employee(self, service: AuthSessionService) -> None:
        assert _register_e1(service).identity.role is Role.employee

    def test_self_service_cannot_request_admin(self, service: AuthSessionService) -> None:
        with pytest.raises(PermissionDeniedError):
            run(
                service.register(
                    Registration(email="e1@x.com", username="e1user", password="Abcdef1!", role=Role.admin)
                )
            )

    def test_self_service_can_be_disabled(self, store: MemoryCredentialStore, settings: Settings, hasher) -> None:
        closed = AuthSessionService(store, settings.model_copy(update={"self_registration_enabled": False}), hasher=hasher)
        with pytest.raises(PermissionDeniedError):
            _register_e1(closed)

    def test_first_identity_bootstraps_admin(self, settings: Settings, hasher) -> None:
        service = AuthSessionService(MemoryCredentialStore(), settings, hasher=hasher)
        assert _register_e1(service).identity.role is Role.admin
        second = run(service.register(Registration(email="e2@x.com", username="e2user", password="Abcdef1!")))
        assert second.identity.role is Role.employee

    def test_manager_grants_up_to_own_role(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        manager = store.find_by_email_or_username("manager")
        granted = run(
            service.register(
                Registration(email="m2@x.com", username="m2user", password="Abcdef1!", role=Role.manager),
                created_by=manager,
            )
        )
        assert granted.identity.role is Role.manager
        with pytest.raises(PermissionDeniedError):
            run(
                service.register(
                    Registration(email="a2@x.com", username="a2user", password="Abcdef1!", role=Role.admin),
                    created_by=manager,
                )
            )

    def test_employee_cannot_create_accounts(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        stylist = store.find_by_email_or_username("stylist")
        with pytest.raises(PermissionDeniedError):
            run(service.register(Registration(email="e1@x.com", username="e1user", password="Abcdef1!"), created_by=stylist))

    def test_sql_store_end_to_end(self, settings: Settings, hasher) -> None:
        store = SqlCredentialStore("sqlite:///file:test_service_sql?mode=memory&cache=shared&uri=true")
        try:
            service = AuthSessionService(store, settings, hasher=hasher)
            registered = _register_e1(service)
            result = run(service.login("e1user", "Abcdef1!", False))
            assert run(service.verify_session(result.access_token)).identity.id == registered.identity.id
            store.set_active(registered.identity.id, False)
            assert run(service.verify_session(result.access_token)).is_valid is False
        finally:
            store.close()


class TestAdministration:
    def test_admin_deactivates_and_reactivates(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        admin = store.find_by_email_or_username("admin")
        stylist = store.find_by_email_or_username("stylist")
        updated = run(service.set_active(stylist.id, False, changed_by=admin))
        assert updated.is_active is False
        assert updated.hashed_password is None
        assert run(service.set_active(stylist.id, True, changed_by=admin)).is_active is True

    def test_non_admin_cannot_deactivate(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        manager = store.find_by_email_or_username("manager")
        stylist = store.find_by_email_or_username("stylist")
        with pytest.raises(PermissionDeniedError):
            run(service.set_active(stylist.id, False, changed_by=manager))

    def test_admin_cannot_deactivate_self(self, service: AuthSessionService, store: MemoryCredentialStore) -> None:
        admin = store.find_by_email_or_username("admin")
        with pytest.raises(PermissionDeniedError):
            run(service.set_active(admin.id, False, changed_by=admin))

    def test_require_role_ordering(self, store: MemoryCredentialStore) -> None:
        manager = store.find_by_email_or_username("manager")
        require_role(manager, Role.employee)
        require_role(manager, Role.manager)
        with pytest.raises(PermissionDeniedError):
            require_role(manager, Role.admin)


class TestInternalErrors:
    def test_store_failure_is_generic(self, service: AuthSessionService, monkeypatch) -> None:
        def down(identifier):
            raise ConnectionError("db host unreachable at 10.0.0.5:5432")

        monkeypatch.setattr(service.store, "find_by_email_or_username", down)
        with pytest.raises(InternalAuthError) as excinfo:
            run(service.login("admin", ADMIN_PASSWORD, False))
        assert "10.0.0.5" not in str(excinfo.value)
        assert service.state is SessionState.anonymous

"""
tests/conftest.py -- Shared fixtures for the salon auth core tests.

This module provides:
  - FakeClock / clock: controllable time for tokens and the rate limiter,
    so lockout and expiry tests never sleep
  - settings: explicit test Settings (bcrypt cost 4, non-secure cookies)
  - store / service: AuthSessionService over a seeded MemoryCredentialStore
  - run(): drive the async service API from plain sync tests
  - api_client: TestClient over create_app() sharing the same service

The DEBUG env var is set before any auth/api import so get_settings() (used
by the slowapi limit provider) auto-generates keys instead of raising.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import create_app
from auth.models import Identity, Role
from auth.passwords import PasswordHasher
from auth.service import AuthSessionService
from auth.store import MemoryCredentialStore
from core.config import Settings

ADMIN_PASSWORD = "Admin123!"
MANAGER_PASSWORD = "Manager123!"
EMPLOYEE_PASSWORD = "Employee1!"


class FakeClock:
    """Callable clock returning a fixed, manually advanced UTC instant."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def run(coro):
    """Run one service coroutine to completion."""
    return asyncio.run(coro)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        secret_key="test-access-signing-key-0123456789abcdef",
        refresh_secret_key="test-refresh-signing-key-0123456789abcdef",
        bcrypt_rounds=4,
        secure_cookies=False,
    )


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def store(hasher: PasswordHasher) -> MemoryCredentialStore:
    """Memory store seeded with one active identity per role."""
    return MemoryCredentialStore(
        [
            Identity(
                email="admin@beautysalon.com",
                username="admin",
                first_name="Admin",
                last_name="User",
                role=Role.admin,
                hashed_password=hasher.hash(ADMIN_PASSWORD),
            ),
            Identity(
                email="manager@beautysalon.com",
                username="manager",
                first_name="Manager",
                last_name="User",
                role=Role.manager,
                hashed_password=hasher.hash(MANAGER_PASSWORD),
            ),
            Identity(
                email="stylist@beautysalon.com",
                username="stylist",
                first_name="Sofia",
                last_name="Ruiz",
                role=Role.employee,
                hashed_password=hasher.hash(EMPLOYEE_PASSWORD),
            ),
        ]
    )


@pytest.fixture
def service(store: MemoryCredentialStore, settings: Settings, hasher: PasswordHasher, clock: FakeClock) -> AuthSessionService:
    return AuthSessionService(store, settings, hasher=hasher, clock=clock)


@pytest.fixture(autouse=True)
def _reset_http_limiter() -> Generator[None, None, None]:
    """Each test starts with an empty per-IP counter store."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def api_client(service: AuthSessionService, settings: Settings) -> Generator[TestClient, None, None]:
    """TestClient over the real app factory and the shared service fixture.

    Tokens are stamped by the service's FakeClock, so they keep verifying
    until a test advances the clock past their expiry.
    """
    app = create_app(service, settings)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

"""
tests/conftest.py -- Shared test fixtures for AuthCore unit and integration tests.

This module provides:
  - make_settings(): Settings with fixed secrets and bcrypt cost 4
  - memory_store(): isolated named shared-memory SQLite UserStore
  - FakeClock: injectable clock for token and rotation tests
  - services: store + every auth service wired together (unit tests)
  - api_app / client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and ALLOWED_HOSTS must be set before any api/ import: api/main.py reads
get_settings() at import time to configure SessionMiddleware and
TrustedHostMiddleware, and TestClient sends Host: testserver.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate the signing secrets in dev mode instead of raising.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_services
from auth.credentials import CredentialAuthenticator
from auth.flow import LoginFlow
from auth.mfa import MFAEnrollment
from auth.models import User
from auth.passwords import PasswordHasher
from auth.rotation import RefreshRotator
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings

ALICE_PASSWORD = "alice-password-1"
BOB_PASSWORD = "bob-password-1"
ADMIN_PASSWORD = "admin-password-1"

# Fixed base32 secret so tests can compute valid TOTP codes.
BOB_TOTP_SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
BOB_BACKUP_CODES = ["A1B2C3D4", "E5F6A7B8", "C9D0E1F2"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Settings with deterministic secrets and the cheapest bcrypt cost."""
    values = {
        "debug": True,
        "access_token_secret": "a" * 40,
        "refresh_token_secret": "r" * 40,
        "session_secret": "s" * 40,
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


def memory_store(name: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    A random suffix keeps two stores created with the same name apart.
    """
    return UserStore(f"sqlite:///file:authcore_{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


class FakeClock:
    """A settable clock. Call advance() to move time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class Services:
    settings: Settings
    store: UserStore
    tokens: TokenService
    hasher: PasswordHasher
    credentials: CredentialAuthenticator
    mfa: MFAEnrollment
    flow: LoginFlow
    rotator: RefreshRotator


def build_services(store: UserStore, settings: Settings | None = None, clock=None) -> Services:
    settings = settings or make_settings()
    tokens = TokenService(settings, clock=clock) if clock else TokenService(settings)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    credentials = CredentialAuthenticator(store, hasher, tokens, default_role=settings.default_role)
    mfa = MFAEnrollment(issuer=settings.mfa_issuer_name, backup_code_count=settings.mfa_backup_code_count)
    return Services(
        settings=settings,
        store=store,
        tokens=tokens,
        hasher=hasher,
        credentials=credentials,
        mfa=mfa,
        flow=LoginFlow(credentials, mfa, store),
        rotator=RefreshRotator(store, tokens),
    )


def enable_mfa(store: UserStore, user: User, secret: str = BOB_TOTP_SECRET, codes: list[str] | None = None) -> User:
    """Put a user into the enrolled-and-verified MFA state directly."""
    codes = BOB_BACKUP_CODES if codes is None else codes
    hashed = [MFAEnrollment.hash_backup_code(c) for c in codes]
    assert store.begin_mfa_enrollment(user.id, secret, hashed)
    assert store.mark_mfa_verified(user.id, secret)
    return store.get_by_id(user.id)


def seed_users(credentials: CredentialAuthenticator, store: UserStore) -> dict[str, User]:
    """alice: plain user; bob: user with MFA; root: admin."""
    alice = credentials.register("alice@example.com", "alice", ALICE_PASSWORD)
    bob = credentials.register("bob@example.com", "bob", BOB_PASSWORD)
    bob = enable_mfa(store, bob)
    root = credentials.register("root@example.com", "root", ADMIN_PASSWORD, role="admin")
    return {"alice": alice, "bob": bob, "root": root}


# ---------------------------------------------------------------------------
# Function-scoped fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Every test starts with empty rate-limit counters."""
    limiter.reset()
    yield


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = memory_store("unit")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def services(store: UserStore, clock: FakeClock) -> Services:
    return build_services(store, clock=clock)


# ---------------------------------------------------------------------------
# Integration fixtures -- one app wiring per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and test Settings into app.state so TestClient
    routes see an isolated DB rather than authcore.db.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, settings, store)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_app() -> Generator[tuple[TestClient, dict[str, User]], None, None]:
    """Yield (client, users) with alice, bob (MFA) and root (admin) seeded."""
    settings = make_settings()
    user_store = memory_store("api")
    seeded = build_services(user_store, settings)
    users = seed_users(seeded.credentials, user_store)

    app.router.lifespan_context = _patch_lifespan(settings, user_store)

    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client, users

    user_store.close()


@pytest.fixture
def client(api_app: tuple[TestClient, dict[str, User]]) -> TestClient:
    """The module's TestClient with an empty cookie jar.

    Login responses set access/refresh cookies; clearing them keeps one
    test's session from authenticating the next test's requests.
    """
    test_client, _users = api_app
    test_client.cookies.clear()
    return test_client


@pytest.fixture
def users(api_app: tuple[TestClient, dict[str, User]]) -> dict[str, User]:
    return api_app[1]

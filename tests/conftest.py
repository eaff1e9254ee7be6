"""
tests/conftest.py -- Shared test fixtures for the SRP auth server.

This module provides:
  - FakeClock / clock: controllable time source for TTL tests
  - FakeCaptcha / captcha: records calls, answers from a flag
  - settings: debug Settings with a fixed secret
  - credentials / sessions: isolated in-memory stores
  - service: AuthenticationService wired from the above
  - srp_params: the parameter set the service uses (for the test client)
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
credential store behind TestClient because route handlers run in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. The ephemeral store is a single sqlite3 connection
with check_same_thread=False, so plain :memory: is fine there.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CAPTCHA_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_auth_service
from auth.service import AuthenticationService
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from cache.store import EphemeralStore
from core.config import Settings
from core.srp import SRPEngine, SRPParameters

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"


class FakeClock:
    """Starts at the real wall clock so JWT exp checks (which use real time) still pass."""

    def __init__(self) -> None:
        self.now = float(int(time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCaptcha:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: list[tuple[str, str | None]] = []

    def verify(self, token: str, remote_ip: str | None = None) -> bool:
        self.calls.append((token, remote_ip))
        return self.result


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def captcha() -> FakeCaptcha:
    return FakeCaptcha()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        captcha_enabled=False,
        jwt_access_expires_in="15m",
        jwt_refresh_expires_in="7d",
        srp_hash="sha512",
    )


@pytest.fixture
def srp_params(settings: Settings) -> SRPParameters:
    return SRPParameters(hash_name=settings.srp_hash)


@pytest.fixture
def credentials() -> Generator[CredentialStore, None, None]:
    store = CredentialStore(f"sqlite:///file:creds_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield store
    store.close()


@pytest.fixture
def sessions(clock: FakeClock) -> Generator[EphemeralStore, None, None]:
    store = EphemeralStore(":memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def tokens(settings: Settings, sessions: EphemeralStore, clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(settings, sessions, clock=clock)


@pytest.fixture
def service(settings, credentials, sessions, tokens, captcha, clock, srp_params) -> AuthenticationService:
    return AuthenticationService(
        settings,
        credentials=credentials,
        sessions=sessions,
        engine=SRPEngine(srp_params),
        tokens=tokens,
        captcha=captcha,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(credentials: CredentialStore, sessions: EphemeralStore, settings: Settings, captcha):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated stores rather than the on-disk databases, and a fake CAPTCHA
    so no request leaves the process.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credentials = credentials
        app.state.sessions = sessions
        app.state.auth_service = build_auth_service(settings, credentials, sessions, captcha=captcha)
        yield

    return test_lifespan


@pytest.fixture
def api_client(settings, captcha) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with in-memory stores.

    Rate limiting is switched off: the suite makes many auth calls from the
    same client address.
    """
    credentials = CredentialStore(f"sqlite:///file:api_creds_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    sessions = EphemeralStore(":memory:")

    app.router.lifespan_context = _patch_lifespan(credentials, sessions, settings, captcha)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    limiter.enabled = True
    sessions.close()
    credentials.close()

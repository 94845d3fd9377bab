"""
tests/conftest.py -- Shared test fixtures for AuthGate unit and integration tests.

This module provides:
  - make_settings(): Settings for tests, isolated from any local .env file
  - FakeClock: a settable clock for TokenSigner / AuthService expiry tests
  - _patch_lifespan(): wires test settings into app.state, bypassing real startup
  - api_client: TestClient over the real app and a fresh SQLite database
  - memory_service: AuthService over the in-memory stores, bcrypt cost 4

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables must be set before any api/ import: the limiter reads
RATE_LIMIT_ENABLED and api/main.py reads ALLOWED_HOSTS at import time, and
DEBUG lets get_settings() generate a SECRET_KEY instead of raising.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any api/ or core/ import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_auth_state
from auth.hashing import CredentialHasher
from auth.memory import MemoryIdentityDirectory, MemoryRefreshTokenStore
from auth.service import AuthService
from auth.tokens import TokenSigner
from core.config import Settings

TEST_SECRET_KEY = "test-secret-key-that-is-at-least-32-characters-long"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(db_suffix: str = "api", **overrides) -> Settings:
    """Build Settings for a test without reading .env from the working directory.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    values = {
        "debug": True,
        "secret_key": TEST_SECRET_KEY,
        "database_url": f"sqlite:///file:test_authgate_{db_suffix}?mode=memory&cache=shared&uri=true",
        "bcrypt_cost": 4,
        "sweep_interval_seconds": 0,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _patch_lifespan(settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Runs the same init_auth_state() wiring as production, but with the
    test settings, and skips the background sweep task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth_state(app, settings)
        yield
        app.state.engine.dispose()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient for the real app over a per-module SQLite database.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real middleware, route handlers and stores.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    app.router.lifespan_context = _patch_lifespan(make_settings(suffix))

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(cost=4)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signer(clock: FakeClock) -> TokenSigner:
    return TokenSigner(TEST_SECRET_KEY, access_ttl_seconds=900, clock=clock)


@pytest.fixture
def directory() -> MemoryIdentityDirectory:
    return MemoryIdentityDirectory()


@pytest.fixture
def tokens() -> MemoryRefreshTokenStore:
    return MemoryRefreshTokenStore()


@pytest.fixture
def memory_service(
    directory: MemoryIdentityDirectory,
    tokens: MemoryRefreshTokenStore,
    hasher: CredentialHasher,
    signer: TokenSigner,
) -> AuthService:
    """AuthService over the in-memory stores with a 7-day refresh TTL."""
    return AuthService(directory, tokens, hasher, signer, refresh_ttl_seconds=7 * 24 * 3600)

"""
tests/conftest.py -- Shared test fixtures for authcore.

This module provides:
  - settings: a Settings instance with a fixed signing key
  - engine / user_store / token_store: an isolated in-memory database per test
  - email_sender: a MagicMock standing in for the outbound email port
  - service: an AuthService wired around the fixtures above
  - make_user: helper that stores a user with a bcrypt-hashed password
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each test gets its own name so state never leaks between tests.

DEBUG and RATE_LIMIT_ENABLED must be set before any project import:
get_settings() is read at import time by api/ and would otherwise refuse to
start without SECRET_KEY, and the login limit would trip mid-suite.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/api/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.models import User
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import TokenStore, UserStore, create_db_engine
from core.config import Settings

TEST_SECRET = "test-secret-key-for-authcore-0123456789abcdef"


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(secret_key=TEST_SECRET, rate_limit_enabled=False, app_base_url="http://testserver")


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    eng = create_db_engine(url)
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def token_store(engine: Engine) -> TokenStore:
    return TokenStore(engine)


@pytest.fixture
def make_user(user_store: UserStore):
    """Return a helper that inserts a user with a real bcrypt hash and returns the stored record."""

    def _make(email: str = "alice@example.com", password: str = "password1", **fields) -> User:
        user_id = user_store.create_user(User(email=email, hashed_password=hash_password(password), **fields))
        return user_store.get_by_id(user_id)

    return _make


@pytest.fixture
def email_sender() -> MagicMock:
    return MagicMock()


@pytest.fixture
def service(settings: Settings, user_store: UserStore, token_store: TokenStore, email_sender: MagicMock) -> AuthService:
    return AuthService.from_stores(settings, user_store, token_store, email_sender)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService, oauth: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test AuthService and a mocked OAuth registry into app.state so
    routes hit isolated stores and never call Google.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.oauth = oauth
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def oauth_registry() -> MagicMock:
    return MagicMock()


@pytest.fixture
def api_client(service: AuthService, oauth_registry: MagicMock) -> Generator[TestClient, None, None]:
    """TestClient over the real app, with follow_redirects=False for OAuth redirect assertions."""
    app.router.lifespan_context = _patch_lifespan(service, oauth_registry)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=False) as client:
        yield client

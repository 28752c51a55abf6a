"""
tests/conftest.py -- Shared test fixtures for Shieldgate integration tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory user store
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient plus a registered credential user, for JSON endpoints
  - web_client: TestClient with follow_redirects=False for page and guard tests
  - store: a private in-memory UserStore for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# Lowest cost bcrypt accepts; hashing runs on every sign-up and sign-in test.
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password

# A password that satisfies every rule of the sign-up policy.
PASSWORD = "Str0ng!Passw0rd#1"

# Tests sign in far more often than SIGNIN_RATE_LIMIT allows. test_rate_limit
# switches the limiter back on for its own cases.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Label for the DB name (e.g. 'api', 'web'). A random tail
                   keeps modules that reuse a fixture from sharing rows.
    """
    name = f"test_auth_{db_suffix}_{uuid.uuid4().hex[:8]}"
    return UserStore(db_url=f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def _create_user(store: UserStore, email: str, name: str) -> User:
    uid = store.create_user(User(email=email, username=name, hashed_password=hash_password(PASSWORD)))
    return store.get_by_id(uid)


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    The OAuth registry is a MagicMock so no test reaches a real provider.
    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore, User], None, None]:
    """Yield (client, store, user) for JSON endpoint tests.

    user is a credential account whose password is PASSWORD.
    """
    user_store = _make_test_store("api")
    user = _create_user(user_store, "api-user@example.com", "API User")

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, user

    user_store.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, UserStore, User], None, None]:
    """Yield (client, store, user) for page and route guard tests.

    follow_redirects=False is essential here: we assert on redirect
    *locations*, which are invisible once the client follows the redirect.
    """
    user_store = _make_test_store("web")
    user = _create_user(user_store, "web-user@example.com", "Web User")

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store, user

    user_store.close()


@pytest.fixture(autouse=True)
def _reset_client_cookies(request) -> Generator[None, None, None]:
    """Sign the shared module clients out after every test."""
    yield
    for name in ("api_client", "web_client"):
        if name in request.fixturenames:
            request.getfixturevalue(name)[0].cookies.clear()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """A private in-memory UserStore for unit tests."""
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()

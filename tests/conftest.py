"""
tests/conftest.py -- Shared test fixtures for TierGate tests.

This module provides:
  - store: a fresh in-memory UserStore per test (unit tests)
  - make_user: factory that inserts a user and returns the stored record
  - _make_test_store(): named shared-memory DB for integration tests
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: module-scoped (TestClient, UserStore) for HTTP integration tests
  - api_user: factory inserting users into the integration store
  - bearer: builds an Authorization header for a user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any auth/core import so
get_settings() sees them: DEBUG auto-generates both signing secrets, the
Google credentials enable the provider, rate limits are switched off, and
"testserver" (TestClient's Host) is an allowed host.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-google-client-secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import create_access_token

_counter = itertools.count()


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


def _insert_user(store: UserStore, role: Role = Role.FREE, **fields) -> User:
    n = next(_counter)
    fields.setdefault("email", f"user{n}@example.com")
    fields.setdefault("display_name", f"User {n}")
    user_id = store.create_user(User(role=role, **fields))
    return store.get_by_id(user_id)


@pytest.fixture
def make_user(store: UserStore):
    """Return a factory: make_user(role=Role.FREE, **fields) -> stored User."""

    def _make(role: Role = Role.FREE, **fields) -> User:
        return _insert_user(store, role, **fields)

    return _make


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules don't
                   share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore, oauth_registry):
    """Return an async context manager that replaces the real lifespan.

    The cleanup task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.oauth = oauth_registry
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def oauth_registry() -> MagicMock:
    return MagicMock()


@pytest.fixture(scope="module")
def api_client(request, oauth_registry) -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, store) backed by an isolated shared-memory DB for this module."""
    user_store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(user_store, oauth_registry)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store

    user_store.close()


@pytest.fixture
def api_user(api_client):
    """Factory inserting a user into the integration store: api_user(role=Role.FREE, **fields)."""
    _client, user_store = api_client

    def _make(role: Role = Role.FREE, **fields) -> User:
        return _insert_user(user_store, role, **fields)

    return _make


@pytest.fixture
def bearer():
    """Return a function building an Authorization header with a fresh access token for a user."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers

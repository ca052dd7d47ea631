"""
tests/conftest.py -- Shared test fixtures for the LMS auth service.

This module provides:
  - user_store / session_store / service: isolated stores on a per-test
    SQLite file plus an AuthService wired to them
  - make_user: factory that inserts users straight into the store
  - bearer: build an Authorization header for a stored user
  - client: TestClient over the real app with a patched lifespan

Design: each test gets its own SQLite file under tmp_path. A file (rather
than :memory:) is shared correctly by every connection in the pool, which
matters because TestClient runs sync route handlers in a thread pool.

Environment must be set before any auth/core import: get_settings() is read
at module load by auth.tokens, auth.passwords and api.main.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: set before importing application code.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef01234567")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789abcdef01234567")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.passwords import hash_password
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import create_access_token

# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture()
def user_store(db_url: str) -> Generator[UserStore, None, None]:
    store = UserStore(db_url)
    yield store
    store.close()


@pytest.fixture()
def session_store(db_url: str) -> Generator[SessionStore, None, None]:
    store = SessionStore(db_url, max_age_seconds=24 * 3600)
    yield store
    store.close()


@pytest.fixture()
def service(user_store: UserStore, session_store: SessionStore) -> AuthService:
    return AuthService(user_store, session_store)


@pytest.fixture()
def make_user(user_store: UserStore) -> Callable[..., User]:
    """Insert a user directly. password=None creates an OAuth-only account."""

    def _make(
        email: str = "user@example.com",
        name: str = "Test User",
        role: str = "student",
        password: str | None = "Str0ng!Pass",
        **fields,
    ) -> User:
        return user_store.insert(
            User(
                email=email,
                name=name,
                role=role,
                password_hash=hash_password(password) if password else None,
                **fields,
            )
        )

    return _make


def bearer(user: User) -> dict[str, str]:
    """Authorization header carrying a fresh access token for user."""
    token = create_access_token({"id": user.id, "email": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_header() -> Callable[[User], dict[str, str]]:
    return bearer


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, session_store: SessionStore):
    """Return a lifespan that wires the test stores into app.state.

    The OAuth registry is a MagicMock so no test reaches Google. Tests that
    exercise the callback configure app.state.oauth.create_client.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.oauth = MagicMock()
        app.state.auth_service = AuthService(user_store, session_store)
        yield

    return test_lifespan


@pytest.fixture()
def client(user_store: UserStore, session_store: SessionStore) -> Generator[TestClient, None, None]:
    """TestClient over the real app and isolated stores.

    follow_redirects=False so the Google redirect can be asserted on.
    """
    app.router.lifespan_context = _patch_lifespan(user_store, session_store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as test_client:
        yield test_client

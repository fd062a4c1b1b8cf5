"""
tests/conftest.py -- Shared test fixtures for VPlan unit and integration tests.

This module provides:
  - memory_engine(): engine on an isolated named in-memory SQLite DB
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client: TestClient with the debug auth provider (test/passwd)
  - db_client: TestClient with the database auth provider and one seeded user
  - reset_limiter (autouse): clears slowapi counters so tests do not share buckets

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and AUTH_PROVIDER must be set before any project import so
get_settings() auto-generates SECRET_KEY and accepts the debug provider.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

# CRITICAL: Set env before any project import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("AUTH_PROVIDER", "debug")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import build_state
from asgi import app
from auth.models import Credential
from auth.providers import AuthProvider, DatabaseAuthProvider
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.config import get_settings
from core.database import create_db_engine

DB_USER = "mueller"
DB_PASSWORD = "geheim-123"
DB_GROUP = "teachers"

# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def memory_engine(name: str) -> Engine:
    """Engine on a named shared-memory SQLite DB.

    Args:
        name: appended to the DB name so test modules don't share state.
    """
    return create_db_engine(f"sqlite:///file:test_{name}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(engine: Engine, auth_provider: Optional[AuthProvider] = None):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, get_settings(), engine, auth_provider=auth_provider)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_limiter() -> None:
    limiter.reset()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """A fresh, empty in-memory database per test."""
    eng = memory_engine(f"unit_{uuid.uuid4().hex}")
    yield eng
    eng.dispose()


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """TestClient for the real app with the debug provider (test/passwd).

    One client per test module; follow_redirects=False so web route tests can
    assert on redirect locations. Tests that log in with a cookie session must
    clear client.cookies afterwards.
    """
    eng = memory_engine(f"api_{uuid.uuid4().hex}")
    app.router.lifespan_context = _patch_lifespan(eng)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client

    eng.dispose()


@pytest.fixture(scope="module")
def db_client() -> Generator[TestClient, None, None]:
    """TestClient backed by the database provider with one active user."""
    eng = memory_engine(f"db_{uuid.uuid4().hex}")
    store = CredentialStore(eng)
    store.create_user(Credential(username=DB_USER, hashed_password=hash_password(DB_PASSWORD), group=DB_GROUP))
    app.router.lifespan_context = _patch_lifespan(eng, auth_provider=DatabaseAuthProvider(store))

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client

    eng.dispose()

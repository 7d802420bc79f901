"""
tests/conftest.py -- Shared test fixtures for the user management service.

This module provides:
  - store:      an isolated named shared-memory AccountStore
  - seeded:     two tenants, each with one Admin and one User (password
                "password123"); returns their ids
  - scopes:     the Scope of each seeded account
  - headers:    factory for a bearer Authorization header per seeded account
  - api_client: TestClient wired to the store and a roomy throttle

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Account, Role, Scope
from auth.service import AccountService
from auth.store import AccountStore
from auth.tokens import create_access_token, hash_password
from core.throttle import FixedWindowThrottle

PASSWORD = "password123"

# Hashed once: bcrypt is deliberately slow and every fixture seeds four rows.
_PASSWORD_HASH = hash_password(PASSWORD)


def _make_store() -> AccountStore:
    """Create an isolated named shared-memory store."""
    return AccountStore(f"sqlite:///file:test_accounts_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


@dataclass
class Seeded:
    """Ids of the four seeded accounts."""

    admin1: int
    user1: int
    admin2: int
    user2: int


def _seed_accounts(store: AccountStore) -> Seeded:
    """Tenant 1: admin1 (Admin), user1 (User). Tenant 2: admin2, user2."""
    ids = {}
    for username, role, tenant in (
        ("admin1", Role.ADMIN, 1),
        ("user1", Role.USER, 1),
        ("admin2", Role.ADMIN, 2),
        ("user2", Role.USER, 2),
    ):
        ids[username] = store.insert(
            Account(
                username=username,
                role=role,
                tenant_id=tenant,
                password_hash=_PASSWORD_HASH,
                created_by="seed",
                created_at="2026-01-01T00:00:00+00:00",
            )
        )
    return Seeded(**ids)


_SCOPES = {
    "admin1": Scope(subject="admin1", tenant_id=1, role=Role.ADMIN),
    "user1": Scope(subject="user1", tenant_id=1, role=Role.USER),
    "admin2": Scope(subject="admin2", tenant_id=2, role=Role.ADMIN),
    "user2": Scope(subject="user2", tenant_id=2, role=Role.USER),
}


def _auth_header(username: str) -> dict[str, str]:
    token = create_access_token(_SCOPES[username], expire_seconds=3600)
    return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(store: AccountStore, throttle: FixedWindowThrottle):
    """Return a lifespan that wires the test store and throttle into app.state.

    The sweep_task is a long-sleeping coroutine so shutdown can cancel a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.account_service = AccountService(store)
        app.state.throttle = throttle
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = _make_store()
    yield s
    s.close()


@pytest.fixture
def seeded(store: AccountStore) -> Seeded:
    return _seed_accounts(store)


@pytest.fixture
def scopes() -> dict[str, Scope]:
    """Scope of each seeded account, keyed by username."""
    return dict(_SCOPES)


@pytest.fixture
def headers() -> Callable[[str], dict[str, str]]:
    """Return a factory: headers("admin1") -> {"Authorization": "Bearer ..."}."""
    return _auth_header


@pytest.fixture
def throttle() -> FixedWindowThrottle:
    """Roomy enough that ordinary route tests never trip it."""
    return FixedWindowThrottle(limit=50, window_seconds=60)


@pytest.fixture
def api_client(
    store: AccountStore, seeded: Seeded, throttle: FixedWindowThrottle
) -> Generator[tuple[TestClient, Seeded], None, None]:
    """Yield (client, seeded ids) for API integration tests."""
    app.router.lifespan_context = _patch_lifespan(store, throttle)
    limiter.reset()
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, seeded

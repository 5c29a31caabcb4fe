"""
tests/conftest.py -- Shared test fixtures for Nevi integration tests.

This module provides:
  - FakeMailer: records password-reset mails instead of sending them
  - _make_test_records(): isolated named shared-memory SQLite record store
  - _seed_users(): alice (no MFA) and mallory (MFA required)
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - app_env: module-scoped TestClient plus the objects behind it
  - client: the same TestClient with an empty cookie jar for each test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

DEBUG and ALLOWED_HOSTS must be set before any application import so
get_settings() sees them (TestClient sends Host: testserver).
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import wire_services
from asgi import app
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from store.records import RecordStore

ALICE_PASSWORD = "correct-horse"
MALLORY_PASSWORD = "battery-staple"


class FakeMailer:
    """Mailer double. Set fail=True to make the next sends raise."""

    def __init__(self) -> None:
        self.sent: list[tuple[User, str]] = []
        self.fail = False

    async def send_password_reset(self, user: User, token: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.sent.append((user, token))


@dataclass
class AppEnv:
    client: TestClient
    records: RecordStore
    users: UserStore
    mailer: FakeMailer
    user_ids: dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_records(db_suffix: str) -> RecordStore:
    """Create an isolated named shared-memory SQLite record store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'web').
    """
    return RecordStore(f"sqlite:///file:test_nevi_{db_suffix}?mode=memory&cache=shared&uri=true")


def _seed_users(users: UserStore) -> dict[str, int]:
    return {
        "alice": users.create_user(
            User(
                username="alice",
                password_hash=hash_password(ALICE_PASSWORD),
                email="alice@example.com",
                first_name="Alice",
                last_name="Liddell",
            )
        ),
        "mallory": users.create_user(
            User(
                username="mallory",
                password_hash=hash_password(MALLORY_PASSWORD),
                email="mallory@example.com",
                mfa_required=True,
            )
        ),
    }


def _patch_lifespan(records: RecordStore, mailer: FakeMailer):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, records, mailer)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def app_env(request) -> Generator[AppEnv, None, None]:
    """Yield an AppEnv whose TestClient talks to a fresh, seeded database.

    follow_redirects=False so web tests can assert on redirect locations.
    """
    records = _make_test_records(request.module.__name__.rsplit(".", 1)[-1])
    users = UserStore(records)
    user_ids = _seed_users(users)
    mailer = FakeMailer()

    app.router.lifespan_context = _patch_lifespan(records, mailer)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield AppEnv(
            client=client,
            records=records,
            users=users,
            mailer=mailer,
            user_ids=user_ids,
        )

    records.close()


@pytest.fixture
def client(app_env: AppEnv) -> TestClient:
    """The module's TestClient with no cookies left over from earlier tests."""
    app_env.client.cookies.clear()
    app_env.mailer.fail = False
    return app_env.client


@pytest.fixture
def fake_mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def records() -> Generator[RecordStore, None, None]:
    """Isolated in-memory record store for unit tests.

    Named shared memory for the same reason as the app store: code under test
    may reach the store from a worker thread (asyncio.to_thread).
    """
    store = _make_test_records(f"unit_{uuid.uuid4().hex}")
    yield store
    store.close()

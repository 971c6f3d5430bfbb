"""
tests/conftest.py -- Shared test fixtures and fakes for SocialGate tests.

This module provides:
  - FakeRedis: dict-backed stand-in for redis.Redis (get / setex / delete)
  - CountingUserStore: wraps a UserStore and counts primary-store reads
  - RecordingNotifier / FailingNotifier: notifier doubles for the saga
  - _make_test_stores(): creates isolated in-memory DBs for users + posts
  - has_invitation(): checks for outstanding invitation rows directly in the DB
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api: ApiContext with a TestClient and helpers to mint users and tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any SocialGate import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any SocialGate import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy import text

from api.main import app
from auth.access import AccessController
from auth.models import User
from auth.registration import RegistrationSaga
from auth.store import UserStore
from auth.tokens import TokenAuthenticator, hash_invitation_token, hash_password
from cache.store import IdentityCache, RedisUserCache
from core.ratelimiter import NullRateLimiter
from posts.concurrency import ConcurrencyController
from posts.store import PostStore

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
TEST_ISSUER = "socialgate"
TEST_AUDIENCE = "socialgate"

_db_counter = itertools.count()

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRedis:
    """Dict-backed double for the slice of redis.Redis the cache uses.

    Set fail=True to make every call raise redis.ConnectionError.
    TTLs are recorded but not enforced.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("fake redis is down")

    def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl

    def delete(self, key: str) -> int:
        self._check()
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    def close(self) -> None:
        pass


class CountingUserStore:
    """Delegates to a real UserStore and counts get_by_id calls."""

    def __init__(self, store: UserStore) -> None:
        self._store = store
        self.get_by_id_calls = 0

    def get_by_id(self, user_id: int) -> User | None:
        self.get_by_id_calls += 1
        return self._store.get_by_id(user_id)

    def __getattr__(self, name: str):
        return getattr(self._store, name)


@dataclass
class RecordingNotifier:
    """Succeeds and remembers every invitation it was asked to send."""

    sent: list[tuple[str, str, str]] = field(default_factory=list)

    def send_invitation(self, username: str, email: str, activation_url: str) -> bool:
        self.sent.append((username, email, activation_url))
        return True

    def close(self) -> None:
        pass


class FailingNotifier:
    """Reports failure (or raises, when raise_error is set)."""

    def __init__(self, raise_error: bool = False) -> None:
        self.raise_error = raise_error
        self.attempts = 0

    def send_invitation(self, username: str, email: str, activation_url: str) -> bool:
        self.attempts += 1
        if self.raise_error:
            raise RuntimeError("mail provider unreachable")
        return False

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_db_url(name: str) -> str:
    """Return a unique named shared-memory SQLite URL."""
    return f"sqlite:///file:test_{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[UserStore, PostStore]:
    """Create isolated named shared-memory SQLite stores with roles seeded.

    Args:
        db_suffix: String embedded in the DB name so test modules don't share state.
    """
    url = memory_db_url(db_suffix)
    user_store = UserStore(db_url=url)
    user_store.seed_roles()
    post_store = PostStore(db_url=url)
    return user_store, post_store


def create_user(
    user_store: UserStore,
    username: str,
    role: str = "user",
    password: str = "secret123",
    active: bool = True,
) -> User:
    """Insert a user directly through the store, activated unless active=False."""
    user = User(
        username=username,
        email=f"{username}@example.com",
        role=user_store.get_role(role),
        hashed_password=hash_password(password),
    )
    digest = hash_invitation_token(f"invite-{username}")
    user_store.create_and_invite(user, digest, expire_seconds=3600)
    if active:
        user_store.activate(digest)
        user.is_active = True
    return user


def has_invitation(user_store: UserStore, user_id: int) -> bool:
    """Return True if the user still has an invitation row, expired or not."""
    with user_store.engine.connect() as conn:
        found = conn.execute(
            text("SELECT 1 FROM user_invitations WHERE user_id = :user_id"), {"user_id": user_id}
        ).first()
    return found is not None


def _patch_lifespan(state: dict):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so TestClient routes see
    isolated test DBs and fakes rather than production resources.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; a mock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        for name, value in state.items():
            setattr(app.state, name, value)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    user_store: UserStore
    post_store: PostStore
    authenticator: TokenAuthenticator
    notifier: RecordingNotifier
    redis: FakeRedis

    def token_for(self, user: User, ttl_seconds: int = 3600) -> str:
        return self.authenticator.generate_token(self.authenticator.new_claims(user.id, ttl_seconds))

    def headers_for(self, user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token_for(user)}"}

    def make_user(self, username: str, role: str = "user", active: bool = True) -> User:
        return create_user(self.user_store, username, role=role, active=active)


@pytest.fixture(scope="module")
def api() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, middleware, and exception handlers but use
    isolated in-memory stores, a fake Redis, and a recording notifier.
    Rate limiting is disabled here; tests that exercise it swap
    app.state.limiter with monkeypatch.
    """
    user_store, post_store = _make_test_stores("api")
    fake_redis = FakeRedis()
    user_cache = RedisUserCache(fake_redis)
    identity_cache = IdentityCache(user_store, user_cache)
    notifier = RecordingNotifier()
    authenticator = TokenAuthenticator(TEST_SECRET, issuer=TEST_ISSUER, audience=TEST_AUDIENCE)

    state = {
        "env": "test",
        "token_expire_seconds": 3600,
        "rate_limit_enabled": False,
        "limiter": NullRateLimiter(),
        "user_store": user_store,
        "post_store": post_store,
        "user_cache": user_cache,
        "identity_cache": identity_cache,
        "access": AccessController(user_store),
        "concurrency": ConcurrencyController(post_store, identity_cache),
        "authenticator": authenticator,
        "notifier": notifier,
        "registration": RegistrationSaga(
            user_store,
            notifier,
            frontend_url="http://localhost:5174",
            invitation_expire_seconds=3600,
            identity_cache=identity_cache,
        ),
    }
    app.router.lifespan_context = _patch_lifespan(state)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            user_store=user_store,
            post_store=post_store,
            authenticator=authenticator,
            notifier=notifier,
            redis=fake_redis,
        )

    post_store.close()
    user_store.close()

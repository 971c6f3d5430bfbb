"""
cache/store.py -- Cache-aside identity resolution backed by Redis.

The identity cache sits in front of the primary store on every authenticated
request. Entries live under "user-<id>" as JSON with a 60 second TTL, so a
missed invalidation heals itself within a minute.

Two cache backends share one small interface (get / set / delete / close):
  RedisUserCache -- real cache, one redis.Redis client (thread-safe pool)
  NullUserCache  -- cache disabled; every get is a miss, writes are no-ops
The backend is chosen once at startup by build_user_cache(); IdentityCache
never branches on an "enabled" flag.

Failure policy:
  A cache read or write failure is logged and the request reads through to
  the primary store. invalidate() never raises: correctness only needs the
  entry to go away eventually, and the TTL guarantees that.

Usage:
    cache = IdentityCache(user_store, build_user_cache(enabled=True, url="redis://..."))
    user = cache.get(42)       # raises NotFoundError if unknown
    cache.invalidate(42)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol

import redis

from auth.models import Role, User
from core.errors import NotFoundError

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("socialgate.cache")

USER_TTL_SECONDS = 60


def user_key(user_id: int) -> str:
    return f"user-{user_id}"


class UserCache(Protocol):
    def get(self, user_id: int) -> User | None: ...

    def set(self, user: User) -> None: ...

    def delete(self, user_id: int) -> None: ...

    def close(self) -> None: ...


class RedisUserCache:
    def __init__(self, client: redis.Redis, ttl: int = USER_TTL_SECONDS) -> None:
        self.ttl = ttl
        self._client = client

    def get(self, user_id: int) -> User | None:
        """Return the cached user, or None on a miss.

        An empty value or a record without an id is a miss: callers need a
        real identity, not a zero-value placeholder.
        """
        data = self._client.get(user_key(user_id))
        if not data:
            return None
        return _deserialize_user(data)

    def set(self, user: User) -> None:
        self._client.setex(user_key(user.id), self.ttl, _serialize_user(user))

    def delete(self, user_id: int) -> None:
        self._client.delete(user_key(user_id))

    def close(self) -> None:
        self._client.close()


class NullUserCache:
    """Cache backend used when Redis is disabled."""

    def get(self, user_id: int) -> User | None:
        return None

    def set(self, user: User) -> None:
        pass

    def delete(self, user_id: int) -> None:
        pass

    def close(self) -> None:
        pass


def build_user_cache(enabled: bool, url: str = "", timeout: float = 5.0) -> UserCache:
    """Select the cache backend once, at startup."""
    if not enabled:
        logger.info("Identity cache disabled -- reading through to the primary store")
        return NullUserCache()
    client = redis.Redis.from_url(
        url,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        decode_responses=True,
    )
    logger.info("Identity cache connected to Redis")
    return RedisUserCache(client)


class IdentityCache:
    """Cache-aside resolver for User records."""

    def __init__(self, store: UserStore, cache: UserCache) -> None:
        self._store = store
        self._cache = cache

    def get(self, user_id: int) -> User:
        try:
            cached = self._cache.get(user_id)
        except redis.RedisError as exc:
            logger.warning("Identity cache read failed for user %s: %s", user_id, exc)
            cached = None
        if cached is not None:
            return cached

        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")

        try:
            self._cache.set(user)
        except redis.RedisError as exc:
            logger.warning("Identity cache write failed for user %s: %s", user_id, exc)
        return user

    def invalidate(self, user_id: int) -> None:
        """Delete the cached entry. Fire-and-forget: failures are only logged."""
        try:
            self._cache.delete(user_id)
        except redis.RedisError as exc:
            logger.warning("Identity cache invalidation failed for user %s: %s", user_id, exc)

    def close(self) -> None:
        self._cache.close()


# ---------------------------------------------------------------------------
# Serialization -- the password hash is never written to the cache
# ---------------------------------------------------------------------------


def _serialize_user(user: User) -> str:
    return json.dumps(
        {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "is_active": user.is_active,
            "created_at": user.created_at,
            "role": {
                "id": user.role.id,
                "name": user.role.name,
                "level": user.role.level,
                "description": user.role.description,
            },
        }
    )


def _deserialize_user(data: str) -> User | None:
    try:
        payload = json.loads(data)
    except ValueError:
        logger.warning("Discarding undecodable identity cache entry")
        return None
    if not isinstance(payload, dict) or not payload.get("id"):
        return None
    role = payload.get("role") or {}
    try:
        return User(
            id=payload["id"],
            username=payload["username"],
            email=payload["email"],
            is_active=bool(payload.get("is_active")),
            created_at=payload.get("created_at"),
            role=Role(
                id=role.get("id"),
                name=role["name"],
                level=role["level"],
                description=role.get("description", ""),
            ),
        )
    except KeyError:
        logger.warning("Discarding incomplete identity cache entry")
        return None

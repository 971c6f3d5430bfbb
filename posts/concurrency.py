"""
posts/concurrency.py -- Mutation guard for posts.

All writes to an existing post go through ConcurrencyController so the two
rules that travel with a mutation are never forgotten:
  1. the write is conditional on the version the caller read (PostStore.update)
  2. after a successful write, the owner's identity cache entry is dropped

There is no ordering between concurrent writers beyond the version check: the
first committer holding the current version wins, everyone else gets
ConflictError and must retry from a fresh read.

Cache invalidation is best-effort (IdentityCache.invalidate never raises) and
happens after the write has committed, so it can neither block nor undo it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.errors import ConflictError, NotFoundError

if TYPE_CHECKING:
    from cache.store import IdentityCache
    from posts.models import Post
    from posts.store import PostStore

logger = logging.getLogger("socialgate.posts")


class ConcurrencyController:
    def __init__(self, store: PostStore, identity_cache: IdentityCache) -> None:
        self._store = store
        self._identity_cache = identity_cache

    def update(self, post: Post) -> Post:
        """Persist post if post.version is current; returns it at the new version."""
        submitted = post.version
        try:
            self._store.update(post)
        except ConflictError:
            logger.info("Version conflict on post %s (submitted version %d)", post.id, submitted)
            raise
        self._identity_cache.invalidate(post.user_id)
        return post

    def delete(self, post: Post) -> None:
        if not self._store.delete(post.id):
            raise NotFoundError("Post not found.")
        self._identity_cache.invalidate(post.user_id)

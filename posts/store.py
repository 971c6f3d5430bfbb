"""
posts/store.py -- SQLAlchemy Core persistence layer for posts.

Pattern: Repository + Data Mapper (same as auth/store.py). PostStore is the
repository; _row_to_post is the mapper. Route handlers never touch SQL.

Optimistic versioning:
  update() is a single conditional UPDATE keyed by (id, version) that also
  sets version = version + 1. The database applies it atomically, so of two
  writers holding the same version exactly one matches a row. Zero rows
  affected is reported as ConflictError whether the post was edited or
  deleted in the meantime; the caller re-fetches and decides.

Feed:
  feed() pages over posts written by a given set of authors, newest first by
  default, with a per-post comment count. Tag and search filters are LIKE
  patterns with autoescape, so user input never acts as a wildcard.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import json

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, or_, select
from sqlalchemy.engine import Engine

from core.db import DEFAULT_DB_URL, DEFAULT_TIMEOUT, build_engine, now_iso
from core.errors import ConflictError
from posts.models import Comment, FeedEntry, FeedQuery, Post

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_posts = Table(
    "posts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(100), nullable=False),
    Column("content", Text, nullable=False),
    Column("tags", Text),  # JSON array serialized as text
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_comments = Table(
    "comments",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("post_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False),
    Column("content", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PostStore:
    """Repository for Post entities.

    Usage:
        store = PostStore()
        post_id = store.create(Post(user_id=1, title="Hi", content="..."))
        post = store.get_by_id(post_id)
        post.title = "Hello"
        store.update(post)          # raises ConflictError if post.version is stale
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.engine: Engine = build_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    def create(self, post: Post) -> int:
        """Insert a new post at version 0. Fills id and timestamps in place."""
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _posts.insert().values(
                    user_id=post.user_id,
                    title=post.title,
                    content=post.content,
                    tags=json.dumps(post.tags),
                    version=0,
                    created_at=now,
                    updated_at=now,
                )
            )
        post.id = result.inserted_primary_key[0]
        post.version = 0
        post.created_at = now
        post.updated_at = now
        return post.id

    def get_by_id(self, post_id: int) -> Post | None:
        """Look up a post by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_posts).where(_posts.c.id == post_id)).fetchone()
        return _row_to_post(row) if row is not None else None

    def update(self, post: Post) -> int:
        """Write title/content/tags if post.version is still current.

        On success post.version and post.updated_at are advanced in place and
        the new version is returned. Raises ConflictError when no row matched
        (stale version or post gone).
        """
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _posts.update()
                .where((_posts.c.id == post.id) & (_posts.c.version == post.version))
                .values(
                    title=post.title,
                    content=post.content,
                    tags=json.dumps(post.tags),
                    version=_posts.c.version + 1,
                    updated_at=now,
                )
            )
        if result.rowcount == 0:
            raise ConflictError()
        post.version += 1
        post.updated_at = now
        return post.version

    def delete(self, post_id: int) -> bool:
        """Delete a post and its comments. Returns True if deleted, False if not found."""
        with self.engine.begin() as conn:
            conn.execute(_comments.delete().where(_comments.c.post_id == post_id))
            result = conn.execute(_posts.delete().where(_posts.c.id == post_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(self, comment: Comment) -> int:
        """Insert a comment. Fills id and created_at in place."""
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _comments.insert().values(
                    post_id=comment.post_id,
                    user_id=comment.user_id,
                    content=comment.content,
                    created_at=now,
                )
            )
        comment.id = result.inserted_primary_key[0]
        comment.created_at = now
        return comment.id

    def comments_for(self, post_id: int) -> list[Comment]:
        """Return a post's comments, newest first."""
        stmt = (
            select(_comments)
            .where(_comments.c.post_id == post_id)
            .order_by(_comments.c.created_at.desc(), _comments.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_comment(row) for row in rows]

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    def feed(self, author_ids: list[int], query: FeedQuery) -> list[FeedEntry]:
        """Return one page of posts by author_ids, filtered and ordered per query."""
        if not author_ids:
            return []

        comment_count = func.count(_comments.c.id).label("comment_count")
        stmt = (
            select(_posts, comment_count)
            .select_from(_posts.outerjoin(_comments, _comments.c.post_id == _posts.c.id))
            .where(_posts.c.user_id.in_(author_ids))
            .group_by(_posts.c.id)
        )
        if query.search:
            stmt = stmt.where(
                or_(
                    _posts.c.title.icontains(query.search, autoescape=True),
                    _posts.c.content.icontains(query.search, autoescape=True),
                )
            )
        for tag in query.tags:
            # tags is a JSON array; a quoted element matches exactly one tag
            stmt = stmt.where(_posts.c.tags.contains(json.dumps(tag), autoescape=True))
        if query.since:
            stmt = stmt.where(_posts.c.created_at >= query.since)
        if query.until:
            stmt = stmt.where(_posts.c.created_at <= query.until)

        if query.sort == "asc":
            stmt = stmt.order_by(_posts.c.created_at.asc(), _posts.c.id.asc())
        else:
            stmt = stmt.order_by(_posts.c.created_at.desc(), _posts.c.id.desc())
        stmt = stmt.limit(query.limit).offset(query.offset)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [FeedEntry(post=_row_to_post(row), comment_count=row.comment_count) for row in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        content=row.content,
        tags=json.loads(row.tags) if row.tags else [],
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_comment(row) -> Comment:
    return Comment(
        id=row.id,
        post_id=row.post_id,
        user_id=row.user_id,
        content=row.content,
        created_at=row.created_at,
    )

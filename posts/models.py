"""
posts/models.py -- Domain dataclasses for posts, their comments, and the feed.

Pattern: Data class (pure data container, zero logic). posts/store.py does the
persistence; posts/concurrency.py guards concurrent updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Post:
    """A post owned by one user and editable under optimistic versioning.

    version starts at 0 and grows by exactly 1 per successful update. Clients
    send back the version they last read; the store rejects the write if it
    no longer matches.

    id is None before the record is written to the database.
    """

    user_id: int
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    version: int = 0
    id: int | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Comment:
    """A comment on a post. username is filled in when comments are listed."""

    post_id: int
    user_id: int
    content: str
    id: int | None = None
    created_at: str = ""
    username: str = ""


@dataclass
class FeedQuery:
    """Page and filter options for a user's feed.

    since/until are ISO-8601 UTC strings compared against created_at. tags
    keeps only posts carrying every listed tag; search matches title or
    content case-insensitively.
    """

    limit: int = 20
    offset: int = 0
    sort: str = "desc"
    tags: list[str] = field(default_factory=list)
    search: str = ""
    since: str = ""
    until: str = ""


@dataclass
class FeedEntry:
    post: Post
    comment_count: int = 0
    username: str = ""

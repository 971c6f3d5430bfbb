"""
api/routes/v1/users.py -- Identity lookup, follow links, and the caller's feed.

Routes:
  GET /api/v1/users/feed                -- posts by the caller and everyone they follow
  GET /api/v1/users/{user_id}           -- public profile, resolved through the identity cache
  PUT /api/v1/users/{user_id}/follow    -- start following; 409 if already following
  PUT /api/v1/users/{user_id}/unfollow  -- stop following; idempotent

Any authenticated caller may read any profile; the response never carries the
password hash. /users/feed is declared before /users/{user_id} so the literal
path wins the match.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import FeedItemResponse, UserResponse
from api.routes.v1.posts import resolve_usernames
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from cache.store import IdentityCache
from core.errors import ValidationError
from posts.models import FeedQuery
from posts.store import PostStore

router = APIRouter(dependencies=[Depends(get_current_user)])

MAX_FEED_TAGS = 5


def _utc_iso(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


@router.get("/users/feed", response_model=list[FeedItemResponse])
def get_feed(
    request: Request,
    current_user: User = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=20),
    offset: int = Query(0, ge=0),
    sort: Literal["asc", "desc"] = "desc",
    tags: str = Query("", description="Comma-separated; a post must carry every tag."),
    search: str = Query("", max_length=100),
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> list[FeedItemResponse]:
    tag_list = [t.strip() for t in tags.split(",") if t.strip()]
    if len(tag_list) > MAX_FEED_TAGS:
        raise ValidationError(f"At most {MAX_FEED_TAGS} tags may be given.")

    user_store: UserStore = request.app.state.user_store
    post_store: PostStore = request.app.state.post_store
    query = FeedQuery(
        limit=limit,
        offset=offset,
        sort=sort,
        tags=tag_list,
        search=search,
        since=_utc_iso(since),
        until=_utc_iso(until),
    )
    entries = post_store.feed([current_user.id, *user_store.following(current_user.id)], query)

    names = resolve_usernames(request.app.state.identity_cache, {e.post.user_id for e in entries})
    for entry in entries:
        entry.username = names[entry.post.user_id]
    return [FeedItemResponse.from_entry(e) for e in entries]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    identity_cache: IdentityCache = request.app.state.identity_cache
    return UserResponse.from_domain(identity_cache.get(user_id))


@router.put("/users/{user_id}/follow", status_code=204)
def follow_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    if user_id == current_user.id:
        raise ValidationError("Users cannot follow themselves.")
    identity_cache: IdentityCache = request.app.state.identity_cache
    identity_cache.get(user_id)  # 404 for unknown users
    user_store: UserStore = request.app.state.user_store
    user_store.follow(current_user.id, user_id)
    return Response(status_code=204)


@router.put("/users/{user_id}/unfollow", status_code=204)
def unfollow_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    identity_cache: IdentityCache = request.app.state.identity_cache
    identity_cache.get(user_id)
    user_store: UserStore = request.app.state.user_store
    user_store.unfollow(current_user.id, user_id)
    return Response(status_code=204)

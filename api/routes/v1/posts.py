"""
api/routes/v1/posts.py -- Post routes for the SocialGate REST API.

Routes:
  POST   /posts          -- create a post owned by the caller
  GET    /posts/{id}     -- read a post with its comments
  POST   /posts/{id}/comments -- comment on a post
  PATCH  /posts/{id}     -- edit; owner or moderator+; body carries the version read
  DELETE /posts/{id}     -- delete; owner or admin+

Request pipeline for the mutating routes:
  get_current_user -> load_post -> AccessController.require -> ConcurrencyController

A stale version on PATCH is answered 409; the client re-fetches and retries.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import APIRouter, Depends, Request, Response

from api.models import CommentCreate, CommentResponse, PostCreate, PostDetailResponse, PostResponse, PostUpdate
from auth.access import AccessController
from auth.dependencies import get_current_user
from auth.models import User
from cache.store import IdentityCache
from core.errors import NotFoundError
from posts.concurrency import ConcurrencyController
from posts.models import Comment, Post
from posts.store import PostStore

# All post routes require authentication.
router = APIRouter(dependencies=[Depends(get_current_user)])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def load_post(request: Request, post_id: int) -> Post:
    post_store: PostStore = request.app.state.post_store
    post = post_store.get_by_id(post_id)
    if post is None:
        raise NotFoundError("Post not found.")
    return post


def post_permission(required_role: str) -> Callable[..., Post]:
    """Build a dependency that loads the post and checks the caller may act on it."""

    def check(
        request: Request,
        post: Post = Depends(load_post),
        current_user: User = Depends(get_current_user),
    ) -> Post:
        access: AccessController = request.app.state.access
        access.require(current_user, post.user_id, required_role)
        return post

    return check


def resolve_usernames(identity_cache: IdentityCache, user_ids: set[int]) -> dict[int, str]:
    """Map user ids to usernames through the identity cache. Deleted users map to ""."""
    names: dict[int, str] = {}
    for user_id in user_ids:
        try:
            names[user_id] = identity_cache.get(user_id).username
        except NotFoundError:
            names[user_id] = ""
    return names


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/posts", response_model=PostResponse, status_code=201)
def create_post(
    request: Request,
    body: PostCreate,
    current_user: User = Depends(get_current_user),
) -> PostResponse:
    post_store: PostStore = request.app.state.post_store
    post = Post(user_id=current_user.id, title=body.title, content=body.content, tags=body.tags)
    post_store.create(post)
    return PostResponse.from_domain(post)


@router.get("/posts/{post_id}", response_model=PostDetailResponse)
def get_post(request: Request, post: Post = Depends(load_post)) -> PostDetailResponse:
    post_store: PostStore = request.app.state.post_store
    comments = post_store.comments_for(post.id)
    names = resolve_usernames(request.app.state.identity_cache, {c.user_id for c in comments})
    for comment in comments:
        comment.username = names[comment.user_id]
    return PostDetailResponse.from_domain_with_comments(post, comments)


@router.post("/posts/{post_id}/comments", response_model=CommentResponse, status_code=201)
def create_comment(
    request: Request,
    body: CommentCreate,
    post: Post = Depends(load_post),
    current_user: User = Depends(get_current_user),
) -> CommentResponse:
    post_store: PostStore = request.app.state.post_store
    comment = Comment(post_id=post.id, user_id=current_user.id, content=body.content, username=current_user.username)
    post_store.add_comment(comment)
    return CommentResponse.from_domain(comment)


@router.patch("/posts/{post_id}", response_model=PostResponse)
def update_post(
    request: Request,
    body: PostUpdate,
    post: Post = Depends(post_permission("moderator")),
) -> PostResponse:
    concurrency: ConcurrencyController = request.app.state.concurrency
    # The write is keyed by the version the client read, not the one just loaded.
    post.version = body.version
    if body.title is not None:
        post.title = body.title
    if body.content is not None:
        post.content = body.content
    if body.tags is not None:
        post.tags = body.tags
    return PostResponse.from_domain(concurrency.update(post))


@router.delete("/posts/{post_id}", status_code=204)
def delete_post(
    request: Request,
    post: Post = Depends(post_permission("admin")),
) -> Response:
    concurrency: ConcurrencyController = request.app.state.concurrency
    concurrency.delete(post)
    return Response(status_code=204)

"""
API request and response models for SocialGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
posts/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
The password hash has no field here, so it cannot leak through a response.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from posts.models import Comment, FeedEntry, Post

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    env: str
    version: str
    components: dict[str, str]


class DebugVarsResponse(BaseModel):
    """Response for GET /api/v1/debug/vars."""

    version: str
    env: str
    rate_limit_enabled: bool
    active_rate_windows: int
    identity_cache: str
    database: str


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class RegisterUserPayload(BaseModel):
    """Request body for POST /api/v1/authentication/user."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    # bcrypt truncates beyond 72 bytes -- cap here so the user is not surprised.
    password: str = Field(min_length=3, max_length=72)

    @field_validator("email")
    @classmethod
    def email_has_at(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("email must contain '@'")
        return value


class CreateTokenPayload(BaseModel):
    """Request body for POST /api/v1/authentication/token."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=3, max_length=72)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    """Public view of an identity."""

    id: int
    username: str
    email: str
    role: str
    is_active: bool
    created_at: Optional[str] = None

    @classmethod
    def from_domain(cls, user: User) -> UserResponse:
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role.name,
            is_active=user.is_active,
            created_at=user.created_at,
        )


class UserWithToken(BaseModel):
    """Response for POST /api/v1/authentication/user.

    token is the plaintext invitation token; it is returned once and only its
    digest is kept server-side.
    """

    user: UserResponse
    token: str


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


class PostCreate(BaseModel):
    """Request body for POST /api/v1/posts."""

    title: str = Field(min_length=1, max_length=100)
    content: str = Field(min_length=1, max_length=1000)
    tags: list[str] = Field(default_factory=list, max_length=20)


class PostUpdate(BaseModel):
    """Request body for PATCH /api/v1/posts/{id}.

    version must be the version the client last read. Omitted fields keep
    their current value.
    """

    version: int = Field(ge=0)
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    content: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    tags: Optional[list[str]] = Field(default=None, max_length=20)


class PostResponse(BaseModel):
    id: int
    user_id: int
    title: str
    content: str
    tags: list[str]
    version: int
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, post: Post) -> PostResponse:
        return cls(
            id=post.id,
            user_id=post.user_id,
            title=post.title,
            content=post.content,
            tags=list(post.tags),
            version=post.version,
            created_at=post.created_at,
            updated_at=post.updated_at,
        )


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class CommentCreate(BaseModel):
    """Request body for POST /api/v1/posts/{id}/comments."""

    content: str = Field(min_length=1, max_length=1000)


class CommentResponse(BaseModel):
    id: int
    post_id: int
    user_id: int
    username: str
    content: str
    created_at: str

    @classmethod
    def from_domain(cls, comment: Comment) -> CommentResponse:
        return cls(
            id=comment.id,
            post_id=comment.post_id,
            user_id=comment.user_id,
            username=comment.username,
            content=comment.content,
            created_at=comment.created_at,
        )


class PostDetailResponse(PostResponse):
    """Response for GET /api/v1/posts/{id}: the post with its comments, newest first."""

    comments: list[CommentResponse]

    @classmethod
    def from_domain_with_comments(cls, post: Post, comments: list[Comment]) -> PostDetailResponse:
        base = PostResponse.from_domain(post).model_dump()
        return cls(**base, comments=[CommentResponse.from_domain(c) for c in comments])


class FeedItemResponse(PostResponse):
    comment_count: int
    username: str

    @classmethod
    def from_entry(cls, entry: FeedEntry) -> FeedItemResponse:
        base = PostResponse.from_domain(entry.post).model_dump()
        return cls(**base, comment_count=entry.comment_count, username=entry.username)

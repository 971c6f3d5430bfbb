"""
auth/models.py -- Domain dataclasses for identity and authorization entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; the one behaviour here is Role ordering, because role
precedence is a property of the Role type rather than of any caller.

Layer rule: no imports from api/, cache/, mailer/, or posts/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import total_ordering


@total_ordering
@dataclass(frozen=True, eq=False)
class Role:
    """A rung in the single linear role hierarchy.

    Roles are totally ordered by level: compare Role objects directly
    (actor.role >= required) rather than their integer levels. Two roles are
    equal when they sit at the same level.
    """

    name: str
    level: int
    id: int | None = None
    description: str = ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.level == other.level

    def __lt__(self, other: Role) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.level < other.level

    def __hash__(self) -> int:
        return hash(self.level)


# Seeded at startup (INSERT OR IGNORE) and by `python main.py seed-roles`.
DEFAULT_ROLES: tuple[Role, ...] = (
    Role(name="user", level=1, description="A user can create posts and comments"),
    Role(name="moderator", level=2, description="A moderator can update other users' posts"),
    Role(name="admin", level=3, description="An admin can update and delete other users' posts"),
)

DEFAULT_ROLE_NAME = "user"


@dataclass
class User:
    """An identity in SocialGate.

    hashed_password is write-only: it is set by bcrypt at registration and read
    only by the login check. It never appears in API responses or cache
    payloads (the cached copy carries None).

    New users start inactive and become active by consuming their invitation.
    """

    username: str
    email: str
    role: Role
    id: int | None = None
    hashed_password: str | None = field(default=None, repr=False)
    is_active: bool = False
    created_at: str | None = None


@dataclass
class Invitation:
    """Single-use activation ticket created alongside a new, inactive user.

    token_digest is the SHA-256 hex digest of the plaintext token. The plaintext
    is sent once through the notifier and never stored.
    expiry is a UTC epoch timestamp in seconds.
    """

    token_digest: str
    user_id: int
    expiry: float


@dataclass(frozen=True)
class SessionClaims:
    """Claims carried by a bearer token. Never persisted.

    All timestamps are integer UTC epoch seconds, matching the JWT NumericDate
    encoding, so a generate/validate round trip yields an equal object.
    """

    subject: int
    issuer: str
    audience: str
    issued_at: int
    not_before: int
    expires_at: int

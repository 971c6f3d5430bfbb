"""
auth/store.py -- SQLAlchemy Core persistence layer for identities, roles, and invitations.

Pattern: Repository + Data Mapper (same as posts/store.py).
The followers table links two users: user_id is followed by follower_id.
UserStore is the repository; _row_to_user / _row_to_role are the mappers.
Route and service code never touches SQL directly.

Transactions:
  Multi-statement writes (create_and_invite, activate, delete) run inside
  engine.begin(). The block commits only if it finishes; any exception --
  an IntegrityError, a lock timeout, an interrupted worker -- rolls the whole
  unit back, so no caller ever observes half of a registration or activation.

Timeouts:
  Every connection is opened with the configured per-call timeout (SQLite busy
  timeout; connect and statement timeouts on PostgreSQL).

Security:
  All queries use bound parameters. No f-strings in SQL.
  Duplicate email/username violations are translated into domain errors here
  so constraint names never leave this module.

Layer rule: no imports from api/, cache/, mailer/, or posts/.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import DEFAULT_ROLES, Role, User
from core.db import DEFAULT_DB_URL, DEFAULT_TIMEOUT, build_engine, now_iso
from core.errors import ConflictError, DuplicateEmailError, DuplicateUsernameError, InternalError, NotFoundError

logger = logging.getLogger("socialgate.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("level", Integer, nullable=False),
    Column("description", Text, nullable=False, server_default=""),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role_id", Integer, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

_invitations = Table(
    "user_invitations",
    _metadata,
    Column("token", String(64), primary_key=True),  # SHA-256 hex of the plaintext token
    Column("user_id", Integer, nullable=False, index=True),
    Column("expiry", Float, nullable=False),  # UTC epoch seconds
)

_followers = Table(
    "followers",
    _metadata,
    Column("user_id", Integer, primary_key=True),
    Column("follower_id", Integer, primary_key=True),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_select():
    return select(
        _users,
        _roles.c.name.label("role_name"),
        _roles.c.level.label("role_level"),
        _roles.c.description.label("role_description"),
    ).select_from(_users.join(_roles, _users.c.role_id == _roles.c.id))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Role, and Invitation entities.

    Usage:
        store = UserStore()
        store.seed_roles()
        store.create_and_invite(user, token_digest, expire_seconds=3600)
        user_id = store.activate(token_digest)
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.engine: Engine = build_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def seed_roles(self, roles: tuple[Role, ...] = DEFAULT_ROLES) -> int:
        """Insert any missing roles. Idempotent -- existing names are left untouched.

        Returns the number of roles inserted.
        """
        inserted = 0
        with self.engine.begin() as conn:
            existing = {row.name for row in conn.execute(select(_roles.c.name))}
            for role in roles:
                if role.name in existing:
                    continue
                conn.execute(_roles.insert().values(name=role.name, level=role.level, description=role.description))
                inserted += 1
        if inserted:
            logger.info("Seeded %d roles", inserted)
        return inserted

    def get_role(self, name: str) -> Role | None:
        """Look up a role by name. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def create_and_invite(self, user: User, token_digest: str, expire_seconds: float) -> int:
        """Insert an inactive user and its invitation in one transaction.

        Both rows are written or neither is. On success user.id, user.created_at
        and user.is_active are updated in place and the new id is returned.

        Raises DuplicateEmailError / DuplicateUsernameError when the unique
        constraints fire, InternalError if the user's role was never seeded.
        """
        created_at = now_iso()
        try:
            with self.engine.begin() as conn:
                role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == user.role.name)).scalar()
                if role_id is None:
                    raise InternalError(f"Role {user.role.name!r} is not seeded.")
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        role_id=role_id,
                        is_active=0,
                        created_at=created_at,
                    )
                )
                user_id = result.inserted_primary_key[0]
                conn.execute(
                    _invitations.insert().values(
                        token=token_digest,
                        user_id=user_id,
                        expiry=time.time() + expire_seconds,
                    )
                )
        except IntegrityError as exc:
            raise _translate_integrity_error(exc) from exc

        user.id = user_id
        user.created_at = created_at
        user.is_active = False
        return user_id

    def activate(self, token_digest: str) -> int:
        """Consume an invitation: delete it, then activate its user.

        Runs as one transaction. Returns the activated user's id.
        Raises NotFoundError if no unexpired invitation matches the digest.

        The invitation is consumed by a conditional DELETE; only the caller
        whose DELETE removed the row goes on to activate, so a token is
        honoured at most once even when two requests race on it.
        """
        matches = (_invitations.c.token == token_digest) & (_invitations.c.expiry > time.time())
        with self.engine.begin() as conn:
            user_id = conn.execute(select(_invitations.c.user_id).where(matches)).scalar()
            if user_id is None:
                raise NotFoundError("Invitation not found or expired.")
            consumed = conn.execute(_invitations.delete().where(matches))
            if consumed.rowcount != 1:
                raise NotFoundError("Invitation not found or expired.")
            conn.execute(_users.update().where(_users.c.id == user_id).values(is_active=1))
        return user_id

    def delete(self, user_id: int) -> bool:
        """Delete a user, any outstanding invitations, and follow links in one transaction.

        Returns True if the user row was deleted, False if it did not exist.
        """
        with self.engine.begin() as conn:
            conn.execute(_invitations.delete().where(_invitations.c.user_id == user_id))
            conn.execute(
                _followers.delete().where((_followers.c.user_id == user_id) | (_followers.c.follower_id == user_id))
            )
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Followers
    # ------------------------------------------------------------------

    def follow(self, follower_id: int, user_id: int) -> None:
        """Record that follower_id follows user_id. Raises ConflictError if it already does."""
        try:
            with self.engine.begin() as conn:
                conn.execute(_followers.insert().values(user_id=user_id, follower_id=follower_id, created_at=now_iso()))
        except IntegrityError as exc:
            raise ConflictError("Already following this user.") from exc

    def unfollow(self, follower_id: int, user_id: int) -> bool:
        """Remove the follow link. Returns False if there was none."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _followers.delete().where((_followers.c.user_id == user_id) & (_followers.c.follower_id == follower_id))
            )
        return result.rowcount > 0

    def following(self, follower_id: int) -> list[int]:
        """Return the ids of every user follower_id follows."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(_followers.c.user_id).where(_followers.c.follower_id == follower_id))
            return [row.user_id for row in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _translate_integrity_error(exc: IntegrityError) -> Exception:
    """Map a unique-constraint violation on users to a domain error.

    SQLite reports "UNIQUE constraint failed: users.email" and PostgreSQL names
    the constraint ("users_email_key"). Only those tokens are matched: the
    PostgreSQL DETAIL line echoes the offending value, which may itself
    contain the word "email".
    """
    detail = str(exc.orig)
    logger.info("Registration rejected by constraint: %s", detail)
    if _constraint_hit(detail, "email"):
        return DuplicateEmailError()
    if _constraint_hit(detail, "username"):
        return DuplicateUsernameError()
    return InternalError()


def _constraint_hit(detail: str, column: str) -> bool:
    return f"users.{column}" in detail or f"users_{column}_key" in detail


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, level=row.level, description=row.description or "")


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(
            id=row.role_id,
            name=row.role_name,
            level=row.role_level,
            description=row.role_description or "",
        ),
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )

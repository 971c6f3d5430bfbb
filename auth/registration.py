"""
auth/registration.py -- Account creation with compensating rollback.

Registration spans two systems that cannot share a transaction: the database
and the mail provider. The saga runs them in sequence:

  1. create_and_invite -- one DB transaction inserts the inactive user and its
     invitation (digest only). Both rows or neither.
  2. notify            -- send the plaintext token inside an activation URL.
  3. compensate        -- only if step 2 failed: delete the user (and its
     invitation) in a second, separate transaction, then report failure.

Accepted gap: between steps 1 and 3 the inactive user row is visible to
concurrent readers (for example, a second registration with the same email
is rejected as a duplicate during that window). If strict atomicity is ever
required, replace inline compensation with a durable outbox and retry queue.

A failed compensation is logged and not retried; the caller still receives
InternalError. The orphan is inactive and its invitation expires, so it can
never log in. A successful compensation also drops the identity cache entry,
since a reader may have cached the pending user during the gap.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.models import DEFAULT_ROLE_NAME, User
from auth.tokens import generate_invitation_token, hash_invitation_token, hash_password
from core.errors import InternalError, ValidationError

if TYPE_CHECKING:
    from auth.store import UserStore
    from cache.store import IdentityCache
    from mailer.notifier import Notifier

logger = logging.getLogger("socialgate.auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


class RegistrationSaga:
    """Creates pending identities and activates them from invitation tokens.

    Usage:
        saga = RegistrationSaga(user_store, notifier, frontend_url="https://app.example")
        user, token = saga.register("alice", "alice@example.com", "s3cret")
        saga.consume_invitation(token)
    """

    def __init__(
        self,
        store: UserStore,
        notifier: Notifier,
        frontend_url: str,
        invitation_expire_seconds: float = 3 * 24 * 3600,
        identity_cache: IdentityCache | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._frontend_url = frontend_url.rstrip("/")
        self.invitation_expire_seconds = invitation_expire_seconds
        self._identity_cache = identity_cache

    def register(self, username: str, email: str, password: str) -> tuple[User, str]:
        """Validate input, then create and invite a new user with the default role.

        Returns (user, plaintext_token). Raises ValidationError (including the
        duplicate email/username variants) or InternalError.
        """
        _validate_registration(username, email, password)
        role = self._store.get_role(DEFAULT_ROLE_NAME)
        if role is None:
            logger.error("Default role %r is not seeded", DEFAULT_ROLE_NAME)
            raise InternalError()

        user = User(
            username=username,
            email=email,
            role=role,
            hashed_password=hash_password(password),
        )
        plain_token = generate_invitation_token()
        self.create_and_invite(user, plain_token, self.invitation_expire_seconds)
        return user, plain_token

    def create_and_invite(self, user: User, plain_token: str, expire_seconds: float) -> None:
        """Persist user + invitation atomically, then notify; compensate on failure."""
        self._store.create_and_invite(user, hash_invitation_token(plain_token), expire_seconds)
        logger.info("Created pending user %s", user.id)

        activation_url = f"{self._frontend_url}/confirm/{plain_token}"
        try:
            sent = self._notifier.send_invitation(user.username, user.email, activation_url)
        except Exception:
            logger.exception("Notifier raised while inviting user %s", user.id)
            sent = False
        if sent:
            return

        self._compensate(user)
        raise InternalError("Could not send the invitation email.")

    def _compensate(self, user: User) -> None:
        try:
            self._store.delete(user.id)
        except SQLAlchemyError as exc:
            logger.error("Compensation failed: pending user %s was not removed: %s", user.id, exc)
            return
        logger.warning("Rolled back registration of user %s after notification failure", user.id)
        if self._identity_cache is not None:
            self._identity_cache.invalidate(user.id)

    def consume_invitation(self, plain_token: str) -> int:
        """Activate the user owning plain_token. Returns the user id.

        Raises NotFoundError for unknown or expired tokens; the user stays
        inactive in that case.
        """
        user_id = self._store.activate(hash_invitation_token(plain_token))
        logger.info("Activated user %s", user_id)
        if self._identity_cache is not None:
            self._identity_cache.invalidate(user_id)
        return user_id


def _validate_registration(username: str, email: str, password: str) -> None:
    if not username or len(username) > 100:
        raise ValidationError("username must be between 1 and 100 characters.")
    if not email or len(email) > 255 or not _EMAIL_RE.match(email):
        raise ValidationError("email must be a valid address of at most 255 characters.")
    if len(password) < 3 or len(password) > 72:
        raise ValidationError("password must be between 3 and 72 characters.")

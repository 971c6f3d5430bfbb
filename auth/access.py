"""
auth/access.py -- Ownership + role-precedence authorization.

A caller may act on a resource when either
  (a) they own it (actor.id == resource owner id), or
  (b) their role sits at or above the role the action requires.

Ownership short-circuits: an owner is permitted without loading the required
role, so an owner is never denied by a role they lack. The role lookup only
happens for non-owners.

A failed role lookup (unknown role name, store error) is an InternalError --
the server is misconfigured -- and is kept distinct from AuthorizationError,
which means "this caller may not do this".
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from core.errors import AuthorizationError, InternalError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("socialgate.auth")


class AccessController:
    def __init__(self, store: UserStore) -> None:
        self._store = store

    def authorize(self, actor: User, resource_owner_id: int, required_role: str) -> bool:
        """Return True if actor may act on a resource owned by resource_owner_id."""
        if actor.id is not None and actor.id == resource_owner_id:
            return True

        try:
            role = self._store.get_role(required_role)
        except SQLAlchemyError as exc:
            logger.error("Role lookup for %r failed: %s", required_role, exc)
            raise InternalError() from exc
        if role is None:
            logger.error("Required role %r is not defined", required_role)
            raise InternalError()

        return actor.role >= role

    def require(self, actor: User, resource_owner_id: int, required_role: str) -> None:
        """Raise AuthorizationError unless authorize() permits the action."""
        if not self.authorize(actor, resource_owner_id, required_role):
            logger.warning(
                "Forbidden: user %s (role %s) needs %r or ownership of resource owned by %s",
                actor.id,
                actor.role.name,
                required_role,
                resource_owner_id,
            )
            raise AuthorizationError()

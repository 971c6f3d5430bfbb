"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two schemes:
  1. Authorization: Bearer <token> -- every API route that needs a caller.
     The token is validated by app.state.authenticator, then the subject is
     resolved through app.state.identity_cache and must be active.
  2. Authorization: Basic <credentials> -- diagnostics only, checked against
     the static BASIC_AUTH_USER / BASIC_AUTH_PASS pair.

Every bearer failure raises AuthenticationError carrying the internal reason.
The exception handler in api/main.py logs the reason and answers a generic
401 "unauthorized", so clients cannot tell an expired token from a forged one.

Layer rule: no imports from mailer/ or posts/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from auth.models import User
from core.config import get_settings
from core.errors import AuthenticationError, AuthFailure, NotFoundError

_basic = HTTPBasic(auto_error=False)

BASIC_CHALLENGE = 'Basic realm="restricted", charset="UTF-8"'


def bearer_token(request: Request) -> str:
    """Extract the bearer token from the Authorization header."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError(AuthFailure.MISSING, "no bearer token")
    return token.strip()


def get_current_user(request: Request) -> User:
    """Require a valid bearer token for an active user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    claims = request.app.state.authenticator.validate_token(bearer_token(request))
    try:
        user = request.app.state.identity_cache.get(claims.subject)
    except NotFoundError as exc:
        raise AuthenticationError(AuthFailure.UNKNOWN_SUBJECT, f"user {claims.subject}") from exc
    if not user.is_active:
        raise AuthenticationError(AuthFailure.INACTIVE, f"user {user.id}")
    return user


def require_basic_auth(credentials: HTTPBasicCredentials | None = Depends(_basic)) -> str:
    """Require the static diagnostics credentials. Returns the username.

    Both fields are compared in constant time, and both comparisons always
    run, so the response time does not reveal which one was wrong.
    """
    settings = get_settings()
    if credentials is not None:
        user_ok = secrets.compare_digest(
            credentials.username.encode("utf-8"), settings.basic_auth_user.encode("utf-8")
        )
        pass_ok = secrets.compare_digest(
            credentials.password.encode("utf-8"), settings.basic_auth_pass.encode("utf-8")
        )
        if user_ok and pass_ok:
            return credentials.username
    raise HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "unauthorized"},
        headers={"WWW-Authenticate": BASIC_CHALLENGE},
    )

"""
core/errors.py -- Domain error taxonomy shared by every SocialGate layer.

Stores and services raise these; only the exception handlers in api/main.py
translate them into HTTP responses. Messages are written for the caller and
must not carry storage details (constraint names, driver text) -- those go to
the log at the point where the error is raised.

Rate-limit denial is not an error: the limiter returns (False, retry_after).
"""

from __future__ import annotations

from enum import Enum


class SocialGateError(Exception):
    """Base class for all domain errors."""

    code = "error"
    message = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationError(SocialGateError):
    """Malformed or out-of-range input."""

    code = "validation_error"
    message = "Invalid input."


class DuplicateEmailError(ValidationError):
    code = "duplicate_email"
    message = "A user with that email already exists."


class DuplicateUsernameError(ValidationError):
    code = "duplicate_username"
    message = "A user with that username already exists."


class AuthFailure(str, Enum):
    """Why a credential was rejected. Logged only, never returned."""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    CLAIM_MISMATCH = "claim_mismatch"
    UNKNOWN_SUBJECT = "unknown_subject"
    INACTIVE = "inactive"
    MISSING = "missing"


class AuthenticationError(SocialGateError):
    """Bad, expired, or malformed credential.

    reason carries the internal distinction for logging; the HTTP boundary
    always answers with the same generic "unauthorized" body.
    """

    code = "unauthorized"
    message = "unauthorized"

    def __init__(self, reason: AuthFailure, detail: str = "") -> None:
        super().__init__("unauthorized")
        self.reason = reason
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.detail}" if self.detail else self.reason.value


class AuthorizationError(SocialGateError):
    """Insufficient privilege and not the owner."""

    code = "forbidden"
    message = "forbidden"


class NotFoundError(SocialGateError):
    code = "not_found"
    message = "Resource not found."


class ConflictError(SocialGateError):
    """Version mismatch on a conditional write, or a duplicate unique key."""

    code = "conflict"
    message = "The resource was modified or removed. Re-fetch and retry."


class InternalError(SocialGateError):
    """Unexpected backing-store, cache, or notifier failure."""

    code = "internal_error"
    message = "The server encountered a problem."

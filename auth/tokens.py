"""
auth/tokens.py -- Bearer tokens, password hashing, and invitation tokens.

Security design decisions:
  Bearer tokens: python-jose, HS256. TokenAuthenticator signs SessionClaims with
       the configured secret and validates in a fixed order:
         1. structure (three non-empty dot-separated segments)
         2. signature (HMAC recomputed with jose's key; the signature segment
            must equal the canonical encoding byte for byte, so a flipped bit
            anywhere in the token is caught here)
         3. claim decoding (all six claims present and well typed)
         4. not-before, 5. expiry, 6. issuer/audience
       Each failure raises AuthenticationError with a distinct reason for the
       log. The route layer answers every one of them with the same 401.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time does
       not reveal whether an email is registered [C1].

  Invitation tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. Only
       the SHA-256 digest is stored; a fast hash is sufficient because the
       input is high-entropy, and it keeps lookup O(1) by digest.

Layer rule: no imports from api/, cache/, mailer/, or posts/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwk, jwt
from jose.utils import base64url_encode

from auth.models import SessionClaims
from core.errors import AuthenticationError, AuthFailure

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("socialgate.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes. The API layer caps passwords at
    72 characters (Pydantic field), which keeps ASCII input below the limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("socialgate_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Inactive users (invitation not yet consumed) are rejected.
    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Invitation tokens
# ---------------------------------------------------------------------------


def generate_invitation_token() -> str:
    """Return a fresh URL-safe invitation token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)


def hash_invitation_token(plain_token: str) -> str:
    """Return the SHA-256 hex digest stored in place of the plaintext token."""
    return hashlib.sha256(plain_token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------

_REQUIRED_CLAIMS = ("sub", "iss", "aud", "iat", "nbf", "exp")


class TokenAuthenticator:
    """Issues and validates HS256 bearer tokens carrying SessionClaims.

    Usage:
        authn = TokenAuthenticator(secret, issuer="socialgate", audience="socialgate")
        token = authn.generate_token(authn.new_claims(user.id, ttl_seconds=3600))
        claims = authn.validate_token(token)   # raises AuthenticationError

    clock returns UTC epoch seconds; tests inject a fixed clock.
    """

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._key = jwk.construct(secret, _ALGORITHM)
        self.issuer = issuer
        self.audience = audience
        self._clock = clock

    def new_claims(self, subject: int, ttl_seconds: int) -> SessionClaims:
        """Build claims for subject valid from now for ttl_seconds."""
        now = int(self._clock())
        return SessionClaims(
            subject=subject,
            issuer=self.issuer,
            audience=self.audience,
            issued_at=now,
            not_before=now,
            expires_at=now + ttl_seconds,
        )

    def generate_token(self, claims: SessionClaims) -> str:
        payload = {
            "sub": str(claims.subject),
            "iss": claims.issuer,
            "aud": claims.audience,
            "iat": claims.issued_at,
            "nbf": claims.not_before,
            "exp": claims.expires_at,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def validate_token(self, token: str) -> SessionClaims:
        """Return the token's claims, or raise AuthenticationError with the reason."""
        if not isinstance(token, str):
            raise AuthenticationError(AuthFailure.MALFORMED, "token is not a string")
        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            raise AuthenticationError(AuthFailure.MALFORMED, "expected three non-empty segments")

        signing_input, _, signature = token.rpartition(".")
        expected = base64url_encode(self._key.sign(signing_input.encode("utf-8")))
        if not hmac.compare_digest(expected, signature.encode("utf-8")):
            raise AuthenticationError(AuthFailure.BAD_SIGNATURE)

        try:
            header = jwt.get_unverified_header(token)
            payload = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise AuthenticationError(AuthFailure.MALFORMED, str(exc)) from exc
        if header.get("alg") != _ALGORITHM:
            raise AuthenticationError(AuthFailure.MALFORMED, f"unexpected alg {header.get('alg')!r}")

        claims = _claims_from_payload(payload)

        now = self._clock()
        if now < claims.not_before:
            raise AuthenticationError(AuthFailure.NOT_YET_VALID)
        if now >= claims.expires_at:
            raise AuthenticationError(AuthFailure.EXPIRED)
        if claims.issuer != self.issuer:
            raise AuthenticationError(AuthFailure.CLAIM_MISMATCH, "issuer")
        if claims.audience != self.audience:
            raise AuthenticationError(AuthFailure.CLAIM_MISMATCH, "audience")
        return claims


def _claims_from_payload(payload: dict) -> SessionClaims:
    missing = [name for name in _REQUIRED_CLAIMS if name not in payload]
    if missing:
        raise AuthenticationError(AuthFailure.MALFORMED, f"missing claims {missing}")
    try:
        subject = int(payload["sub"])
        times = [payload[name] for name in ("iat", "nbf", "exp")]
        if any(isinstance(t, bool) or not isinstance(t, int) for t in times):
            raise ValueError("timestamps must be integers")
        if not isinstance(payload["iss"], str) or not isinstance(payload["aud"], str):
            raise ValueError("iss and aud must be strings")
    except (TypeError, ValueError) as exc:
        raise AuthenticationError(AuthFailure.MALFORMED, str(exc)) from exc
    return SessionClaims(
        subject=subject,
        issuer=payload["iss"],
        audience=payload["aud"],
        issued_at=payload["iat"],
        not_before=payload["nbf"],
        expires_at=payload["exp"],
    )

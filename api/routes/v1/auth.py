"""
api/routes/v1/auth.py -- Registration, login, and activation endpoints.

Routes:
  POST /api/v1/authentication/user      -- register; 201 with user + invitation token
  POST /api/v1/authentication/token     -- email/password login; 201 with bearer token
  PUT  /api/v1/users/activate/{token}   -- consume an invitation; 204

Security:
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a secret.
  Login answers the same 401 for unknown email, wrong password, and inactive
  user, so the response does not reveal which accounts exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from api.models import CreateTokenPayload, RegisterUserPayload, TokenResponse, UserResponse, UserWithToken
from auth.registration import RegistrationSaga
from auth.store import UserStore
from auth.tokens import TokenAuthenticator, authenticate_user
from core.errors import AuthenticationError, AuthFailure

# Auth policy: every route here is public -- they are how a caller obtains
# credentials in the first place. All of them still pass the rate limiter.
router = APIRouter()


@router.post("/authentication/user", response_model=UserWithToken, status_code=201)
def register_user(request: Request, body: RegisterUserPayload) -> JSONResponse:
    """Create an inactive user and send the invitation.

    The plaintext invitation token is returned once so clients without a
    mailbox (tests, CLI) can activate; only its digest is stored.
    """
    saga: RegistrationSaga = request.app.state.registration
    user, token = saga.register(body.username, body.email, body.password)
    resp = JSONResponse(
        status_code=201,
        content=UserWithToken(user=UserResponse.from_domain(user), token=token).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/authentication/token", response_model=TokenResponse, status_code=201)
def create_token(request: Request, body: CreateTokenPayload) -> JSONResponse:
    """Exchange email and password for a signed bearer token."""
    user_store: UserStore = request.app.state.user_store
    authenticator: TokenAuthenticator = request.app.state.authenticator
    ttl: int = request.app.state.token_expire_seconds

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        raise AuthenticationError(AuthFailure.MISSING, "bad credentials")

    token = authenticator.generate_token(authenticator.new_claims(user.id, ttl))
    resp = JSONResponse(
        status_code=201,
        content=TokenResponse(token=token, expires_in=ttl).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.put("/users/activate/{token}", status_code=204)
def activate_user(request: Request, token: str) -> Response:
    """Activate the user that owns the invitation token. 404 if unknown or expired."""
    saga: RegistrationSaga = request.app.state.registration
    saga.consume_invitation(token)
    return Response(status_code=204)

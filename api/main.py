"""
api/main.py -- FastAPI application entry point for SocialGate.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware  -- adds CORS headers for the configured frontend origin
  2. log_requests    -- method, path, status, latency, client address
  3. rate_limit      -- fixed-window admission per client address (api/limiter.py)

Lifespan handles startup (stores, role seeding, cache, controllers, purge task)
and shutdown (cancel purge task, close every client) symmetrically. Every
shared component lives on app.state; route handlers read it from there.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import rate_limit
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.debug import router as debug_router
from api.routes.v1.posts import router as posts_router
from api.routes.v1.users import router as users_router
from auth.access import AccessController
from auth.registration import RegistrationSaga
from auth.store import UserStore
from auth.tokens import TokenAuthenticator
from cache.store import IdentityCache, build_user_cache
from core.config import get_settings
from core.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SocialGateError,
    ValidationError,
)
from core.ratelimiter import build_rate_limiter
from mailer.notifier import build_notifier
from posts.concurrency import ConcurrencyController
from posts.store import PostStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("socialgate.api")

# Seconds between sweeps of elapsed rate windows.
PURGE_INTERVAL_SECONDS = 60.0

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float = PURGE_INTERVAL_SECONDS) -> None:
    """Reclaim elapsed rate windows so idle client addresses do not accumulate.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        app.state.limiter.purge_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every shared component onto app.state, then tear it down.

    Startup order follows the dependency graph: stores first (roles seeded
    before any registration can run), then the cache, then the services that
    wrap them, then the purge task that references the limiter.
    """
    settings = get_settings()
    timeout = settings.store_timeout_seconds
    logger.info("SocialGate API starting up (env=%s)", settings.env)

    app.state.env = settings.env
    app.state.token_expire_seconds = settings.token_expire_seconds
    app.state.rate_limit_enabled = settings.rate_limit_enabled
    app.state.limiter = build_rate_limiter(
        settings.rate_limit_enabled,
        settings.rate_limit_requests,
        settings.rate_limit_window_seconds,
    )

    app.state.user_store = UserStore(settings.db_url, timeout=timeout)
    app.state.user_store.seed_roles()
    app.state.post_store = PostStore(settings.db_url, timeout=timeout)
    logger.info("Database initialized")

    app.state.user_cache = build_user_cache(settings.redis_enabled, settings.redis_url, timeout=timeout)
    app.state.identity_cache = IdentityCache(app.state.user_store, app.state.user_cache)
    app.state.access = AccessController(app.state.user_store)
    app.state.concurrency = ConcurrencyController(app.state.post_store, app.state.identity_cache)
    app.state.authenticator = TokenAuthenticator(
        settings.secret_key,
        issuer=settings.token_issuer,
        audience=settings.token_audience,
    )
    app.state.notifier = build_notifier(
        settings.sendgrid_api_key,
        settings.from_email,
        production=settings.is_production,
        timeout=timeout,
    )
    app.state.registration = RegistrationSaga(
        app.state.user_store,
        app.state.notifier,
        frontend_url=settings.frontend_url,
        invitation_expire_seconds=settings.invitation_expire_seconds,
        identity_cache=app.state.identity_cache,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.notifier.close()
    app.state.identity_cache.close()
    app.state.post_store.close()
    app.state.user_store.close()
    logger.info("SocialGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SocialGate API",
    description="Request admission and authorization core for a social network backend.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() / @app.middleware registration wraps everything
# registered before it, so the last one registered is the outermost.
# Register innermost first: rate_limit -> log_requests -> CORS.
# ---------------------------------------------------------------------------

app.middleware("http")(rate_limit)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().cors_allowed_origin],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Accept", "Authorization", "Content-Type", "X-CSRF-Token"],
    expose_headers=["Link"],
    max_age=300,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Authentication"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(posts_router, prefix="/api/v1", tags=["Posts"])
app.include_router(debug_router, prefix="/api/v1", tags=["Debug"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: tuple[tuple[type[SocialGateError], int], ...] = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
)


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(SocialGateError)
async def domain_error_handler(request: Request, exc: SocialGateError) -> JSONResponse:
    """Translate domain errors raised by stores and services into HTTP responses.

    Authentication failures all collapse into one generic 401; the internal
    reason is logged only. Anything unmapped (InternalError) becomes a 500.
    """
    status_code = next((status for cls, status in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if isinstance(exc, AuthenticationError):
        logger.warning("Unauthorized %s %s: %s", request.method, request.url.path, exc)
        return _error_response(401, exc.code, "unauthorized")
    if status_code == 500:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    return _error_response(status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or path params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field. Headers (e.g. WWW-Authenticate) are passed through.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    response = _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Exempt from the rate limiter.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and component status."""
    try:
        database = "ok" if request.app.state.user_store.ping() else "error"
    except SQLAlchemyError as exc:
        logger.warning("Health check database ping failed: %s", exc)
        database = "error"
    return HealthResponse(
        status="healthy",
        env=request.app.state.env,
        version=VERSION,
        components={"app": "ok", "database": database},
    )

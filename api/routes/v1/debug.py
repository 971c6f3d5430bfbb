"""
api/routes/v1/debug.py -- Operational diagnostics behind static Basic auth.

Routes:
  GET /api/v1/debug/vars   -- runtime counters and component status

Nothing here is secret, but it describes the deployment, so it sits behind
the BASIC_AUTH_USER / BASIC_AUTH_PASS pair rather than bearer tokens.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from api.models import DebugVarsResponse
from auth.dependencies import require_basic_auth
from cache.store import NullUserCache

logger = logging.getLogger("socialgate.api")

router = APIRouter(dependencies=[Depends(require_basic_auth)])


@router.get("/debug/vars", response_model=DebugVarsResponse)
def debug_vars(request: Request) -> DebugVarsResponse:
    state = request.app.state
    try:
        database = "ok" if state.user_store.ping() else "error"
    except SQLAlchemyError as exc:
        logger.warning("Database ping failed: %s", exc)
        database = "error"
    return DebugVarsResponse(
        version=request.app.version,
        env=state.env,
        rate_limit_enabled=state.rate_limit_enabled,
        active_rate_windows=state.limiter.active_windows(),
        identity_cache="disabled" if isinstance(state.user_cache, NullUserCache) else "redis",
        database=database,
    )

"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SocialGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  Constructor injection: components (limiter, authenticator, stores, saga)
      receive plain values as constructor arguments. Only the startup wiring in
      api/main.py and the CLI in main.py call get_settings().

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. HS256 token
       signing relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Tokens signed with a random key would all become
       invalid on restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
cache/, mailer/, or posts/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("socialgate.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    env: str = "development"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    db_url: str = "sqlite:///socialgate.db"
    cors_allowed_origin: str = "http://localhost:5174"

    # ------------------------------------------------------------------
    # Bearer tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3 * 24 * 3600
    token_issuer: str = "socialgate"
    token_audience: str = "socialgate"

    # ------------------------------------------------------------------
    # Diagnostics (static Basic credentials)
    # ------------------------------------------------------------------

    basic_auth_user: str = "admin"
    basic_auth_pass: str = "admin"

    # ------------------------------------------------------------------
    # Rate limiting (fixed window, per client address)
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit_requests: int = 20
    rate_limit_window_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Identity cache (Redis, optional)
    # ------------------------------------------------------------------

    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # ------------------------------------------------------------------
    # Collaborator timeouts
    # ------------------------------------------------------------------

    # Upper bound for every store, cache, and notifier call.
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Registration / invitations
    # ------------------------------------------------------------------

    invitation_expire_seconds: int = 3 * 24 * 3600
    frontend_url: str = "http://localhost:5174"
    from_email: str = "no-reply@socialgate.local"
    # Empty string means "log invitations instead of sending them".
    sendgrid_api_key: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the LMS auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing secrets with a warning, production
      mode refuses to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright.

  [M7] Outside DEBUG, a missing JWT_SECRET, JWT_REFRESH_SECRET or
       SESSION_SECRET is a hard startup failure.

  [T1] Access and refresh tokens must be signed with different secrets.
       A shared secret would let a leaked refresh secret mint access tokens.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lms.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'lms_auth.db'}"

_SECRET_FIELDS = ("jwt_secret", "jwt_refresh_secret", "session_secret")


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
    environment: str = "development"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Secrets -- empty string is the "not configured" sentinel
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    session_secret: str = ""

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    jwt_issuer: str = "lms-app"
    jwt_audience: str = "lms-app-users"
    access_token_expire_seconds: int = Field(default=3600, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    # Absolute lifetime, not sliding.
    session_max_age_seconds: int = Field(default=24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Google OAuth (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_callback_url: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def secure_cookies(self) -> bool:
        """Cookies carry the Secure flag only in production."""
        return self.is_production

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [M6] [M7] [T1].

        Dev mode (DEBUG=true): auto-generate each missing secret with a warning.
            Tokens and sessions will not survive a restart.

        Production mode: refuse to start if any secret is missing.
        """
        for name in _SECRET_FIELDS:
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, name, value)
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            if len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

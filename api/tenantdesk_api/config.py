"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformEnv(str, Enum):
    """Deployment environment labels."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


_DEV_SESSION_SECRET = "tenantdesk-dev-secret-change-in-production"


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``API_`` (e.g. ``API_DATABASE_URL=sqlite+aiosqlite:///./state.db``) or
    through a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # PostgreSQL (asyncpg) in production, SQLite (aiosqlite) locally.
    database_url: str = "sqlite+aiosqlite:///.tenantdesk/state.db"

    # Database of the bundled local identity store.  Empty means "use
    # database_url"; SQLite deployments should keep it in a separate file.
    identity_database_url: str = "sqlite+aiosqlite:///.tenantdesk/identity.db"

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Create tables on startup.  Production schemas are migrated out of band.
    auto_create_tables: bool = True

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled."""
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    @model_validator(mode="after")
    def _require_real_secret_outside_dev(self) -> Self:
        """Refuse to sign sessions with the development secret in production."""
        if (
            self.platform_env == PlatformEnv.PRODUCTION
            and self.session_secret.get_secret_value() == _DEV_SESSION_SECRET
        ):
            raise ValueError("API_SESSION_SECRET must be set in production")
        return self

    # Signing key and JWT algorithm for session tokens issued by the local
    # identity store.
    session_secret: SecretStr = SecretStr(_DEV_SESSION_SECRET)
    session_algorithm: str = "HS256"

    # Lifetime of an issued session.
    session_ttl_seconds: int = 3600 * 8

    # Upper bound on resolving a session token into a request context.
    session_bootstrap_timeout: float = 5.0

    # Upper bound on each identity store call (register, login, logout),
    # retries included.
    identity_call_timeout: float = 10.0

    # Retry policy for identity store dependency failures.
    identity_max_retries: int = 2
    identity_retry_base_delay: float = 0.2
    identity_retry_max_delay: float = 2.0

    # Default seat count for newly registered tenants.
    default_max_users: int = 10

    # Number of entries returned by the activity list.
    activity_list_limit: int = 50

    # Structured JSON logging for log aggregation.
    structured_logging: bool = False


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()

"""
Configuration Module for the Fieldbook Auth Service

This module defines the configuration system for the authentication and session service
of the Fieldbook sports booking backend, using Pydantic for settings validation and
dependency injection through AppKeys.

The configuration follows these principles:
1. Environment-based configuration with sensible defaults
2. Strong validation and typing through Pydantic
3. Dependency injection pattern using aiohttp's app context
4. Secrets are required explicitly, never defaulted

The Settings class is constructed once at process start. Components never read the
environment themselves; they receive the values they need from this object.

Key configuration areas include:
- Service networking and CORS
- Database connection
- Access token signing and lifetime
- Password hashing work factor
- Refresh token lifetimes and housekeeping
- Monitoring and observability
"""

import asyncio
from typing import Final, Optional, Union
import logging
from pydantic import (
    AliasChoices,
    Field,
    field_validator,
    PostgresDsn,
)
from pydantic_settings import BaseSettings
from aiohttp import web
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)

from sports.fieldbook.auth.app.metrics import MetricsClient
from sports.fieldbook.auth.model.health import HealthGauge
from sports.fieldbook.auth.security.gate import AuthorizationGate
from sports.fieldbook.auth.security.passwords import PasswordHasher
from sports.fieldbook.auth.security.sessions import SessionManager


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the auth service.

    Values are loaded from environment variables, with defaults suitable for
    development environments. The access token secret has no default and must be
    provided; the service refuses to start without it.

    Environment variables are automatically mapped to settings fields, with aliases
    provided where the deployment uses a different name. For example, the database
    connection string can be set with either PG_DSN or DATABASE_URL.
    """

    # Environment and debugging settings
    debug: bool = False
    """
    Enable debug mode for verbose logging and detailed error responses.
    Set with DEBUG=true environment variable.
    """

    allowed_domains: str = "http://localhost:3000"
    """
    Comma-separated list of origins allowed for CORS.
    Set with ALLOWED_DOMAINS environment variable.
    """

    http_port: int = Field(alias="port", default=3000)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    pg_dsn: PostgresDsn = Field(
        "postgresql+asyncpg://postgres:password@db/fieldbook",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )  # type: ignore
    """
    PostgreSQL connection string for database access.
    Set with PG_DSN or DATABASE_URL environment variables.
    Default: postgresql+asyncpg://postgres:password@db/fieldbook
    """

    # Access token settings
    jwt_access_secret: str = Field(min_length=32)
    """
    Shared secret used to sign and verify access tokens (HS256).
    Required, at least 32 characters.
    Set with JWT_ACCESS_SECRET environment variable.
    """

    access_token_expiry: int = 300  # 5 minutes
    """
    Lifetime in seconds of issued access tokens.
    Set with ACCESS_TOKEN_EXPIRY environment variable.
    Default: 300 (5 minutes)
    """

    access_token_leeway: int = 0
    """
    Clock skew in seconds tolerated when checking access token expiry.
    Set with ACCESS_TOKEN_LEEWAY environment variable.
    """

    # Password hashing
    bcrypt_salt_or_rounds: Optional[Union[int, str]] = 10
    """
    bcrypt work factor: either a number of rounds or a pre-encoded bcrypt salt
    such as ``$2b$10$...``. Numeric strings are treated as rounds.
    Set with BCRYPT_SALT_OR_ROUNDS environment variable.
    """

    # Refresh token settings
    refresh_token_expiration_in_days: int = 30
    """
    Lifetime in days of "remember me" refresh tokens.
    Set with REFRESH_TOKEN_EXPIRATION_IN_DAYS environment variable.
    """

    refresh_token_short_expiration_in_hours: int = 8
    """
    Lifetime in hours of regular refresh tokens.
    Set with REFRESH_TOKEN_SHORT_EXPIRATION_IN_HOURS environment variable.
    """

    refresh_token_purge_interval: int = 3600
    """
    Seconds between runs of the refresh token purge task.
    Set with REFRESH_TOKEN_PURGE_INTERVAL environment variable.
    """

    refresh_token_purge_retention_days: int = 30
    """
    Revoked refresh tokens that expired more than this many days ago are deleted.
    Set with REFRESH_TOKEN_PURGE_RETENTION_DAYS environment variable.
    """

    # Monitoring and observability settings
    metrics_backend: str = "telegraf"
    """
    Metrics backend, one of "telegraf" or "none".
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    statsd_prefix: str = "fieldbook"
    """
    Prefix for all StatsD metrics from this service.
    Set with STATSD_PREFIX environment variable.
    """

    @field_validator("bcrypt_salt_or_rounds", mode="before")
    @classmethod
    def decode_bcrypt_salt_or_rounds(cls, v) -> Optional[Union[int, str]]:
        """
        Normalise the bcrypt work factor.

        Accepts an integer number of rounds, a numeric string (treated as rounds)
        or a pre-encoded bcrypt salt string. Empty values are treated as absent.
        """
        if v is None or isinstance(v, int):
            return v
        if isinstance(v, str):
            stripped = v.strip()
            if len(stripped) == 0:
                return None
            if stripped.isdigit():
                return int(stripped)
            return stripped
        raise ValueError("bcrypt_salt_or_rounds must be a number of rounds or a salt string")

    @property
    def allowed_origins(self) -> set[str]:
        return {
            domain.strip() for domain in self.allowed_domains.split(",") if domain.strip()
        }


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""

PasswordHasherAppKey: Final = web.AppKey("password_hasher", PasswordHasher)
"""AppKey for the bcrypt password hasher shared by the directory and refresh tokens"""

SessionManagerAppKey: Final = web.AppKey("session_manager", SessionManager)
"""AppKey for the session manager orchestrating sign-up, login and rotation"""

AuthorizationGateAppKey: Final = web.AppKey("authorization_gate", AuthorizationGate)
"""AppKey for the request-time authorization gate"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that monitors service health"""

RefreshTokenPurgeTaskAppKey: Final = web.AppKey(
    "refresh_token_purge_task", asyncio.Task[None]
)
"""AppKey for the background task that purges long-expired refresh tokens"""

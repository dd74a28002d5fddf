# ==============================================================================
# Application Configuration
# ==============================================================================
"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables, with support for
.env files via python-dotenv.
"""

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file before any settings are instantiated
load_dotenv()


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="PG_")

    host: str = Field(default="localhost", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="postgres", description="PostgreSQL username")
    password: str = Field(default="postgres", description="PostgreSQL password")
    database: str = Field(default="engagement", description="Database name")
    schema_name: str = Field(default="engagement", description="Schema name")
    sslmode: str = Field(default="prefer", description="SSL mode")

    @property
    def connection_string(self) -> str:
        """Build PostgreSQL connection string."""
        return (
            f"postgresql://{self.user}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}?sslmode={self.sslmode}"
        )


class ValkeySettings(BaseSettings):
    """Valkey (Redis-compatible) connection settings for the session store."""

    model_config = SettingsConfigDict(env_prefix="VALKEY_")

    host: str = Field(default="localhost", description="Valkey host")
    port: int = Field(default=6379, description="Valkey port")
    password: Optional[str] = Field(default=None, description="Valkey password")
    db: int = Field(default=0, description="Valkey database number")
    ssl: bool = Field(default=False, description="Use SSL/TLS connection")
    key_prefix: str = Field(default="engagement", description="Prefix for all keys")

    @property
    def url(self) -> str:
        """Build Valkey connection URL."""
        scheme = "rediss" if self.ssl else "redis"
        if self.password:
            return f"{scheme}://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


class SessionSettings(BaseSettings):
    """Session lifecycle settings.

    The timeout decides when a session with no heartbeat is considered
    disconnected. The grace window is added to the last heartbeat to estimate
    the real end of a timed-out session.
    """

    model_config = SettingsConfigDict(env_prefix="SESSION_")

    backend: Literal["postgresql", "valkey"] = Field(
        default="postgresql",
        description="Session store implementation (postgresql, valkey)",
    )
    timeout_minutes: int = Field(
        default=60, description="Inactivity after which a session is closed"
    )
    grace_minutes: int = Field(
        default=5, description="Minutes added to the last heartbeat when closing on timeout"
    )
    max_write_attempts: int = Field(
        default=5, description="Conditional write attempts before giving up on a heartbeat"
    )


class AnalyticsSettings(BaseSettings):
    """Analytics defaults: lookback windows and watch completion thresholds."""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    daily_lookback_days: int = Field(default=30, description="Default daily report window")
    weekly_lookback_weeks: int = Field(default=9, description="Default weekly report window")
    monthly_lookback_months: int = Field(
        default=11, description="Default monthly report window"
    )
    completion_threshold: float = Field(
        default=70.0, description="Watch percentage above which a view is complete"
    )
    dropoff_threshold: float = Field(
        default=30.0, description="Watch percentage below which a view is a drop-off"
    )


class AuthSettings(BaseSettings):
    """Settings for resolving user identity from bearer tokens."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    access_token_secret: Optional[str] = Field(
        default=None, description="Secret used to verify access tokens"
    )
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    # Nested settings
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    valkey: ValkeySettings = Field(default_factory=ValkeySettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    # General settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    """
    return Settings()

"""Application configuration via environment variables.

Provides type-safe settings loading using pydantic-settings.
Environment variables can be loaded from a .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PREFIX_BLACKLIST = (
    "admin",
    "administrator",
    "root",
    "postmaster",
    "webmaster",
    "hostmaster",
    "noreply",
    "no-reply",
    "support",
    "info",
    "abuse",
    "security",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    MAIL_DOMAIN has no default: the service refuses to start without it.

    Environment Variables:
        MAIL_DOMAIN: Domain served by the SMTP gateway (required)
        HOST / PORT: HTTP and WebSocket listener
        SMTP_HOST / SMTP_PORT: SMTP listener (port 0 binds an ephemeral port)
        EMAIL_EXPIRY_MINUTES: Lifetime of a provisioned mailbox
        HEARTBEAT_INTERVAL: Channel ping interval in milliseconds
        CLEANUP_INTERVAL: Expiry sweep interval in milliseconds
        EMAIL_PREFIX_BLACKLIST: Comma-separated reserved prefixes
        RATE_LIMIT_REDIS_URL: Optional Redis backend for the rate limiter
        LOG_LEVEL / LOG_JSON: Logging
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Mail
    MAIL_DOMAIN: str = Field(..., min_length=1)

    # HTTP / WebSocket
    HOST: str = "0.0.0.0"
    PORT: int = Field(3000, ge=1, le=65535)
    CORS_ORIGINS: str = "*"

    # SMTP ingest
    SMTP_HOST: str = "0.0.0.0"
    SMTP_PORT: int = Field(2525, ge=0, le=65535)
    SMTP_MAX_SIZE: int = Field(26_214_400, ge=1024)  # 25 MB
    SMTP_TIMEOUT: int = Field(60, ge=1)  # seconds

    # Mailbox lifecycle
    EMAIL_EXPIRY_MINUTES: int = Field(60, ge=1)
    HEARTBEAT_INTERVAL: int = Field(30_000, ge=1000)  # ms
    CLEANUP_INTERVAL: int = Field(60_000, ge=1000)  # ms
    SHUTDOWN_TIMEOUT: float = Field(5.0, gt=0)  # seconds

    EMAIL_PREFIX_BLACKLIST: str = ",".join(DEFAULT_PREFIX_BLACKLIST)

    # Rate Limiting
    RATE_LIMIT_GENERATE_MAX: int = Field(10, ge=1)
    RATE_LIMIT_GENERATE_WINDOW: int = Field(60, ge=1)  # seconds
    RATE_LIMIT_DEFAULT_MAX: int = Field(60, ge=1)
    RATE_LIMIT_DEFAULT_WINDOW: int = Field(60, ge=1)  # seconds
    RATE_LIMIT_REDIS_URL: Optional[str] = None

    # Application
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    ENVIRONMENT: str = "development"

    @field_validator("MAIL_DOMAIN")
    @classmethod
    def normalize_domain(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def expiry_seconds(self) -> float:
        return self.EMAIL_EXPIRY_MINUTES * 60.0

    @property
    def heartbeat_seconds(self) -> float:
        return self.HEARTBEAT_INTERVAL / 1000.0

    @property
    def cleanup_seconds(self) -> float:
        return self.CLEANUP_INTERVAL / 1000.0

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def prefix_blacklist(self) -> frozenset:
        """Reserved prefixes, lowercased. An empty variable keeps the defaults."""
        entries = {
            item.strip().lower()
            for item in self.EMAIL_PREFIX_BLACKLIST.split(",")
            if item.strip()
        }
        return frozenset(entries or DEFAULT_PREFIX_BLACKLIST)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache for singleton behavior.
    Call get_settings.cache_clear() to reload settings.
    """
    return Settings()

"""Configuration management for socialsync.

This module provides centralized configuration using Pydantic Settings,
reading environment variables and an optional ``.env`` file.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, single concurrency, safe defaults
    - PRODUCTION: Conservative settings, tracing enabled, JSON logs
    - TESTING: Minimal logging, no file logs, fast execution

Example:
    >>> from socialsync.config import settings, Environment
    >>> print(settings.rest_url)
    https://project.example.co/rest/v1
    >>> if settings.is_production:
    ...     print("Running in production mode")
"""

from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Bucket(StrEnum):
    """Object storage buckets used for user uploads."""

    AVATARS = "avatars"
    POST_IMAGES = "post-images"
    COVERS = "covers"


class NotificationType(StrEnum):
    """Kinds of notification rows written by the backend."""

    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    MESSAGE = "message"
    GROUP_INVITE = "group_invite"
    SHARE = "share"


class MemberRole(StrEnum):
    """Group chat membership roles."""

    ADMIN = "admin"
    MEMBER = "member"


class ChangeEvent(StrEnum):
    """Realtime change-feed event types."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL = "*"


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, single concurrency, safe defaults
        PRODUCTION: Conservative settings, tracing enabled, JSON logs
        TESTING: Minimal logging, no file logging, fast execution
        STAGING: Pre-production validation environment
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


DEFAULT_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        backend_url: Base URL of the hosted backend project
        backend_anon_key: Public API key sent with every request
        access_token: Optional pre-issued user access token
        page_size: Number of posts per feed page
        search_limit: Maximum results per search category
        notifications_limit: Maximum notifications fetched at once
        max_upload_bytes: Largest accepted upload in bytes
        max_concurrency: Maximum concurrent backend requests
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment Configuration
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Backend Configuration
    backend_url: str = Field(
        ...,
        alias="SOCIALSYNC_BACKEND_URL",
        description="Base URL of the hosted backend project",
    )
    backend_anon_key: str = Field(
        ...,
        alias="SOCIALSYNC_ANON_KEY",
        description="Public (anon) API key for the backend project",
    )
    access_token: Optional[str] = Field(
        None,
        alias="SOCIALSYNC_ACCESS_TOKEN",
        description="Pre-issued user access token (skips password sign-in)",
    )

    # Data Directory Configuration
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for log files",
    )

    # Operational Parameters
    max_concurrency: int = Field(
        4,
        ge=1,
        le=20,
        description="Maximum concurrent backend requests",
    )
    request_timeout: float = Field(
        30.0,
        gt=0,
        description="Overall HTTP request timeout in seconds",
    )
    page_size: int = Field(
        10,
        ge=1,
        le=100,
        description="Number of posts per feed page",
    )
    search_limit: int = Field(
        20,
        ge=1,
        le=100,
        description="Maximum results per search category",
    )
    notifications_limit: int = Field(
        50,
        ge=1,
        le=500,
        description="Maximum notifications fetched at once",
    )
    users_directory_limit: int = Field(
        50,
        ge=1,
        le=500,
        description="Maximum profiles listed when picking group members",
    )

    # Uploads
    max_upload_bytes: int = Field(
        5 * 1024 * 1024,
        ge=1,
        description="Largest accepted upload in bytes",
    )
    allowed_image_types: tuple[str, ...] = Field(
        DEFAULT_IMAGE_TYPES,
        description="MIME types accepted for image uploads",
    )

    # Realtime
    realtime_heartbeat_seconds: float = Field(
        30.0,
        gt=0,
        description="Interval between realtime heartbeat frames",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=True,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    # Observability (OpenTelemetry)
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry distributed tracing",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry OTLP endpoint for traces (e.g., http://localhost:4317)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        path = Path(v).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("backend_url")
    @classmethod
    def validate_backend_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Backend URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("backend_anon_key")
    @classmethod
    def validate_anon_key(cls, v: str) -> str:
        """Validate API key format."""
        if not v or len(v) < 20:
            raise ValueError("Backend anon key must be at least 20 characters")
        return v

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: Concurrency capped at 5, INFO logging, tracing enabled
            - DEVELOPMENT: Single concurrency, DEBUG logging, tracing disabled
            - TESTING: ERROR logging, no file logging, no tracing
            - STAGING: Concurrency capped at 3, INFO logging, tracing enabled

        Returns:
            Modified settings instance with environment-specific adjustments
        """
        if self.environment == Environment.PRODUCTION:
            self.max_concurrency = min(self.max_concurrency, 5)
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        elif self.environment == Environment.DEVELOPMENT:
            self.max_concurrency = 1
            self.log_level = "DEBUG"
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.TESTING:
            self.max_concurrency = 1
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.STAGING:
            self.max_concurrency = min(self.max_concurrency, 3)
            self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        return self

    @property
    def rest_url(self) -> str:
        """Get table API base URL."""
        return f"{self.backend_url}/rest/v1"

    @property
    def auth_url(self) -> str:
        """Get auth API base URL."""
        return f"{self.backend_url}/auth/v1"

    @property
    def storage_url(self) -> str:
        """Get object storage API base URL."""
        return f"{self.backend_url}/storage/v1"

    @property
    def realtime_url(self) -> str:
        """Get realtime websocket URL (http scheme swapped for ws)."""
        ws_base = self.backend_url.replace("https://", "wss://", 1).replace(
            "http://", "ws://", 1
        )
        return f"{ws_base}/realtime/v1/websocket"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @property
    def is_staging(self) -> bool:
        """Check if running in staging environment."""
        return self.environment == Environment.STAGING

    def redact_key(self, key: Optional[str] = None) -> str:
        """Redact sensitive key for logging.

        Args:
            key: Key to redact (defaults to backend_anon_key)

        Returns:
            Redacted key string
        """
        key = key or self.backend_anon_key
        if not key:
            return "None"
        return f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"


def get_settings() -> Settings:
    """Get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()

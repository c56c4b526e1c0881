"""
Configuration module for the avatar host service.

Uses pydantic-settings for environment-based configuration with sensible defaults.
A single frozen Settings instance is built at startup and handed to the app
factory; nothing else reads the process environment.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import StartupError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or a local .env file.
    Example: AUTH_TOKEN=mysecrettoken
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    # Shared bearer secret (required)
    AUTH_TOKEN: str = Field(
        ...,
        min_length=1,
        description="Shared secret expected in 'Authorization: Bearer <token>'"
    )

    # Storage configuration
    UPLOAD_DIR: str = Field(
        default="uploads",
        description="Storage root holding blobs and per-user pointer directories"
    )

    # Listener
    HOST: str = Field(default="127.0.0.1", description="Bind host")
    PORT: int = Field(default=8080, ge=1, le=65535, description="Bind port")

    # Upload constraints
    MAX_UPLOAD_MB: int = Field(
        default=25,
        ge=0,
        description="Maximum upload size in megabytes (0 disables the limit)"
    )

    # Logging
    LOG_LEVEL: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "TRACE"] = Field(
        default="INFO",
        description="Root log level (also passed to uvicorn)"
    )

    # Service metadata
    SERVICE_NAME: str = Field(
        default="avatar-host",
        description="Service name for logging and the OpenAPI title"
    )
    SERVICE_VERSION: str = Field(default="1.0.0", description="Service version")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def upload_root(self) -> Path:
        return Path(self.UPLOAD_DIR)

    @property
    def max_upload_bytes(self) -> int | None:
        """Upload cap in bytes, or None when uploads are unbounded."""
        if not self.MAX_UPLOAD_MB:
            return None
        return int(self.MAX_UPLOAD_MB) * 1024 * 1024


def load_settings(**overrides) -> Settings:
    """
    Build the settings for this process.

    Raises:
        StartupError: required configuration is missing or invalid
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise StartupError(f"Invalid configuration: {', '.join(fields)}") from e

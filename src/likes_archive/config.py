"""Application configuration via environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///db/archive.db",
        description="SQLAlchemy connection string",
    )

    # File storage
    files_dir: Path = Field(
        default=Path("db/files"),
        description="Directory holding downloaded media, named by content hash",
    )
    temp_dir: Path | None = Field(
        default=None,
        description="Directory for in-flight downloads (system temp dir if not set)",
    )
    max_concurrent_downloads: int = Field(
        default=10,
        ge=1,
        description="Maximum number of simultaneous media downloads",
    )
    download_timeout: float = Field(
        default=300.0,
        description="Timeout in seconds for a single media download",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )

    # API Server
    api_host: str = Field(default="127.0.0.1", description="API server host")
    api_port: int = Field(default=3000, description="API server port")
    api_reload: bool = Field(default=False, description="Enable auto-reload for development")

    # Twitter API
    twitter_api_base_url: str = Field(
        default="https://api.twitter.com",
        description="Base URL of the Twitter API",
    )
    twitter_client_id: str | None = Field(default=None, description="Twitter OAuth2 client ID")
    twitter_client_secret: str | None = Field(
        default=None, description="Twitter OAuth2 client secret (confidential clients only)"
    )
    likes_page_size: int = Field(
        default=100,
        ge=5,
        le=100,
        description="Number of liked posts requested per page",
    )
    source_request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for data source API requests",
    )

    # Encryption (for token storage)
    encryption_master_key: str | None = Field(
        default=None,
        description="Fernet encryption key for secure token storage",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


# Convenience alias
settings = get_settings()

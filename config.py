"""
Configuration settings for the triple-helix learning engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

HELIX_HOME = Path.home() / ".helix"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default=f"sqlite+aiosqlite:///{HELIX_HOME / 'progress.db'}",
        description="Relational store for stitch progress, session results and profiles",
    )

    # ========================================
    # Content API
    # ========================================
    content_api_url: str = Field(
        default="http://127.0.0.1:8200",
        description="Base URL of the remote content API (manifest, batch, stitch)",
    )
    content_timeout_ms: int = Field(
        default=10000,
        description="Content request timeout in milliseconds",
    )
    content_retry_attempts: int = Field(
        default=3,
        description="Retry attempts for content fetches on timeout or 5xx",
    )
    content_catalog_path: str | None = Field(
        default=None,
        description="JSON stitch catalogue served by the API (bundled content if unset)",
    )

    # ========================================
    # Persistence
    # ========================================
    progress_api_url: str = Field(
        default="http://127.0.0.1:8200",
        description="Base URL of the authenticated progress write path",
    )
    retry_delay_seconds: float = Field(
        default=5.0,
        description="Delay between background retry-queue drains",
    )
    urgent_write_delay_ms: int = Field(
        default=50,
        description="Deferral before an urgent (fire-and-forget) remote write runs",
    )
    local_storage_path: str = Field(
        default=str(HELIX_HOME / "local_storage.db"),
        description="Long-lived local key/value store for write mirrors and state snapshots",
    )
    stitch_progress_rpc: str = Field(
        default="upsert_user_stitch_progress",
        description="Stored procedure used as the last-resort write strategy",
    )

    # ========================================
    # Content Buffering
    # ========================================
    phase1_buffer_size: int = Field(
        default=10,
        description="Stitches per tube loaded eagerly for returning sessions",
    )
    phase2_buffer_size: int = Field(
        default=50,
        description="Stitches per tube loaded by the best-effort second phase",
    )
    emergency_critical_count: int = Field(
        default=3,
        description="Leading stitches per tube that get emergency content when phase 2 fails",
    )

    # ========================================
    # Identity
    # ========================================
    session_secret: str = Field(
        default="change-me",
        description="HMAC key used to sign and verify session tokens",
    )
    anonymous_prefix: str = Field(
        default="anonymous-",
        description="Owner-key prefix marking anonymous sessions",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8200,
        description="API server port",
    )

    # ========================================
    # Helper Methods
    # ========================================
    def has_content_catalog(self) -> bool:
        """Check if an external stitch catalogue is configured."""
        return bool(self.content_catalog_path) and Path(self.content_catalog_path).exists()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

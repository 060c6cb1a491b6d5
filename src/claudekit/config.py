"""Configuration management for the ClaudeKit updater."""

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from claudekit.constants import DEFAULT_BACKUP_KEEP, DEFAULT_RAW_URL, HTTP_TIMEOUT_SECONDS

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


class Settings(BaseSettings):
    """Updater settings loaded from ``CLAUDEKIT_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLAUDEKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Release origin: an http(s) base URL, a file:// URL or a local directory
    raw_url: str = Field(default=DEFAULT_RAW_URL, description="Release origin")
    http_timeout: float = Field(
        default=HTTP_TIMEOUT_SECONDS, description="Per-request HTTP timeout in seconds"
    )

    # Installation
    project_dir: str = Field(default=".", description="Project root holding the .claude kit")
    backup_keep: int = Field(
        default=DEFAULT_BACKUP_KEEP, description="Snapshots kept by an explicit prune"
    )
    extra_preserve_patterns: Annotated[
        list[str],
        Field(default_factory=list, description="Additional user-owned path patterns"),
    ]
    extra_review_patterns: Annotated[
        list[str],
        Field(default_factory=list, description="Additional review-required path patterns"),
    ]

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="WARNING", description="Logging level")
    log_to_file: bool = Field(default=False, description="Also write JSON logs to a file")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(default=10 * 1024 * 1024, description="Rotate size")
    log_file_backup_count: int = Field(default=5, description="Rotated files kept")

    @field_validator("http_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("http_timeout must be > 0")
        return value

    @field_validator("backup_keep")
    @classmethod
    def _non_negative_keep(cls, value: int) -> int:
        if value < 0:
            raise ValueError("backup_keep must be >= 0")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        if value.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return value.upper()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def log_file_path(self) -> str:
        """Get the full path of the rotating log file."""
        return f"{self.log_directory.rstrip('/')}/claudekit-update.log"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

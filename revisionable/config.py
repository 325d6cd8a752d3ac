"""
Configuration management for revisionable.

This module provides centralized configuration for all components:
- Database connection settings
- Default revision retention policy
- Snapshot encoding options
- Logging settings
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Literal, Optional, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else None


class DatabaseConfig(BaseModel):
    """Configuration for the database holding live entities and revisions."""

    url: str = Field(
        default="sqlite:///revisions.db", description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False, description="Echo SQL statements (for debugging)"
    )


class RetentionConfig(BaseModel):
    """Default retention policy applied when a type does not set its own."""

    default_limit: Optional[int] = Field(
        default=None,
        ge=0,
        description="Maximum revisions kept per record (None = keep all)",
    )
    default_minimum_age_seconds: Optional[int] = Field(
        default=None,
        ge=0,
        description="Revisions younger than this are never truncated",
    )
    trash_max_age_days: int = Field(
        default=30, ge=0, description="Age after which trashed revisions are swept"
    )

    @property
    def default_minimum_age(self) -> Optional[timedelta]:
        """Default minimum age as a timedelta."""
        if self.default_minimum_age_seconds is None:
            return None
        return timedelta(seconds=self.default_minimum_age_seconds)

    @property
    def trash_max_age(self) -> timedelta:
        """Trash sweep age as a timedelta."""
        return timedelta(days=self.trash_max_age_days)


class EncodingConfig(BaseModel):
    """Configuration for the snapshot encoding."""

    compress: bool = Field(
        default=True, description="Write zlib-compressed snapshots (format v2)"
    )


class LogConfig(BaseModel):
    """Configuration for logging system."""

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "<level>{message}</level>",
        description="Log message format",
    )
    rotation: str = Field(default="100 MB", description="Log file rotation size")
    retention: str = Field(default="1 month", description="Log file retention period")
    log_dir: str = Field(default="logs", description="Directory for log files")
    enable_file_logging: bool = Field(
        default=False, description="Whether to enable file logging"
    )
    enable_console_logging: bool = Field(
        default=True, description="Whether to enable console logging"
    )

    @property
    def log_path(self) -> Path:
        """Get absolute path to the log directory."""
        return Path(self.log_dir).resolve()


class Config(BaseModel):
    """Main configuration object for revisionable."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(
            database=DatabaseConfig(
                url=os.getenv("REVISIONABLE_DATABASE_URL", "sqlite:///revisions.db"),
                echo=os.getenv("REVISIONABLE_DATABASE_ECHO", "false").lower() == "true",
            ),
            retention=RetentionConfig(
                default_limit=_optional_int("REVISIONABLE_DEFAULT_LIMIT"),
                default_minimum_age_seconds=_optional_int(
                    "REVISIONABLE_DEFAULT_MINIMUM_AGE"
                ),
                trash_max_age_days=int(
                    os.getenv("REVISIONABLE_TRASH_MAX_AGE_DAYS", "30")
                ),
            ),
            encoding=EncodingConfig(
                compress=os.getenv("REVISIONABLE_COMPRESS", "true").lower() != "false",
            ),
            logging=LogConfig(
                level=cast(
                    Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                    os.getenv("LOG_LEVEL", "INFO"),
                )
            ),
        )


# Global configuration instance
config = Config.from_env()

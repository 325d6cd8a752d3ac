"""
Logging infrastructure for revisionable.

Provides structured logging with:
- Component-specific loggers (store, restore, session, manager)
- A dedicated revision history log
- Log rotation and retention
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger


class RevisionLogger:
    """
    Logger setup for the revision engine.

    Features:
    - Structured logging with context
    - Component binding through loguru's ``extra``
    - Log rotation and retention
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        rotation: str = "100 MB",
        retention: str = "1 month",
        level: str = "INFO",
        format_string: Optional[str] = None,
        enable_file_logging: bool = True,
        enable_console_logging: bool = True,
    ):
        """
        Initialize the revision logger.

        Args:
            log_dir: Directory for log files
            rotation: When to rotate log files
            retention: How long to keep old logs
            level: Default log level
            format_string: Custom format string
            enable_file_logging: Whether to log to files
            enable_console_logging: Whether to log to console
        """
        self.log_dir = log_dir or Path("logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.rotation = rotation
        self.retention = retention
        self.level = level

        self.format_string = format_string or (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[component]}</cyan> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

        logger.remove()
        logger.configure(extra={"component": "system"})

        if enable_console_logging:
            logger.add(
                sys.stderr,
                format=self.format_string,
                level=level,
                colorize=True,
            )

        if enable_file_logging:
            self._add_file_handlers()

        self.logger = logger.bind(component="system")

    def _add_file_handlers(self) -> None:
        """Add the main log, the revision history log and the error log."""
        logger.add(
            self.log_dir / "revisionable.log",
            format=self.format_string,
            level=self.level,
            rotation=self.rotation,
            retention=self.retention,
            compression="zip",
        )

        # Snapshot, truncation and restore activity
        logger.add(
            self.log_dir / "revisions.log",
            format=self.format_string,
            level="DEBUG",
            rotation=self.rotation,
            retention=self.retention,
            compression="zip",
            filter=lambda record: record["extra"].get("component")
            in ("store", "restore", "session"),
        )

        logger.add(
            self.log_dir / "errors.log",
            format=self.format_string,
            level="ERROR",
            rotation=self.rotation,
            retention=self.retention,
            compression="zip",
        )


def get_revision_logger(component: str = "system") -> Any:
    """
    Get a component-specific logger.

    Example:
        >>> log = get_revision_logger("store")
        >>> log.info("Created revision", revision=3)
    """
    return logger.bind(component=component)


def log_revision_event(logger_instance: Any, event: str, **kwargs: Any) -> None:
    """
    Log a revision history event with structured data.

    Args:
        logger_instance: Logger to use
        event: Event type (e.g., "snapshot", "truncate", "restore")
        **kwargs: Additional context (entity type, id, revision number, ...)
    """
    logger_instance.debug(
        f"Revision event: {event}",
        event=event,
        timestamp=datetime.now(timezone.utc).isoformat(),
        **kwargs,
    )


def initialize_logging(
    log_dir: Optional[Path] = None, level: str = "INFO", **kwargs: Any
) -> RevisionLogger:
    """
    Initialize the logging system.

    This should be called once at application startup.

    Args:
        log_dir: Directory for log files
        level: Default log level
        **kwargs: Additional configuration for RevisionLogger

    Returns:
        Configured RevisionLogger instance
    """
    return RevisionLogger(log_dir=log_dir, level=level, **kwargs)


def initialize_logging_from_config(log_config: Any) -> RevisionLogger:
    """Initialize logging from a ``LogConfig``."""
    return initialize_logging(
        log_dir=log_config.log_path,
        level=log_config.level,
        rotation=log_config.rotation,
        retention=log_config.retention,
        enable_file_logging=log_config.enable_file_logging,
        enable_console_logging=log_config.enable_console_logging,
    )

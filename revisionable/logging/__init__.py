"""
Logging infrastructure for revisionable.

Provides structured logging and decorators for tracking revision operations.
"""

from .logger import (
    RevisionLogger,
    get_revision_logger,
    initialize_logging,
    initialize_logging_from_config,
    log_revision_event,
)

from .decorators import (
    track_revision_operation,
    performance_monitor,
)

__all__ = [
    # Logger
    "RevisionLogger",
    "get_revision_logger",
    "initialize_logging",
    "initialize_logging_from_config",
    "log_revision_event",
    # Decorators
    "track_revision_operation",
    "performance_monitor",
]

"""
revisionable - revision history for SQLAlchemy entities

Keeps snapshots of entities and their associations before every change,
trims old history by count and age, holds deleted records in a trash and
restores any revision back onto live rows.
"""

__version__ = "0.1.0"

# Configuration is available at top level for convenience
from revisionable.config import config
from revisionable.exceptions import (
    DecodeError,
    ReconcileError,
    RegistrationError,
    RevisionError,
    StorageError,
    UnsupportedVersionError,
)
from revisionable.revisions import (
    RevisionManager,
    RevisionOptions,
    RevisionOutcome,
    disable_revisioning,
)
from revisionable.storage import RevisionDatabase, RevisionRecord

__all__ = [
    "config",
    "__version__",
    "RevisionManager",
    "RevisionOptions",
    "RevisionOutcome",
    "RevisionDatabase",
    "RevisionRecord",
    "disable_revisioning",
    "RevisionError",
    "DecodeError",
    "UnsupportedVersionError",
    "StorageError",
    "ReconcileError",
    "RegistrationError",
]

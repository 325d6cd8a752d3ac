"""
Revision history engine.

Snapshots registered entities before each guarded change, keeps a bounded
history per record and restores past revisions, including their
associations, onto live storage.
"""

from revisionable.revisions.encoder import (
    FORMAT_VERSION,
    EntitySnapshot,
    decode,
    encode,
    format_version,
)
from revisionable.revisions.manager import RevisionManager
from revisionable.revisions.options import (
    AssociationTree,
    RevisionOptions,
    normalize_associations,
)
from revisionable.revisions.restore import RestoreEngine
from revisionable.revisions.session import (
    RevisionOutcome,
    RevisionSession,
    SessionState,
    disable_revisioning,
    revisioning_disabled,
)
from revisionable.revisions.store import RevisionStore

__all__ = [
    # Encoding
    "FORMAT_VERSION",
    "EntitySnapshot",
    "decode",
    "encode",
    "format_version",
    # Options
    "AssociationTree",
    "RevisionOptions",
    "normalize_associations",
    # Engine
    "RevisionStore",
    "RestoreEngine",
    "RevisionSession",
    "RevisionOutcome",
    "SessionState",
    "disable_revisioning",
    "revisioning_disabled",
    "RevisionManager",
]

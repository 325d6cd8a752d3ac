"""
Exception hierarchy for revisionable.

Decode errors are raised for malformed or future-versioned snapshots,
storage errors wrap backend failures, and reconcile errors report structural
mismatches between a restored graph and the live mapping.
"""


class RevisionError(Exception):
    """Base exception for revision history operations."""

    pass


class DecodeError(RevisionError):
    """Raised when a snapshot blob is malformed or truncated."""

    pass


class UnsupportedVersionError(DecodeError):
    """Raised when a snapshot was written by a newer encoder."""

    def __init__(self, version: int, supported: int):
        self.version = version
        self.supported = supported
        super().__init__(
            f"Snapshot format version {version} is newer than supported version {supported}"
        )


class StorageError(RevisionError):
    """Raised when the storage backend fails."""

    pass


class ReconcileError(RevisionError):
    """Raised when a restored graph no longer matches the live mapping."""

    pass


class RegistrationError(RevisionError):
    """Raised for unregistered or doubly registered entity types."""

    pass

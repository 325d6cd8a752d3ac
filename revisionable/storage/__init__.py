"""
Storage collaborator for the revision engine.

Wraps the SQLAlchemy engine and session factory, declares the revision
history tables and describes the associations of mapped entity classes.
"""

from revisionable.storage.database import RevisionDatabase
from revisionable.storage.mapping import (
    AssociationInfo,
    AssociationKind,
    describe_association,
    identity_key,
    identity_of,
    normalize_identity,
    type_tag,
)
from revisionable.storage.models import (
    RevisionBase,
    RevisionCounter,
    RevisionRecord,
    utcnow,
)

__all__ = [
    "RevisionDatabase",
    "AssociationInfo",
    "AssociationKind",
    "describe_association",
    "identity_key",
    "identity_of",
    "normalize_identity",
    "type_tag",
    "RevisionBase",
    "RevisionCounter",
    "RevisionRecord",
    "utcnow",
]

"""
SQLAlchemy ORM models for the revision history tables.

Defines the append-only ``revision_records`` table and the per-identity
``revision_counters`` table used to hand out revision numbers.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how ``sa.DateTime`` round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RevisionBase(DeclarativeBase):
    """Base class for the revision history tables."""

    pass


class RevisionRecord(RevisionBase):
    """
    A snapshot of one entity (and its captured associations) before a change.

    Records are immutable once written; only ``trash`` and ``label`` change.
    """

    __tablename__ = "revision_records"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    revisionable_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    revisionable_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    revision: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # Versioned snapshot blob
    data: Mapped[bytes] = mapped_column(sa.LargeBinary, nullable=False)

    trash: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(sa.String(255))

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        Index(
            "idx_revision_records_identity",
            "revisionable_type",
            "revisionable_id",
            "revision",
            unique=True,
        ),
        Index(
            "idx_revision_records_trash",
            "revisionable_type",
            "trash",
            "created_at",
        ),
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<RevisionRecord(type={self.revisionable_type}, id={self.revisionable_id}, "
            f"revision={self.revision}, trash={self.trash})>"
        )

    def age(self, now: Optional[datetime] = None) -> timedelta:
        """Time elapsed since the revision was created."""
        return (now or utcnow()) - self.created_at


class RevisionCounter(RevisionBase):
    """
    Last revision number handed out for an identity.

    Survives deletion of revision rows, so numbers are never reused.
    """

    __tablename__ = "revision_counters"

    revisionable_type: Mapped[str] = mapped_column(sa.String(100), primary_key=True)
    revisionable_id: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    last_revision: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<RevisionCounter(type={self.revisionable_type}, id={self.revisionable_id}, "
            f"last={self.last_revision})>"
        )

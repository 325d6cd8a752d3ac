"""
Revision store: CRUD over the append-only revision table.

Handles revision number assignment, trash marking, count/age based
truncation and trash sweeps. Every method runs in the caller's session so
that it joins the caller's transaction.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple, Union

from loguru import logger
from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from revisionable.logging import track_revision_operation
from revisionable.storage.database import storage_errors
from revisionable.storage.models import RevisionCounter, RevisionRecord, utcnow

Age = Union[timedelta, int, float]


def _as_timedelta(age: Age) -> timedelta:
    if isinstance(age, timedelta):
        return age
    return timedelta(seconds=age)


class RevisionStore:
    """
    Append-only table of revision records keyed by (type, id, revision).

    Example:
        >>> store = RevisionStore()
        >>> record = store.create_revision(session, "Post", "1", blob)
        >>> store.truncate_revisions(session, "Post", "1", limit=10)
    """

    def _identity_query(self, session: Session, entity_type: str, entity_id: str):
        return session.query(RevisionRecord).filter_by(
            revisionable_type=entity_type, revisionable_id=entity_id
        )

    def _load_counter(
        self, session: Session, entity_type: str, entity_id: str
    ) -> Optional[RevisionCounter]:
        return (
            session.query(RevisionCounter)
            .filter_by(revisionable_type=entity_type, revisionable_id=entity_id)
            .with_for_update()
            .first()
        )

    def _reserve(
        self, session: Session, entity_type: str, entity_id: str
    ) -> Tuple[int, Optional[RevisionCounter]]:
        """Lock the identity's counter row and compute the next number."""
        counter = self._load_counter(session, entity_type, entity_id)
        latest = (
            session.query(func.max(RevisionRecord.revision))
            .filter_by(revisionable_type=entity_type, revisionable_id=entity_id)
            .scalar()
        )
        last = max(latest or 0, counter.last_revision if counter else 0)
        return last + 1, counter

    def next_revision_number(
        self, session: Session, entity_type: str, entity_id: str
    ) -> int:
        """
        Next revision number for an identity.

        The identity's counter row is locked for the rest of the transaction,
        serializing concurrent writers on the same identity.
        """
        with storage_errors(f"compute next revision for {entity_type}:{entity_id}"):
            number, _ = self._reserve(session, entity_type, entity_id)
        return number

    @track_revision_operation("create")
    def create_revision(
        self,
        session: Session,
        entity_type: str,
        entity_id: str,
        data: bytes,
        label: Optional[str] = None,
    ) -> RevisionRecord:
        """
        Insert a revision with the next revision number.

        Args:
            session: Session whose transaction the insert joins
            entity_type: Type tag of the revisioned entity
            entity_id: String identity of the revisioned entity
            data: Encoded snapshot
            label: Optional display label

        Returns:
            The flushed RevisionRecord
        """
        with storage_errors(f"create revision for {entity_type}:{entity_id}"):
            number, counter = self._reserve(session, entity_type, entity_id)
            if counter is None:
                counter = RevisionCounter(
                    revisionable_type=entity_type, revisionable_id=entity_id
                )
                session.add(counter)
            counter.last_revision = number

            record = RevisionRecord(
                revisionable_type=entity_type,
                revisionable_id=entity_id,
                revision=number,
                data=data,
                label=label,
                trash=False,
                created_at=utcnow(),
            )
            session.add(record)
            session.flush()

        logger.debug(f"Created revision {number} for {entity_type}:{entity_id}")
        return record

    def find_revision(
        self, session: Session, entity_type: str, entity_id: str, revision: int
    ) -> Optional[RevisionRecord]:
        """Exact lookup of one revision; None if absent."""
        with storage_errors(f"find revision {revision} of {entity_type}:{entity_id}"):
            return (
                self._identity_query(session, entity_type, entity_id)
                .filter_by(revision=revision)
                .first()
            )

    def last_revision(
        self, session: Session, entity_type: str, entity_id: str
    ) -> Optional[RevisionRecord]:
        """Revision with the highest number, trashed or not."""
        with storage_errors(f"find last revision of {entity_type}:{entity_id}"):
            return (
                self._identity_query(session, entity_type, entity_id)
                .order_by(desc(RevisionRecord.revision))
                .first()
            )

    def list_revisions(
        self, session: Session, entity_type: str, entity_id: str
    ) -> List[RevisionRecord]:
        """All revisions of an identity, newest first."""
        with storage_errors(f"list revisions of {entity_type}:{entity_id}"):
            return (
                self._identity_query(session, entity_type, entity_id)
                .order_by(desc(RevisionRecord.revision))
                .all()
            )

    @track_revision_operation("truncate")
    def truncate_revisions(
        self,
        session: Session,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None,
        minimum_age: Optional[Age] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete revisions beyond ``limit`` that are at least ``minimum_age`` old.

        Without a limit nothing is deleted; ``minimum_age`` only protects
        revisions from limit-based deletion.

        Returns:
            Number of revisions deleted
        """
        if limit is None:
            return 0

        now = now or utcnow()
        protected = None if minimum_age is None else _as_timedelta(minimum_age)

        with storage_errors(f"truncate revisions of {entity_type}:{entity_id}"):
            candidates = (
                self._identity_query(session, entity_type, entity_id)
                .order_by(desc(RevisionRecord.revision))
                .offset(limit)
                .all()
            )

            deleted = 0
            for record in candidates:
                if protected is None or record.age(now) >= protected:
                    session.delete(record)
                    deleted += 1
            session.flush()

        if deleted:
            logger.debug(
                f"Truncated {deleted} revisions of {entity_type}:{entity_id} (limit={limit})"
            )
        return deleted

    @track_revision_operation("empty_trash")
    def empty_trash(
        self,
        session: Session,
        entity_type: str,
        max_age: Age,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete trashed revisions of a type that are at least ``max_age`` old.

        Returns:
            Number of revisions deleted
        """
        cutoff = (now or utcnow()) - _as_timedelta(max_age)

        with storage_errors(f"empty trash for {entity_type}"):
            deleted = (
                session.query(RevisionRecord)
                .filter(
                    RevisionRecord.revisionable_type == entity_type,
                    RevisionRecord.trash.is_(True),
                    RevisionRecord.created_at <= cutoff,
                )
                .delete(synchronize_session="fetch")
            )
            session.flush()

        logger.info(f"Emptied trash for {entity_type}: {deleted} revisions deleted")
        return deleted

    def mark_trashed(self, session: Session, record: RevisionRecord) -> None:
        """Flag a revision as belonging to a deleted entity."""
        with storage_errors(f"trash revision {record.revision}"):
            record.trash = True
            session.flush()
        logger.debug(
            f"Trashed revision {record.revision} of "
            f"{record.revisionable_type}:{record.revisionable_id}"
        )

    def set_label(
        self, session: Session, record: RevisionRecord, label: Optional[str]
    ) -> None:
        """Replace the display label of a revision."""
        with storage_errors(f"label revision {record.revision}"):
            record.label = label
            session.flush()

    def delete_revision(
        self, session: Session, entity_type: str, entity_id: str, revision: int
    ) -> bool:
        """
        Delete one revision by key.

        Returns:
            True if a row was deleted, False if it did not exist
        """
        with storage_errors(f"delete revision {revision} of {entity_type}:{entity_id}"):
            deleted = (
                self._identity_query(session, entity_type, entity_id)
                .filter_by(revision=revision)
                .delete(synchronize_session="fetch")
            )
        return deleted > 0

    def delete_revisions(self, session: Session, entity_type: str, entity_id: str) -> int:
        """
        Delete the whole history of an identity.

        The counter row is kept so numbers are not reused for the identity.
        """
        with storage_errors(f"delete revisions of {entity_type}:{entity_id}"):
            deleted = self._identity_query(session, entity_type, entity_id).delete(
                synchronize_session="fetch"
            )
        logger.info(f"Deleted {deleted} revisions of {entity_type}:{entity_id}")
        return deleted

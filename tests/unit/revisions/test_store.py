"""
Unit tests for the revision store.

Tests revision numbering, lookups, truncation, trash sweeps and error
translation.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from revisionable.exceptions import StorageError
from revisionable.revisions.store import RevisionStore
from revisionable.storage.models import RevisionCounter, RevisionRecord, utcnow


@pytest.fixture
def store():
    return RevisionStore()


def _create(store, session, count, entity_id="1", entity_type="Post"):
    records = [
        store.create_revision(session, entity_type, entity_id, b"RV\x01{}")
        for _ in range(count)
    ]
    session.commit()
    return records


def _age(session, record, days):
    record.created_at = utcnow() - timedelta(days=days)
    session.commit()


class TestRevisionNumbering:
    """Tests for revision number assignment."""

    def test_first_revision_is_one(self, store, session):
        assert store.next_revision_number(session, "Post", "1") == 1

    def test_sequential_numbers(self, store, session):
        records = _create(store, session, 4)

        assert [r.revision for r in records] == [1, 2, 3, 4]

    def test_create_reads_counter_once(self, store, session, db):
        _create(store, session, 1)
        statements = []

        def collect(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        event.listen(db.engine, "before_cursor_execute", collect)
        try:
            store.create_revision(session, "Post", "1", b"RV\x01{}")
        finally:
            event.remove(db.engine, "before_cursor_execute", collect)

        counter_reads = [
            s for s in statements if s.startswith("SELECT") and "revision_counters" in s
        ]
        assert len(counter_reads) == 1

    def test_numbers_are_per_identity(self, store, session):
        _create(store, session, 3, entity_id="1")
        other = _create(store, session, 1, entity_id="2")
        comment = _create(store, session, 1, entity_type="Comment")

        assert other[0].revision == 1
        assert comment[0].revision == 1

    def test_numbers_not_reused_after_deletion(self, store, session):
        _create(store, session, 3)
        assert store.delete_revision(session, "Post", "1", 3) is True
        session.commit()

        record = store.create_revision(session, "Post", "1", b"RV\x01{}")

        assert record.revision == 4

    def test_numbers_not_reused_after_history_dropped(self, store, session):
        _create(store, session, 2)
        assert store.delete_revisions(session, "Post", "1") == 2
        session.commit()

        record = store.create_revision(session, "Post", "1", b"RV\x01{}")

        assert record.revision == 3

    def test_counter_tracks_last_number(self, store, session):
        _create(store, session, 2)

        counter = session.get(RevisionCounter, ("Post", "1"))
        assert counter.last_revision == 2

    def test_create_stores_label_and_data(self, store, session):
        record = store.create_revision(session, "Post", "1", b"RV\x01{}", label="v1")

        assert record.label == "v1"
        assert record.data == b"RV\x01{}"
        assert record.trash is False
        assert record.created_at is not None


class TestLookups:
    """Tests for find, last and list."""

    def test_find_revision(self, store, session):
        _create(store, session, 3)

        record = store.find_revision(session, "Post", "1", 2)

        assert record is not None
        assert record.revision == 2

    def test_find_missing_revision(self, store, session):
        assert store.find_revision(session, "Post", "1", 7) is None

    def test_last_revision(self, store, session):
        _create(store, session, 3)

        assert store.last_revision(session, "Post", "1").revision == 3

    def test_last_revision_includes_trash(self, store, session):
        records = _create(store, session, 2)
        store.mark_trashed(session, records[-1])
        session.commit()

        last = store.last_revision(session, "Post", "1")
        assert last.revision == 2
        assert last.trash is True

    def test_last_revision_none(self, store, session):
        assert store.last_revision(session, "Post", "1") is None

    def test_list_revisions_newest_first(self, store, session):
        _create(store, session, 3)

        revisions = store.list_revisions(session, "Post", "1")

        assert [r.revision for r in revisions] == [3, 2, 1]

    def test_set_label(self, store, session):
        record = _create(store, session, 1)[0]

        store.set_label(session, record, "published")
        session.commit()

        assert store.find_revision(session, "Post", "1", 1).label == "published"

    def test_delete_missing_revision(self, store, session):
        assert store.delete_revision(session, "Post", "1", 1) is False


class TestTruncation:
    """Tests for count and age based truncation."""

    def test_limit_keeps_newest(self, store, session):
        _create(store, session, 5)

        deleted = store.truncate_revisions(session, "Post", "1", limit=3, minimum_age=0)
        session.commit()

        assert deleted == 2
        remaining = store.list_revisions(session, "Post", "1")
        assert [r.revision for r in remaining] == [5, 4, 3]

    def test_no_limit_deletes_nothing(self, store, session):
        _create(store, session, 5)

        assert store.truncate_revisions(session, "Post", "1") == 0
        assert store.truncate_revisions(session, "Post", "1", minimum_age=0) == 0
        assert len(store.list_revisions(session, "Post", "1")) == 5

    def test_minimum_age_protects_young_revisions(self, store, session):
        records = _create(store, session, 4)
        _age(session, records[0], days=10)

        deleted = store.truncate_revisions(
            session, "Post", "1", limit=1, minimum_age=timedelta(days=1)
        )
        session.commit()

        assert deleted == 1
        remaining = store.list_revisions(session, "Post", "1")
        assert [r.revision for r in remaining] == [4, 3, 2]

    def test_age_measures_from_creation(self):
        record = RevisionRecord(created_at=datetime(2024, 1, 1, 12, 0))

        assert record.age(datetime(2024, 1, 2, 12, 0)) == timedelta(days=1)

    def test_minimum_age_in_seconds(self, store, session):
        _create(store, session, 3)

        assert store.truncate_revisions(session, "Post", "1", limit=1, minimum_age=3600) == 0

    def test_limit_zero_deletes_everything_old_enough(self, store, session):
        _create(store, session, 2)

        assert store.truncate_revisions(session, "Post", "1", limit=0) == 2

    def test_truncation_only_touches_one_identity(self, store, session):
        _create(store, session, 3, entity_id="1")
        _create(store, session, 3, entity_id="2")

        store.truncate_revisions(session, "Post", "1", limit=1)
        session.commit()

        assert len(store.list_revisions(session, "Post", "2")) == 3


class TestTrash:
    """Tests for trash marking and sweeps."""

    def test_mark_trashed(self, store, session):
        record = _create(store, session, 1)[0]

        store.mark_trashed(session, record)
        session.commit()

        assert store.find_revision(session, "Post", "1", 1).trash is True

    def test_empty_trash_removes_old_trashed_only(self, store, session):
        old_trashed = _create(store, session, 1, entity_id="1")[0]
        young_trashed = _create(store, session, 1, entity_id="2")[0]
        old_live = _create(store, session, 1, entity_id="3")[0]
        for record in (old_trashed, young_trashed):
            store.mark_trashed(session, record)
        _age(session, old_trashed, days=40)
        _age(session, old_live, days=40)

        deleted = store.empty_trash(session, "Post", timedelta(days=30))
        session.commit()

        assert deleted == 1
        assert store.find_revision(session, "Post", "1", 1) is None
        assert store.find_revision(session, "Post", "2", 1) is not None
        assert store.find_revision(session, "Post", "3", 1) is not None

    def test_empty_trash_is_per_type(self, store, session):
        post = _create(store, session, 1, entity_type="Post")[0]
        comment = _create(store, session, 1, entity_type="Comment")[0]
        store.mark_trashed(session, post)
        store.mark_trashed(session, comment)
        session.commit()

        deleted = store.empty_trash(session, "Post", 0, now=utcnow() + timedelta(seconds=1))
        session.commit()

        assert deleted == 1
        assert session.query(RevisionRecord).filter_by(revisionable_type="Comment").count() == 1


class TestStorageErrors:
    """Tests for backend failure translation."""

    def test_backend_failure_becomes_storage_error(self, store, session, db):
        RevisionRecord.__table__.drop(db.engine)

        with pytest.raises(StorageError, match="Could not list revisions") as exc_info:
            store.list_revisions(session, "Post", "1")

        assert isinstance(exc_info.value.__cause__, OperationalError)

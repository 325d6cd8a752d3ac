"""
Revision session: the transactional coordinator around a guarded mutation.

A guarded mutation runs through the states

    IDLE -> SNAPSHOTTING -> MUTATION_RUNNING -> COMMITTED | ROLLED_BACK

or straight to BYPASSED when revisioning is suppressed for the entity or
the entity was never persisted.

Snapshot and trash writes go through a helper session joined to the
caller's connection with its own SAVEPOINT, so they share the caller's
transaction without flushing the caller's pending changes. The whole call
runs inside a SAVEPOINT of the caller's session; committing the outer
transaction stays with the caller.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, FrozenSet, Iterator, List, Optional, Tuple

import sqlalchemy as sa
from loguru import logger
from sqlalchemy.orm import Session

from revisionable.revisions.encoder import encode
from revisionable.revisions.options import RevisionOptions
from revisionable.revisions.store import RevisionStore
from revisionable.storage.mapping import identity_key, identity_of, type_tag
from revisionable.storage.models import RevisionRecord

log = logger.bind(component="session")

_suppressed: ContextVar[FrozenSet[Tuple[Any, ...]]] = ContextVar(
    "revisionable_suppressed", default=frozenset()
)


def _suppression_key(entity: Any) -> Tuple[Any, ...]:
    identity = identity_of(entity)
    if identity is None:
        return ("transient", id(entity))
    return (type_tag(type(entity)), identity_key(identity))


@contextmanager
def disable_revisioning(entity: Any) -> Iterator[None]:
    """
    Suppress revisioning of ``entity`` for the duration of the block.

    The previous setting is restored when the block exits, even on error.
    """
    token = _suppressed.set(_suppressed.get() | {_suppression_key(entity)})
    try:
        yield
    finally:
        _suppressed.reset(token)


def revisioning_disabled(entity: Any) -> bool:
    """Whether revisioning is currently suppressed for ``entity``."""
    return _suppression_key(entity) in _suppressed.get()


def validation_errors(entity: Any) -> List[Any]:
    """Validation errors recorded on the entity's ``errors`` attribute."""
    errors = getattr(entity, "errors", None)
    if not errors:
        return []
    if isinstance(errors, dict):
        return list(errors.items())
    return list(errors)


def is_deleted(entity: Any) -> bool:
    """Whether the entity was deleted in (or before) the current flush."""
    state = sa.inspect(entity)
    return state.deleted or state.was_deleted


class SessionState(str, Enum):
    """States of a guarded mutation."""

    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    MUTATION_RUNNING = "mutation_running"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    BYPASSED = "bypassed"


@dataclass
class RevisionOutcome:
    """
    Result of a guarded mutation.

    Attributes:
        state: Final state (COMMITTED, ROLLED_BACK or BYPASSED)
        result: Return value of the mutation
        revision: Revision created before the mutation, if any
        snapshot_error: Why the snapshot could not be taken, if it failed
        errors: Validation errors that caused a rollback
    """

    state: SessionState
    result: Any = None
    revision: Optional[RevisionRecord] = None
    snapshot_error: Optional[Exception] = None
    errors: List[Any] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.state is SessionState.COMMITTED

    @property
    def rolled_back(self) -> bool:
        return self.state is SessionState.ROLLED_BACK

    @property
    def bypassed(self) -> bool:
        return self.state is SessionState.BYPASSED

    @property
    def snapshot_failed(self) -> bool:
        """The mutation ran but no revision was recorded for it."""
        return self.snapshot_error is not None


class _RollbackSignal(Exception):
    """Aborts the guarded SAVEPOINT after validation errors."""

    def __init__(self, errors: List[Any]):
        self.errors = errors
        super().__init__(f"{len(errors)} validation errors")


class RevisionSession:
    """
    Wraps one mutation with snapshot-before, truncate-after, trash-on-delete
    and rollback-on-error semantics.

    Example:
        >>> guard = RevisionSession(store, "Post", options)
        >>> outcome = guard.run(session, post, lambda: setattr(post, "title", "New"))
        >>> outcome.revision.revision
        3
    """

    def __init__(
        self,
        store: RevisionStore,
        entity_type: str,
        options: RevisionOptions,
        compress: bool = True,
    ):
        self.store = store
        self.entity_type = entity_type
        self.options = options
        self.compress = compress if options.compress is None else options.compress
        self.state = SessionState.IDLE

    def _transition(self, state: SessionState) -> None:
        log.debug(f"{self.entity_type}: {self.state.value} -> {state.value}")
        self.state = state

    @contextmanager
    def _joined(self, session: Session) -> Iterator[Session]:
        """Helper session sharing the caller's connection under its own SAVEPOINT."""
        with Session(
            bind=session.connection(),
            join_transaction_mode="create_savepoint",
            expire_on_commit=False,
        ) as helper:
            yield helper
            helper.commit()

    def run(
        self, session: Session, entity: Any, mutation: Callable[[], Any]
    ) -> RevisionOutcome:
        """
        Run ``mutation`` with revision history.

        Args:
            session: Session the entity belongs to
            entity: Entity about to be changed or deleted
            mutation: Callable performing the change

        Returns:
            RevisionOutcome describing what happened

        Raises:
            Whatever the mutation raises, after compensating for the snapshot
        """
        identity = identity_of(entity)
        if identity is None or revisioning_disabled(entity):
            self._transition(SessionState.BYPASSED)
            return RevisionOutcome(state=SessionState.BYPASSED, result=mutation())

        entity_id = identity_key(identity)
        revision: Optional[RevisionRecord] = None
        snapshot_error: Optional[Exception] = None

        try:
            with session.begin_nested():
                self._transition(SessionState.SNAPSHOTTING)
                try:
                    revision = self._snapshot(session, entity, identity, entity_id)
                except Exception as e:
                    snapshot_error = e
                    log.warning(
                        f"Could not snapshot {self.entity_type}:{entity_id}: {e}"
                    )

                self._transition(SessionState.MUTATION_RUNNING)
                with disable_revisioning(entity):
                    result = mutation()
                session.flush()

                errors = validation_errors(entity)
                if errors:
                    raise _RollbackSignal(errors)

                if is_deleted(entity):
                    if not self.options.keep_trash:
                        self._drop_history(session, entity_id)
                        revision = None
                    elif revision is not None:
                        self._trash(session, revision)

        except _RollbackSignal as signal:
            self._transition(SessionState.ROLLED_BACK)
            log.info(
                f"Rolled back {self.entity_type}:{entity_id} after validation errors"
            )
            return RevisionOutcome(
                state=SessionState.ROLLED_BACK,
                snapshot_error=snapshot_error,
                errors=signal.errors,
            )
        except Exception:
            self._transition(SessionState.ROLLED_BACK)
            if revision is not None:
                self._compensate(session, entity_id, revision.revision)
            raise

        self._transition(SessionState.COMMITTED)
        return RevisionOutcome(
            state=SessionState.COMMITTED,
            result=result,
            revision=revision,
            snapshot_error=snapshot_error,
        )

    def snapshot(self, session: Session, entity: Any) -> Optional[RevisionRecord]:
        """
        Record a revision of the entity's persisted state without a mutation.

        Errors propagate; only the guarded path swallows snapshot failures.
        """
        identity = identity_of(entity)
        if identity is None:
            return None
        return self._snapshot(session, entity, identity, identity_key(identity))

    def _snapshot(
        self,
        session: Session,
        entity: Any,
        identity: Tuple[Any, ...],
        entity_id: str,
    ) -> Optional[RevisionRecord]:
        """Encode the persisted state, store it and truncate old revisions."""
        key = identity if len(identity) > 1 else identity[0]
        with self._joined(session) as helper:
            persisted = helper.get(type(entity), key)
            if persisted is None:
                log.debug(f"{self.entity_type}:{entity_id} has no persisted row")
                return None

            data = encode(persisted, self.options.associations, compress=self.compress)
            record = self.store.create_revision(
                helper,
                self.entity_type,
                entity_id,
                data,
                label=self.options.label_for(persisted),
            )
            self.store.truncate_revisions(
                helper,
                self.entity_type,
                entity_id,
                limit=self.options.limit,
                minimum_age=self.options.minimum_age,
            )
            if not sa.inspect(record).persistent:
                # Truncated straight away (limit of zero)
                return None
        return record

    def _trash(self, session: Session, revision: RevisionRecord) -> None:
        with self._joined(session) as helper:
            record = self.store.find_revision(
                helper, self.entity_type, revision.revisionable_id, revision.revision
            )
            if record is not None:
                self.store.mark_trashed(helper, record)
        revision.trash = True

    def _drop_history(self, session: Session, entity_id: str) -> None:
        """Deleting without trash discards the entity's history."""
        with self._joined(session) as helper:
            self.store.delete_revisions(helper, self.entity_type, entity_id)

    def _compensate(self, session: Session, entity_id: str, number: int) -> None:
        """
        Delete the snapshot explicitly after a failure.

        Covers backends whose transactions did not take the snapshot with
        them; a crash before this point leaves an orphan revision.
        """
        try:
            with self._joined(session) as helper:
                self.store.delete_revision(helper, self.entity_type, entity_id, number)
        except Exception as e:
            log.warning(
                f"Could not remove revision {number} of {self.entity_type}:{entity_id}: {e}"
            )

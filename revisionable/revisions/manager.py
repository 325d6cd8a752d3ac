"""
Revision manager: type registry and public revision operations.

Example:
    >>> db = RevisionDatabase("sqlite:///blog.db")
    >>> manager = RevisionManager(db)
    >>> manager.register(Post, limit=10, associations=["tags", {"comments": ["ratings"]}])
    >>> manager.with_revision(post, lambda: setattr(post, "title", "Edited"))
    >>> manager.restore_revision_and_save(Post, post.id, 1)
"""

from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from loguru import logger
from sqlalchemy.orm import Session

from revisionable.config import Config, config as default_config
from revisionable.exceptions import ReconcileError, RegistrationError
from revisionable.revisions.options import RevisionOptions
from revisionable.revisions.restore import RestoreEngine
from revisionable.revisions.session import RevisionOutcome, RevisionSession
from revisionable.revisions.store import RevisionStore
from revisionable.storage.database import RevisionDatabase
from revisionable.storage.mapping import (
    identity_key,
    identity_of,
    normalize_identity,
    type_tag,
)
from revisionable.storage.models import RevisionRecord

log = logger.bind(component="manager")


class RevisionManager:
    """
    Registry of revisionable entity types and entry point for revision
    history operations.

    Read operations open their own session and return detached objects.
    Write operations take an optional session; when none is given they open
    one and commit it, otherwise committing is left to the caller. Backend
    failures, including that commit, raise ``StorageError``.

    On SQLite a session that has read rows keeps a read snapshot until its
    transaction ends. Call ``commit()`` or ``rollback()`` on it after a
    write made without ``session=`` before reading the new state, or pass
    the session so the write joins its transaction.
    """

    def __init__(
        self,
        database: RevisionDatabase,
        store: Optional[RevisionStore] = None,
        restorer: Optional[RestoreEngine] = None,
        settings: Optional[Config] = None,
    ):
        """
        Initialize the manager.

        Args:
            database: Database holding live entities and revisions
            store: Revision store (default: a new RevisionStore)
            restorer: Restore engine (default: a new RestoreEngine)
            settings: Configuration (default: the global config)
        """
        self.database = database
        self.store = store or RevisionStore()
        self.restorer = restorer or RestoreEngine()
        self.settings = settings or default_config
        self._registry: Dict[str, Tuple[type, RevisionOptions]] = {}

    # Registration ---------------------------------------------------------

    def register(
        self,
        entity_class: type,
        options: Optional[RevisionOptions] = None,
        **kwargs: Any,
    ) -> RevisionOptions:
        """
        Register a mapped class for revisioning.

        Args:
            entity_class: Mapped class to revision
            options: Revision options; alternatively pass them as keywords

        Returns:
            The effective options

        Raises:
            RegistrationError: If the class is already registered or its
                association tree does not match the mapping
        """
        tag = type_tag(entity_class)
        if tag in self._registry:
            raise RegistrationError(f"{tag} is already registered")

        if options is None:
            options = RevisionOptions(**kwargs)
        elif kwargs:
            raise TypeError("Pass either options or keyword arguments, not both")

        retention = self.settings.retention
        if options.limit is None:
            options.limit = retention.default_limit
        if options.minimum_age is None:
            options.minimum_age = retention.default_minimum_age

        try:
            self.restorer.validate_tree(entity_class, options.associations)
        except ReconcileError as e:
            raise RegistrationError(f"Invalid associations for {tag}: {e}") from e

        self._registry[tag] = (entity_class, options)
        log.info(
            f"Registered {tag} for revisioning "
            f"(limit={options.limit}, keep_trash={options.keep_trash})"
        )
        return options

    def revisionable(self, **kwargs: Any) -> Callable[[type], type]:
        """
        Class decorator form of ``register``.

        Example:
            >>> @manager.revisionable(limit=5, keep_trash=True)
            ... class Page(Base):
            ...     ...
        """

        def decorator(entity_class: type) -> type:
            self.register(entity_class, **kwargs)
            return entity_class

        return decorator

    def is_registered(self, entity_class: type) -> bool:
        """Whether the class (or one of its bases) is registered."""
        return any(type_tag(cls) in self._registry for cls in entity_class.__mro__)

    def _lookup(self, entity_class: type) -> Tuple[type, RevisionOptions]:
        for cls in entity_class.__mro__:
            entry = self._registry.get(type_tag(cls))
            if entry is not None and entry[0] is cls:
                return entry
        raise RegistrationError(f"{entity_class.__name__} is not registered")

    def options_for(self, entity_class: type) -> RevisionOptions:
        """Options of the registered class ``entity_class`` resolves to."""
        return self._lookup(entity_class)[1]

    def guard_for(self, entity_class: type) -> RevisionSession:
        """A fresh RevisionSession for one guarded mutation."""
        registered, options = self._lookup(entity_class)
        return RevisionSession(
            self.store,
            type_tag(registered),
            options,
            compress=self.settings.encoding.compress,
        )

    # Session scopes -------------------------------------------------------

    @contextmanager
    def _reading(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
            return
        with self.database.session() as own:
            yield own

    @contextmanager
    def _writing(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
            return
        with self.database.transaction() as own:
            yield own

    def _key(self, entity_class: type, entity_id: Any) -> Tuple[type, str, str]:
        registered, _ = self._lookup(entity_class)
        return registered, type_tag(registered), identity_key(normalize_identity(entity_id))

    # Lookups --------------------------------------------------------------

    def get_revision(
        self,
        entity_class: type,
        entity_id: Any,
        revision: int,
        session: Optional[Session] = None,
    ) -> Optional[RevisionRecord]:
        """Get a revision of the record with the given id."""
        _, tag, key = self._key(entity_class, entity_id)
        with self._reading(session) as s:
            return self.store.find_revision(s, tag, key, revision)

    def get_last_revision(
        self, entity_class: type, entity_id: Any, session: Optional[Session] = None
    ) -> Optional[RevisionRecord]:
        """Get the last revision of the record with the given id."""
        _, tag, key = self._key(entity_class, entity_id)
        with self._reading(session) as s:
            return self.store.last_revision(s, tag, key)

    def list_revisions(
        self, entity_class: type, entity_id: Any, session: Optional[Session] = None
    ) -> List[RevisionRecord]:
        """All revisions of the record with the given id, newest first."""
        _, tag, key = self._key(entity_class, entity_id)
        with self._reading(session) as s:
            return self.store.list_revisions(s, tag, key)

    # Restore --------------------------------------------------------------

    def restore_revision(
        self,
        entity_class: type,
        entity_id: Any,
        revision: int,
        session: Optional[Session] = None,
    ) -> Optional[Any]:
        """
        Load a revision as a detached entity without saving it.

        Associations added since the revision was taken are not part of the
        result; use ``restore_revision_and_save`` to write them back.
        """
        registered, tag, key = self._key(entity_class, entity_id)
        with self._reading(session) as s:
            record = self.store.find_revision(s, tag, key, revision)
        if record is None:
            return None
        return self.restorer.restore(record, registered)

    def restore_last_revision(
        self, entity_class: type, entity_id: Any, session: Optional[Session] = None
    ) -> Optional[Any]:
        """Load the last revision as a detached entity without saving it."""
        registered, tag, key = self._key(entity_class, entity_id)
        with self._reading(session) as s:
            record = self.store.last_revision(s, tag, key)
        if record is None:
            return None
        return self.restorer.restore(record, registered)

    def restore_revision_and_save(
        self,
        entity_class: type,
        entity_id: Any,
        revision: int,
        session: Optional[Session] = None,
    ) -> Optional[Any]:
        """
        Restore a revision and save it, including its associations.

        The current state is itself revisioned before being overwritten.

        Returns:
            The live entity, or None if the revision does not exist or the
            save was rolled back
        """
        _, tag, key = self._key(entity_class, entity_id)
        with self._writing(session) as s:
            record = self.store.find_revision(s, tag, key, revision)
            return self._save_restored(s, entity_class, entity_id, record)

    def restore_last_revision_and_save(
        self, entity_class: type, entity_id: Any, session: Optional[Session] = None
    ) -> Optional[Any]:
        """Restore the last revision and save it, including its associations."""
        _, tag, key = self._key(entity_class, entity_id)
        with self._writing(session) as s:
            record = self.store.last_revision(s, tag, key)
            return self._save_restored(s, entity_class, entity_id, record)

    def _save_restored(
        self,
        session: Session,
        entity_class: type,
        entity_id: Any,
        record: Optional[RevisionRecord],
    ) -> Optional[Any]:
        if record is None:
            return None
        registered, options = self._lookup(entity_class)
        restored = self.restorer.restore(record, registered)

        identity = normalize_identity(entity_id)
        live = session.get(registered, identity if len(identity) > 1 else identity[0])

        def reconcile() -> Any:
            saved = self.restorer.reconcile(session, restored, options.associations)
            saved.skipped_on_restore = restored.skipped_on_restore
            return saved

        if restored.skipped_on_restore:
            log.warning(
                f"Revision {record.revision} of {record.revisionable_type}:"
                f"{record.revisionable_id} holds fields no longer mapped: "
                f"{', '.join(restored.skipped_on_restore)}"
            )

        if live is None:
            # Restoring a deleted record: nothing to snapshot
            log.info(f"Recreating {record.revisionable_type}:{record.revisionable_id}")
            return reconcile()

        outcome = self.guard_for(registered).run(session, live, reconcile)
        if not outcome.committed:
            log.warning(
                f"Restore of {record.revisionable_type}:{record.revisionable_id} "
                f"revision {record.revision} was rolled back"
            )
            return None
        log.info(
            f"Restored {record.revisionable_type}:{record.revisionable_id} "
            f"to revision {record.revision}"
        )
        return outcome.result

    # Guarded mutations ----------------------------------------------------

    def _session_of(self, entity: Any, session: Optional[Session]) -> Optional[Session]:
        return session if session is not None else Session.object_session(entity)

    def with_revision(
        self,
        entity: Any,
        mutation: Callable[[], Any],
        session: Optional[Session] = None,
    ) -> RevisionOutcome:
        """
        Run ``mutation`` after recording a revision of ``entity``.

        Args:
            entity: Registered entity about to change
            mutation: Callable performing the change
            session: Session to use (default: the entity's own session)
        """
        s = self._session_of(entity, session)
        guard = self.guard_for(type(entity))
        if s is None and identity_of(entity) is not None:
            raise ValueError(
                f"{type(entity).__name__} is detached; pass the session to use"
            )
        return guard.run(s, entity, mutation)

    def delete_with_revision(
        self, entity: Any, session: Optional[Session] = None
    ) -> RevisionOutcome:
        """Delete ``entity`` while recording (and possibly trashing) a revision."""
        s = self._session_of(entity, session)
        if s is None:
            raise ValueError(f"{type(entity).__name__} is not attached to a session")
        return self.with_revision(entity, lambda: s.delete(entity), session=s)

    def create_revision(
        self, entity: Any, session: Optional[Session] = None
    ) -> Optional[RevisionRecord]:
        """Record a revision of the entity's persisted state right now."""
        s = self._session_of(entity, session)
        if s is None:
            raise ValueError(f"{type(entity).__name__} is not attached to a session")
        return self.guard_for(type(entity)).snapshot(s, entity)

    # Retention ------------------------------------------------------------

    def truncate_revisions(
        self,
        entity_class: type,
        entity_id: Any,
        limit: Optional[int] = None,
        minimum_age: Optional[Union[timedelta, int, float]] = None,
        session: Optional[Session] = None,
    ) -> int:
        """
        Truncate the revisions of one record.

        Without explicit limits the registered options apply.
        """
        _, tag, key = self._key(entity_class, entity_id)
        options = self.options_for(entity_class)
        if limit is None and minimum_age is None:
            limit, minimum_age = options.limit, options.minimum_age
        with self._writing(session) as s:
            return self.store.truncate_revisions(s, tag, key, limit, minimum_age)

    def empty_trash(
        self,
        entity_class: type,
        max_age: Optional[Union[timedelta, int, float]] = None,
        session: Optional[Session] = None,
    ) -> int:
        """
        Delete trashed revisions older than ``max_age`` for a type.

        Defaults to the configured trash retention.
        """
        registered, _ = self._lookup(entity_class)
        if max_age is None:
            max_age = self.settings.retention.trash_max_age
        with self._writing(session) as s:
            return self.store.empty_trash(s, type_tag(registered), max_age)

"""
Restore engine: rebuild entities from revisions and reconcile them with
live rows.

``restore`` produces a detached graph of mapped instances that is not
attached to any session. ``reconcile`` writes such a graph onto the live
rows inside the caller's transaction: matching rows are updated in place,
missing rows are recreated with their original identifiers and children
that are no longer part of the revision are removed.
"""

from typing import Any, Dict, Iterable, List

import sqlalchemy as sa
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revisionable.exceptions import ReconcileError, StorageError
from revisionable.logging import performance_monitor, track_revision_operation
from revisionable.revisions.encoder import EntitySnapshot, decode
from revisionable.revisions.options import AssociationTree, subtree
from revisionable.storage.mapping import (
    AssociationKind,
    column_keys,
    describe_association,
    find_subclass,
    has_association,
    instance_identity,
)
from revisionable.storage.models import RevisionRecord

log = logger.bind(component="restore")


def _fill(collection: Any, items: Iterable[Any]) -> None:
    add = getattr(collection, "append", None) or collection.add
    for item in items:
        add(item)


def _coerce(entity_class: type, key: str, value: Any) -> Any:
    """Turn stored enum names back into members of the column's enum class."""
    if not isinstance(value, str):
        return value
    column_type = sa.inspect(entity_class).column_attrs[key].columns[0].type
    enum_class = getattr(column_type, "enum_class", None)
    if enum_class is not None and value in enum_class.__members__:
        return enum_class[value]
    return value


class RestoreEngine:
    """
    Turns revision snapshots back into entities and reconciles them with
    live storage.
    """

    def restore(self, record: RevisionRecord, entity_class: type) -> Any:
        """
        Decode a revision into a detached entity graph.

        Args:
            record: Revision to restore
            entity_class: Mapped class registered for the revision's type

        Returns:
            Transient instance of ``entity_class`` (or a mapped subclass)
        """
        snapshot = decode(record.data)
        log.debug(
            f"Restoring revision {record.revision} of "
            f"{record.revisionable_type}:{record.revisionable_id}"
        )
        return self.materialize(snapshot, entity_class)

    def materialize(self, snapshot: EntitySnapshot, entity_class: type) -> Any:
        """
        Build transient mapped instances from a snapshot graph.

        Fields the snapshot holds that are no longer mapped are listed as
        ``"Class.name"`` on the root's ``skipped_on_restore`` attribute.
        """
        skipped: List[str] = []
        instance = self._materialize(snapshot, entity_class, {}, skipped)
        instance.skipped_on_restore = skipped
        return instance

    def _materialize(
        self,
        snapshot: EntitySnapshot,
        entity_class: type,
        memo: Dict[int, Any],
        skipped: List[str],
    ) -> Any:
        if id(snapshot) in memo:
            return memo[id(snapshot)]

        cls = find_subclass(entity_class, snapshot.type_name)
        instance = sa.inspect(cls).class_manager.new_instance()
        memo[id(snapshot)] = instance

        columns = set(column_keys(cls))
        for key, value in snapshot.attributes.items():
            if key not in columns:
                log.warning(f"Skipping attribute '{key}' no longer mapped on {cls.__name__}")
                skipped.append(f"{cls.__name__}.{key}")
                continue
            setattr(instance, key, _coerce(cls, key, value))

        for name, value in snapshot.associations.items():
            if not has_association(cls, name):
                log.warning(f"Skipping association '{name}' no longer mapped on {cls.__name__}")
                skipped.append(f"{cls.__name__}.{name}")
                continue
            info = describe_association(cls, name)
            if info.kind is AssociationKind.SINGULAR:
                if isinstance(value, list):
                    value = value[0] if value else None
                setattr(
                    instance,
                    name,
                    self._materialize(value, info.target, memo, skipped)
                    if value is not None
                    else None,
                )
            else:
                if value is None:
                    value = []
                elif not isinstance(value, list):
                    value = [value]
                children = [self._materialize(c, info.target, memo, skipped) for c in value]
                # Backrefs may already have appended some children
                collection = getattr(instance, name)
                collection.clear()
                _fill(collection, children)

        return instance

    def validate_tree(self, entity_class: type, associations: AssociationTree) -> None:
        """
        Check that every association in the tree is still mapped.

        Raises:
            ReconcileError: On the first association missing from the mapping
        """
        for name, nested in associations.items():
            info = describe_association(entity_class, name)
            self.validate_tree(info.target, subtree(nested))

    @track_revision_operation("reconcile", component="restore")
    @performance_monitor()
    def reconcile(
        self, session: Session, restored: Any, associations: AssociationTree
    ) -> Any:
        """
        Write a restored graph onto live storage.

        Runs depth-first with autoflush suspended and flushes once at the end,
        so a failure anywhere leaves the enclosing transaction to unwind the
        whole subtree.

        Args:
            session: Session of the enclosing transaction
            restored: Detached entity produced by ``restore``
            associations: Association tree to reconcile

        Returns:
            The live, persistent root entity

        Raises:
            ReconcileError: If the tree names an association that is not mapped
            StorageError: If flushing the reconciled graph fails
        """
        self.validate_tree(type(restored), associations)

        memo: Dict[int, Any] = {}
        try:
            with session.no_autoflush:
                live = self._reconcile(session, restored, associations, memo)
            session.flush()
        except SQLAlchemyError as e:
            log.error(f"Failed to reconcile {type(restored).__name__}: {e}")
            raise StorageError(f"Could not save restored graph: {e}") from e

        return live

    def _find_live(self, session: Session, restored: Any) -> Any:
        identity = instance_identity(restored)
        if any(value is None for value in identity):
            return None
        key = identity if len(identity) > 1 else identity[0]
        return session.get(type(restored), key)

    def _reconcile(
        self,
        session: Session,
        restored: Any,
        associations: AssociationTree,
        memo: Dict[int, Any],
    ) -> Any:
        if id(restored) in memo:
            return memo[id(restored)]

        cls = type(restored)
        live = self._find_live(session, restored)
        if live is None:
            live = sa.inspect(cls).class_manager.new_instance()
            session.add(live)
            log.debug(f"Recreating {cls.__name__} {instance_identity(restored)}")
        memo[id(restored)] = live

        restored_values = sa.inspect(restored).dict
        for key in column_keys(cls):
            if key in restored_values:
                setattr(live, key, restored_values[key])

        for name, nested in associations.items():
            if name not in restored_values:
                # Not captured by this revision; leave the live side alone.
                continue
            info = describe_association(cls, name)
            value = restored_values[name]
            nested_tree = subtree(nested)

            if info.kind is AssociationKind.SINGULAR:
                self._reconcile_singular(session, live, info, value, nested_tree, memo)
            elif info.kind is AssociationKind.ORDERED:
                self._reconcile_ordered(session, live, info, value, nested_tree, memo)
            else:
                self._reconcile_members(session, live, info, value, nested_tree, memo)

        return live

    def _reconcile_singular(self, session, live, info, value, nested_tree, memo) -> None:
        current = getattr(live, info.name)
        child = (
            self._reconcile(session, value, nested_tree, memo) if value is not None else None
        )
        if current is not None and current is not child and info.owns_children:
            session.delete(current)
        setattr(live, info.name, child)

    def _reconcile_ordered(self, session, live, info, value, nested_tree, memo) -> None:
        children: List[Any] = [
            self._reconcile(session, child, nested_tree, memo) for child in value
        ]
        keep = {id(child) for child in children}

        collection = getattr(live, info.name)
        for current in list(collection):
            if id(current) in keep:
                continue
            collection.remove(current)
            if info.owns_children:
                session.delete(current)
            log.debug(f"Removed {type(current).__name__} from {info.name}")

        # Replace the contents in restored order
        collection.clear()
        _fill(collection, children)
        if hasattr(collection, "reorder"):
            collection.reorder()

    def _reconcile_members(self, session, live, info, value, nested_tree, memo) -> None:
        members = []
        for restored_member in value:
            if id(restored_member) in memo:
                members.append(memo[id(restored_member)])
                continue
            existing = self._find_live(session, restored_member)
            if existing is not None:
                memo[id(restored_member)] = existing
                members.append(existing)
            else:
                members.append(
                    self._reconcile(session, restored_member, nested_tree, memo)
                )

        collection = getattr(live, info.name)
        collection.clear()
        _fill(collection, members)

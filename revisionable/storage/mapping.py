"""
Association and identity metadata for mapped entity classes.

Association kinds are derived once per (class, name) from the SQLAlchemy
mapper and handed to the restore engine as an explicit enum.
"""

import functools
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.orm import RelationshipDirection

from revisionable.exceptions import ReconcileError


class AssociationKind(str, Enum):
    """How an association holds its children."""

    SINGULAR = "singular"
    ORDERED = "ordered"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True)
class AssociationInfo:
    """
    Metadata for one association of a mapped class.

    Attributes:
        name: Relationship attribute name
        kind: Association kind
        owns_children: Whether removed children are deleted rather than detached
        target: Mapped class of the associated entities
    """

    name: str
    kind: AssociationKind
    owns_children: bool
    target: type


@functools.lru_cache(maxsize=None)
def describe_association(entity_class: type, name: str) -> AssociationInfo:
    """
    Describe the association ``name`` of ``entity_class``.

    Raises:
        ReconcileError: If the class has no such relationship
    """
    mapper = sa.inspect(entity_class)
    if name not in mapper.relationships:
        raise ReconcileError(
            f"{entity_class.__name__} has no association named '{name}'"
        )
    rel = mapper.relationships[name]

    if rel.secondary is not None:
        kind = AssociationKind.MANY_TO_MANY
    elif rel.uselist:
        kind = AssociationKind.ORDERED
    else:
        kind = AssociationKind.SINGULAR

    owns = rel.direction is RelationshipDirection.ONETOMANY and (
        rel.cascade.delete or rel.cascade.delete_orphan
    )
    return AssociationInfo(
        name=name, kind=kind, owns_children=bool(owns), target=rel.mapper.class_
    )


def has_association(entity_class: type, name: str) -> bool:
    """Whether ``entity_class`` maps a relationship called ``name``."""
    return name in sa.inspect(entity_class).relationships


def column_keys(entity_class: type) -> List[str]:
    """Attribute keys of all mapped columns, in mapper order."""
    return [attr.key for attr in sa.inspect(entity_class).column_attrs]


def primary_key_keys(entity_class: type) -> List[str]:
    """Attribute keys of the primary key columns."""
    mapper = sa.inspect(entity_class)
    return [mapper.get_property_by_column(col).key for col in mapper.primary_key]


def type_tag(entity_class: type) -> str:
    """Type tag stored in ``revisionable_type``."""
    return entity_class.__name__


def identity_of(entity: Any) -> Optional[Tuple[Any, ...]]:
    """
    Persisted identity of an entity, or None if it was never flushed.

    Deleted entities keep their identity so the trash revision can be tied
    back to them.
    """
    state = sa.inspect(entity)
    if state.key is None:
        return None
    return tuple(state.key[1])


def instance_identity(entity: Any) -> Tuple[Any, ...]:
    """Primary key values currently set on an entity, persisted or not."""
    mapper = sa.inspect(type(entity))
    return tuple(mapper.primary_key_from_instance(entity))


def normalize_identity(entity_id: Any) -> Tuple[Any, ...]:
    """Turn a scalar or composite id into an identity tuple."""
    if isinstance(entity_id, (tuple, list)):
        return tuple(entity_id)
    return (entity_id,)


def identity_key(identity: Tuple[Any, ...]) -> str:
    """String form of an identity stored in ``revisionable_id``."""
    if len(identity) == 1:
        return str(identity[0])
    return json.dumps([str(value) for value in identity])


def find_subclass(entity_class: type, name: str) -> type:
    """
    Resolve a stored type name against ``entity_class`` and its mapped subclasses.

    Falls back to ``entity_class`` when nothing matches.
    """
    for mapper in sa.inspect(entity_class).self_and_descendants:
        if mapper.class_.__name__ == name:
            return mapper.class_
    return entity_class

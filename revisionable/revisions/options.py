"""
Per-type revision configuration.

``RevisionOptions`` is built once when a type is registered and looked up by
type tag at runtime.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Union

# association-name -> True | nested tree
AssociationTree = Dict[str, Union[bool, "AssociationTree"]]


def normalize_associations(declaration: Any) -> AssociationTree:
    """
    Normalize an association declaration into an association tree.

    Accepts a single name, a list of names and mappings, or a mapping whose
    values are ``True``, a name, a list or another mapping.

    Example:
        >>> normalize_associations(["tags", {"comments": ["ratings"]}])
        {'tags': True, 'comments': {'ratings': True}}
    """
    if declaration is None:
        return {}
    if isinstance(declaration, str):
        return {declaration: True}
    if isinstance(declaration, dict):
        tree: AssociationTree = {}
        for name, value in declaration.items():
            if value is True or value is None:
                tree[str(name)] = True
            elif value is False:
                continue
            else:
                nested = normalize_associations(value)
                tree[str(name)] = nested if nested else True
        return tree
    if isinstance(declaration, (list, tuple, set, frozenset)):
        tree = {}
        for item in declaration:
            tree.update(normalize_associations(item))
        return tree
    raise TypeError(f"Invalid association declaration: {declaration!r}")


def subtree(value: Union[bool, AssociationTree]) -> AssociationTree:
    """Nested tree for an association entry (``True`` means no nesting)."""
    return value if isinstance(value, dict) else {}


@dataclass
class RevisionOptions:
    """
    Revision behaviour of one entity type.

    Attributes:
        limit: Maximum number of revisions kept per record (None = unlimited)
        minimum_age: Revisions younger than this survive truncation
        associations: Association tree captured with each snapshot
        label: Callable producing a display label from the entity
        keep_trash: Keep a trashed revision when the entity is deleted
        compress: Write compressed snapshots (None = use global config)
    """

    limit: Optional[int] = None
    minimum_age: Optional[Union[timedelta, int, float]] = None
    associations: Any = field(default_factory=dict)
    label: Optional[Callable[[Any], str]] = None
    keep_trash: bool = False
    compress: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")
        if isinstance(self.minimum_age, (int, float)):
            self.minimum_age = timedelta(seconds=self.minimum_age)
        self.associations = normalize_associations(self.associations)

    def label_for(self, entity: Any) -> Optional[str]:
        """Display label for a revision of ``entity``."""
        if self.label is None:
            return None
        return str(self.label(entity))

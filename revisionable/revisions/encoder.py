"""
Snapshot encoding for revision records.

A snapshot blob is self-describing: the magic bytes ``RV``, one format
version byte and the payload. The payload is a flat table of entities keyed
by reference, so shared and cyclic references are written once.

Format versions:
    1: UTF-8 JSON payload
    2: zlib-compressed JSON payload (current)
"""

import base64
import json
import zlib
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import UUID

from revisionable.exceptions import DecodeError, UnsupportedVersionError
from revisionable.logging import performance_monitor
from revisionable.revisions.options import AssociationTree, subtree
from revisionable.storage.mapping import (
    AssociationKind,
    column_keys,
    describe_association,
    has_association,
    instance_identity,
    type_tag,
)

MAGIC = b"RV"
FORMAT_VERSION = 2
PLAIN_FORMAT_VERSION = 1

AssociationValue = Union[None, "EntitySnapshot", List["EntitySnapshot"]]


@dataclass(eq=False)
class EntitySnapshot:
    """
    Decoded state of one entity in a snapshot graph.

    Attributes:
        type_name: Class name of the entity when it was captured
        identity: Primary key values
        attributes: Column values keyed by attribute name
        associations: Captured associations (single snapshot, list or None)
    """

    type_name: str
    identity: Tuple[Any, ...]
    attributes: Dict[str, Any] = field(default_factory=dict)
    associations: Dict[str, AssociationValue] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Nested plain representation; repeated entities collapse to a reference."""
        return self._to_dict(set())

    def _to_dict(self, seen: set) -> Dict[str, Any]:
        if id(self) in seen:
            return {"$ref": [self.type_name, list(self.identity)]}
        seen = seen | {id(self)}

        associations: Dict[str, Any] = {}
        for name, value in self.associations.items():
            if value is None:
                associations[name] = None
            elif isinstance(value, list):
                associations[name] = [child._to_dict(seen) for child in value]
            else:
                associations[name] = value._to_dict(seen)

        return {
            "type": self.type_name,
            "identity": list(self.identity),
            "attributes": dict(self.attributes),
            "associations": associations,
        }


# Value tags -----------------------------------------------------------------


def _dump_value(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, Enum):
        return {"$enum": value.name}
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, datetime):
        return {"$datetime": value.isoformat()}
    if isinstance(value, date):
        return {"$date": value.isoformat()}
    if isinstance(value, time):
        return {"$time": value.isoformat()}
    if isinstance(value, timedelta):
        return {"$timedelta": value.total_seconds()}
    if isinstance(value, Decimal):
        return {"$decimal": str(value)}
    if isinstance(value, UUID):
        return {"$uuid": str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"$bytes": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, (list, tuple)):
        return [_dump_value(item) for item in value]
    if isinstance(value, dict):
        return {"$map": {str(k): _dump_value(v) for k, v in value.items()}}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


_TAG_LOADERS: Dict[str, Callable[[Any], Any]] = {
    "$enum": str,
    "$datetime": datetime.fromisoformat,
    "$date": date.fromisoformat,
    "$time": time.fromisoformat,
    "$timedelta": lambda seconds: timedelta(seconds=seconds),
    "$decimal": Decimal,
    "$uuid": UUID,
    "$bytes": lambda text: base64.b64decode(text.encode("ascii")),
}


def _load_value(value: Any) -> Any:
    if isinstance(value, list):
        return [_load_value(item) for item in value]
    if not isinstance(value, dict):
        return value
    if len(value) != 1:
        raise DecodeError(f"Untagged mapping in snapshot: {sorted(value)}")
    tag, raw = next(iter(value.items()))
    if tag == "$map":
        return {k: _load_value(v) for k, v in raw.items()}
    loader = _TAG_LOADERS.get(tag)
    if loader is None:
        raise DecodeError(f"Unknown value tag in snapshot: {tag}")
    return loader(raw)


# Encoding -------------------------------------------------------------------


class _GraphWriter:
    """Collects entities into the flat reference table."""

    def __init__(self) -> None:
        self.entities: Dict[str, Dict[str, Any]] = {}
        self._refs: Dict[Any, str] = {}

    def write(self, entity: Any, tree: AssociationTree) -> str:
        identity = instance_identity(entity)
        if all(value is not None for value in identity):
            memo_key: Any = (type(entity), identity)
        else:
            memo_key = id(entity)
        if memo_key in self._refs:
            return self._refs[memo_key]

        ref = str(len(self._refs))
        self._refs[memo_key] = ref

        entity_class = type(entity)
        record: Dict[str, Any] = {
            "type": type_tag(entity_class),
            "identity": [_dump_value(v) for v in identity],
            "attributes": {
                key: _dump_value(getattr(entity, key))
                for key in column_keys(entity_class)
            },
            "associations": {},
        }
        self.entities[ref] = record

        for name, nested in tree.items():
            if not has_association(entity_class, name):
                raise ValueError(
                    f"{entity_class.__name__} has no association named '{name}'"
                )
            value = getattr(entity, name)
            nested_tree = subtree(nested)
            if value is None:
                record["associations"][name] = None
            elif describe_association(entity_class, name).kind is not (
                AssociationKind.SINGULAR
            ):
                record["associations"][name] = [
                    self.write(child, nested_tree) for child in value
                ]
            else:
                record["associations"][name] = self.write(value, nested_tree)

        return ref


@performance_monitor(threshold_ms=500.0)
def encode(
    entity: Any,
    associations: Optional[AssociationTree] = None,
    compress: bool = True,
) -> bytes:
    """
    Serialize an entity and the associations named in ``associations``.

    Args:
        entity: Mapped instance to capture
        associations: Association tree; unnamed associations are omitted
        compress: Write format v2 (zlib) instead of v1 (plain JSON)

    Returns:
        Versioned snapshot blob
    """
    writer = _GraphWriter()
    root = writer.write(entity, associations or {})
    payload = json.dumps(
        {"root": root, "entities": writer.entities},
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")

    if compress:
        return MAGIC + bytes([FORMAT_VERSION]) + zlib.compress(payload)
    return MAGIC + bytes([PLAIN_FORMAT_VERSION]) + payload


# Decoding -------------------------------------------------------------------


def _decode_v1(body: bytes) -> Dict[str, Any]:
    return json.loads(body.decode("utf-8"))


def _decode_v2(body: bytes) -> Dict[str, Any]:
    return json.loads(zlib.decompress(body).decode("utf-8"))


_PAYLOAD_DECODERS: Dict[int, Callable[[bytes], Dict[str, Any]]] = {
    1: _decode_v1,
    2: _decode_v2,
}


def format_version(blob: bytes) -> int:
    """Format version byte of a snapshot blob."""
    if not isinstance(blob, (bytes, bytearray, memoryview)):
        raise DecodeError(f"Snapshot must be bytes, got {type(blob).__name__}")
    blob = bytes(blob)
    if len(blob) < len(MAGIC) + 1 or blob[: len(MAGIC)] != MAGIC:
        raise DecodeError("Snapshot header is missing or truncated")
    return blob[len(MAGIC)]


def decode(blob: bytes) -> EntitySnapshot:
    """
    Deserialize a snapshot blob into an ``EntitySnapshot`` graph.

    Raises:
        UnsupportedVersionError: If the blob was written by a newer format
        DecodeError: If the blob is malformed or truncated
    """
    version = format_version(blob)
    decoder = _PAYLOAD_DECODERS.get(version)
    if decoder is None:
        if version > FORMAT_VERSION:
            raise UnsupportedVersionError(version, FORMAT_VERSION)
        raise DecodeError(f"Unknown snapshot format version {version}")

    try:
        payload = decoder(bytes(blob)[len(MAGIC) + 1 :])
    except (ValueError, zlib.error) as e:
        raise DecodeError(f"Could not read snapshot payload: {e}") from e

    try:
        return _build_graph(payload)
    except DecodeError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise DecodeError(f"Malformed snapshot payload: {e}") from e


def _build_graph(payload: Dict[str, Any]) -> EntitySnapshot:
    entities = payload["entities"]
    snapshots = {
        ref: EntitySnapshot(
            type_name=record["type"],
            identity=tuple(_load_value(v) for v in record["identity"]),
            attributes={k: _load_value(v) for k, v in record["attributes"].items()},
        )
        for ref, record in entities.items()
    }

    for ref, record in entities.items():
        associations = snapshots[ref].associations
        for name, value in record["associations"].items():
            if value is None:
                associations[name] = None
            elif isinstance(value, list):
                associations[name] = [snapshots[child] for child in value]
            else:
                associations[name] = snapshots[value]

    return snapshots[payload["root"]]

"""Versioned byte encoding for ``FileNode`` trees.

Layout: one JSON header line followed by a JSON payload::

    {"version": 2, "format": "dirindex", "length": N, "sha256": "..."}\\n
    <N bytes of JSON: a flat list of node records in pre-order>

The header is decoded before the payload so incompatible versions are
rejected without parsing the tree. Each record carries ``name``, ``type``,
``size`` and, when non-default, ``ignored_size``, ``error`` and
``child_count``; a directory's children are the ``child_count`` subtrees that
follow it. The flat layout keeps encoding and decoding independent of tree
depth. Unknown record keys are ignored, so adding fields does not need a new
version.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field

from ..errors import CorruptIndexError, VersionMismatchError, WarningKind
from .types import FileNode, NodeType

FORMAT_NAME = "dirindex"
FORMAT_VERSION = 2

_JSON_SEPARATORS = (",", ":")


def _node_record(node: FileNode) -> dict[str, object]:
    record: dict[str, object] = {
        "name": node.name,
        "type": node.node_type.value,
        "size": node.size,
    }
    if node.ignored_size:
        record["ignored_size"] = node.ignored_size
    if node.error is not None:
        record["error"] = node.error.value
    if node.children:
        record["child_count"] = len(node.children)
    return record


def _tree_records(tree: FileNode) -> list[dict[str, object]]:
    records: list[dict[str, object]] = []
    stack = [tree]
    while stack:
        node = stack.pop()
        records.append(_node_record(node))
        stack.extend(reversed(node.children))
    return records


def serialize(tree: FileNode) -> bytes:
    """Encode ``tree`` into the persisted byte form."""
    payload = json.dumps(_tree_records(tree), separators=_JSON_SEPARATORS).encode("ascii")
    header = {
        "version": FORMAT_VERSION,
        "format": FORMAT_NAME,
        "length": len(payload),
        "sha256": hashlib.sha256(payload).hexdigest(),
    }
    return json.dumps(header, separators=_JSON_SEPARATORS).encode("ascii") + b"\n" + payload


@dataclass
class _PendingNode:
    """Decoded record fields plus the children collected so far."""

    name: str
    node_type: NodeType
    size: int
    ignored_size: int
    error: WarningKind | None
    child_count: int
    children: list[FileNode] = field(default_factory=list)

    def finish(self) -> FileNode:
        try:
            return FileNode(
                name=self.name,
                node_type=self.node_type,
                size=self.size,
                children=tuple(self.children),
                ignored_size=self.ignored_size,
                error=self.error,
            )
        except ValueError as exc:
            raise CorruptIndexError(str(exc)) from exc


def _int_field(raw: dict[str, object], key: str, default: int | None = None) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise CorruptIndexError(f"field {key!r} must be a non-negative integer, got {value!r}")
    return value


def _read_record(raw: object) -> _PendingNode:
    if not isinstance(raw, dict):
        raise CorruptIndexError(f"node record must be an object, got {type(raw).__name__}")

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise CorruptIndexError(f"invalid node name {name!r}")
    try:
        node_type = NodeType(raw.get("type"))
    except ValueError as exc:
        raise CorruptIndexError(f"{name}: unknown node type {raw.get('type')!r}") from exc

    error: WarningKind | None = None
    raw_error = raw.get("error")
    if raw_error is not None:
        try:
            error = WarningKind(raw_error)
        except ValueError as exc:
            raise CorruptIndexError(f"{name}: unknown error marker {raw_error!r}") from exc

    return _PendingNode(
        name=name,
        node_type=node_type,
        size=_int_field(raw, "size"),
        ignored_size=_int_field(raw, "ignored_size", 0),
        error=error,
        child_count=_int_field(raw, "child_count", 0),
    )


def _tree_from_records(records: object) -> FileNode:
    """Rebuild a tree from pre-order records using an explicit stack of open directories."""
    if not isinstance(records, list) or not records:
        raise CorruptIndexError("payload must be a non-empty list of node records")

    open_nodes: list[_PendingNode] = []
    root: FileNode | None = None
    for position, raw in enumerate(records):
        if root is not None:
            raise CorruptIndexError(f"unexpected record {position} after the root node")
        pending = _read_record(raw)
        if pending.child_count:
            open_nodes.append(pending)
            continue

        node = pending.finish()
        while open_nodes:
            parent = open_nodes[-1]
            parent.children.append(node)
            if len(parent.children) < parent.child_count:
                break
            open_nodes.pop()
            node = parent.finish()
        else:
            root = node

    if root is None:
        raise CorruptIndexError("payload ends inside an unfinished directory")
    return root


def _read_header(header_bytes: bytes) -> dict[str, object]:
    try:
        header = json.loads(header_bytes)
    except ValueError as exc:
        raise CorruptIndexError(f"unreadable header: {exc}") from exc
    if not isinstance(header, dict) or "version" not in header:
        raise CorruptIndexError("missing format header")

    version = header["version"]
    if isinstance(version, bool) or not isinstance(version, int):
        raise CorruptIndexError(f"invalid version field {version!r}")
    if version != FORMAT_VERSION:
        raise VersionMismatchError(version, FORMAT_VERSION)
    if header.get("format") != FORMAT_NAME:
        raise CorruptIndexError(f"not a {FORMAT_NAME} payload")
    return header


def deserialize(data: bytes) -> FileNode:
    """Decode bytes produced by ``serialize``.

    Raises ``VersionMismatchError`` for other format versions and
    ``CorruptIndexError`` for anything truncated, damaged, or invalid.
    """
    data = bytes(data)
    header_bytes, separator, payload = data.partition(b"\n")
    if not separator:
        raise CorruptIndexError("missing format header")
    header = _read_header(header_bytes)

    length = header.get("length")
    if isinstance(length, bool) or not isinstance(length, int):
        raise CorruptIndexError(f"invalid length field {length!r}")
    if len(payload) < length:
        raise CorruptIndexError(f"truncated payload: {len(payload)} of {length} bytes")
    if len(payload) > length:
        raise CorruptIndexError(f"unexpected trailing data after {length} bytes")
    if hashlib.sha256(payload).hexdigest() != header.get("sha256"):
        raise CorruptIndexError("payload checksum mismatch")

    try:
        records = json.loads(payload)
    except (ValueError, RecursionError) as exc:
        raise CorruptIndexError(f"unreadable payload: {exc}") from exc
    return _tree_from_records(records)


__all__ = [
    "FORMAT_NAME",
    "FORMAT_VERSION",
    "serialize",
    "deserialize",
]

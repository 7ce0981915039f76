"""Domain datatypes for indexed file/directory trees."""

from __future__ import annotations

import enum
from collections.abc import Iterator
from dataclasses import dataclass

from ..errors import WarningKind


class NodeType(enum.Enum):
    FILE = "file"
    DIRECTORY = "dir"


def child_sort_key(name: str) -> tuple[str, str]:
    """Deterministic child ordering: case-insensitive, then exact name."""
    return name.casefold(), name


@dataclass(frozen=True)
class FileNode:
    """One indexed filesystem entry.

    Directory ``size`` covers every descendant file on disk, including bytes
    hidden by gitignore rules. Those hidden bytes are kept in ``ignored_size``
    so ``size == children_size + ignored_size`` always holds. ``children``
    only lists retained entries, sorted by ``child_sort_key``.

    Construction validates these invariants and raises ``ValueError`` on
    violation; nodes are immutable afterwards.
    """

    name: str
    node_type: NodeType
    size: int
    children: tuple["FileNode", ...] = ()
    ignored_size: int = 0
    error: WarningKind | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("node name must not be empty")
        if isinstance(self.size, bool) or not isinstance(self.size, int) or self.size < 0:
            raise ValueError(f"{self.name}: size must be a non-negative int")
        if isinstance(self.ignored_size, bool) or not isinstance(self.ignored_size, int) or self.ignored_size < 0:
            raise ValueError(f"{self.name}: ignored_size must be a non-negative int")
        if self.node_type is NodeType.FILE:
            if self.children:
                raise ValueError(f"{self.name}: file nodes cannot have children")
            if self.ignored_size:
                raise ValueError(f"{self.name}: file nodes cannot have ignored bytes")
            return

        seen: set[str] = set()
        total = 0
        for child in self.children:
            if child.name in seen:
                raise ValueError(f"{self.name}: duplicate child name {child.name!r}")
            seen.add(child.name)
            total += child.size
        if self.size != total + self.ignored_size:
            raise ValueError(
                f"{self.name}: size {self.size} != children {total} + ignored {self.ignored_size}"
            )

    @property
    def is_dir(self) -> bool:
        return self.node_type is NodeType.DIRECTORY

    @property
    def children_size(self) -> int:
        return sum(child.size for child in self.children)

    @property
    def ignored_subtree_size(self) -> int:
        """Bytes excluded by gitignore at or below this node, reconstructed from sizes."""
        return self.size - self.children_size

    def child(self, name: str) -> FileNode | None:
        for candidate in self.children:
            if candidate.name == name:
                return candidate
        return None

    def walk(self) -> Iterator[tuple[str, FileNode]]:
        """Yield ``(relative_path, node)`` for every descendant in pre-order.

        Paths are ``/``-joined and relative to this node, which is not yielded.
        """
        stack: list[tuple[str, FileNode]] = [
            (child.name, child) for child in reversed(self.children)
        ]
        while stack:
            path, node = stack.pop()
            yield path, node
            for child in reversed(node.children):
                stack.append((f"{path}/{child.name}", child))

    def node_count(self) -> int:
        return 1 + sum(1 for _ in self.walk())


def file_node(name: str, size: int, error: WarningKind | None = None) -> FileNode:
    return FileNode(name=name, node_type=NodeType.FILE, size=size, error=error)


def directory_node(
    name: str,
    children: list[FileNode] | tuple[FileNode, ...] = (),
    ignored_size: int = 0,
    error: WarningKind | None = None,
) -> FileNode:
    """Build a directory node, sorting children and deriving ``size``."""
    ordered = tuple(sorted(children, key=lambda child: child_sort_key(child.name)))
    size = sum(child.size for child in ordered) + ignored_size
    return FileNode(
        name=name,
        node_type=NodeType.DIRECTORY,
        size=size,
        children=ordered,
        ignored_size=ignored_size,
        error=error,
    )


__all__ = [
    "NodeType",
    "FileNode",
    "child_sort_key",
    "file_node",
    "directory_node",
]

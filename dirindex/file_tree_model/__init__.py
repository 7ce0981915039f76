"""Domain model for indexed file/directory trees.

This package contains the non-search tree primitives:
- immutable file/directory node datatypes
- filesystem listing helpers shared by all traversal modes
- the parallel gitignore-aware tree builder
- the versioned byte serializer
"""

from __future__ import annotations

from .types import FileNode, NodeType, child_sort_key, directory_node, file_node
from .fs import DirectoryChild, root_name, scan_directory
from .build import (
    DEFAULT_FAN_OUT_THRESHOLD,
    IndexOptions,
    IndexResult,
    SizeResult,
    TreeBuilder,
    build_index,
    measure_size,
)
from .serialize import FORMAT_VERSION, deserialize, serialize

__all__ = [
    "FileNode",
    "NodeType",
    "child_sort_key",
    "directory_node",
    "file_node",
    "DirectoryChild",
    "root_name",
    "scan_directory",
    "DEFAULT_FAN_OUT_THRESHOLD",
    "IndexOptions",
    "IndexResult",
    "SizeResult",
    "TreeBuilder",
    "build_index",
    "measure_size",
    "FORMAT_VERSION",
    "serialize",
    "deserialize",
]

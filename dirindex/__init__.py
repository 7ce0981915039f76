"""Public package surface for dirindex.

Index a directory tree with gitignore-aware size aggregation, persist it,
and fuzzy-search node names. Implementation lives in submodules.
"""

from __future__ import annotations

from .errors import (
    BuildCancelledError,
    CorruptIndexError,
    IndexBuildError,
    IndexWarning,
    RootInaccessibleError,
    SerializationError,
    VersionMismatchError,
    WarningKind,
)
from .file_tree_model import (
    FileNode,
    IndexOptions,
    IndexResult,
    NodeType,
    SizeResult,
    build_index,
    deserialize,
    measure_size,
    serialize,
)
from .search import FuzzySearchEngine, SearchResult, search


def main(*args, **kwargs):
    """Lazily import CLI entrypoint to keep package imports lightweight."""
    from .cli import main as _main

    return _main(*args, **kwargs)


__all__ = [
    "BuildCancelledError",
    "CorruptIndexError",
    "IndexBuildError",
    "IndexWarning",
    "RootInaccessibleError",
    "SerializationError",
    "VersionMismatchError",
    "WarningKind",
    "FileNode",
    "IndexOptions",
    "IndexResult",
    "NodeType",
    "SizeResult",
    "build_index",
    "deserialize",
    "measure_size",
    "serialize",
    "FuzzySearchEngine",
    "SearchResult",
    "search",
    "main",
]

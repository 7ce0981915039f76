from __future__ import annotations

import heapq
import threading
import weakref
from collections.abc import Iterator
from dataclasses import dataclass
from functools import partial

from ..file_tree_model.types import FileNode, NodeType

MATCH_SCORE = 16
CONSECUTIVE_BONUS = 12
BOUNDARY_BONUS = 10
MAX_GAP_PENALTY = 8
PROXIMITY_BONUS = 16
PROXIMITY_STEP = 2
LENGTH_RATIO_BONUS = 32
BOUNDARY_CHARS = "/_-. "

_UNREACHABLE = -(1 << 30)


def is_subsequence(query_folded: str, candidate_folded: str) -> bool:
    idx = -1
    for needle in query_folded:
        idx = candidate_folded.find(needle, idx + 1)
        if idx < 0:
            return False
    return True


def _score_folded(query_folded: str, candidate_folded: str) -> int | None:
    """Best alignment score of ``query_folded`` as a subsequence of ``candidate_folded``.

    ``row[j]`` is the best score with the current query character matched at
    ``j``. Gaps cost ``min(gap, MAX_GAP_PENALTY)``, tracked with two running
    maxima so each row is linear in the candidate length.
    """
    if not query_folded or not is_subsequence(query_folded, candidate_folded):
        return None

    length = len(candidate_folded)
    boundary = [idx == 0 or candidate_folded[idx - 1] in BOUNDARY_CHARS for idx in range(length)]

    first = query_folded[0]
    row = [_UNREACHABLE] * length
    for idx, char in enumerate(candidate_folded):
        if char == first:
            row[idx] = (
                MATCH_SCORE
                + (BOUNDARY_BONUS if boundary[idx] else 0)
                + max(0, PROXIMITY_BONUS - PROXIMITY_STEP * idx)
            )

    for needle in query_folded[1:]:
        prev = row
        row = [_UNREACHABLE] * length
        gapped_linear = _UNREACHABLE
        gapped_capped = _UNREACHABLE
        for idx, char in enumerate(candidate_folded):
            if idx >= 2:
                gapped_linear = max(gapped_linear - 1, prev[idx - 2] - 1)
                gapped_capped = max(gapped_capped, prev[idx - 2] - MAX_GAP_PENALTY)
            if char != needle:
                continue
            best = max(gapped_linear, gapped_capped)
            if idx >= 1 and prev[idx - 1] > _UNREACHABLE:
                best = max(best, prev[idx - 1] + CONSECUTIVE_BONUS)
            if best <= _UNREACHABLE // 2:
                continue
            row[idx] = best + MATCH_SCORE + (BOUNDARY_BONUS if boundary[idx] else 0)

    best_alignment = max(row)
    return best_alignment + (LENGTH_RATIO_BONUS * len(query_folded)) // length


def fuzzy_score(query: str, candidate: str) -> int | None:
    """Score ``candidate`` for ``query``; ``None`` when it does not match.

    Matching is case-insensitive subsequence matching. Scores are positive
    and reward contiguous runs, word-boundary hits, matches near the start of
    the name, and short names.
    """
    return _score_folded(query.casefold(), candidate.casefold())


@dataclass(frozen=True)
class SearchResult:
    path: str
    node_type: NodeType
    size: int
    score: int


@dataclass(frozen=True)
class _IndexEntry:
    path: str
    name_folded: str
    node: FileNode


def _ranking_key(item: tuple[int, _IndexEntry]) -> tuple[int, int, str]:
    score, entry = item
    return -score, len(entry.path), entry.path


class SearchIndex:
    """Flattened ``(path, folded name, node)`` list for one tree.

    The root itself is not indexed; paths are relative to it. The index does
    not reference the root node, so caching it does not keep a tree alive.
    """

    def __init__(self, entries: tuple[_IndexEntry, ...]) -> None:
        self.entries = entries

    @classmethod
    def from_tree(cls, tree: FileNode) -> SearchIndex:
        return cls(
            tuple(
                _IndexEntry(path=path, name_folded=node.name.casefold(), node=node)
                for path, node in tree.walk()
            )
        )

    def __len__(self) -> int:
        return len(self.entries)

    def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """Rank matching entries by score, then shorter path, then path."""
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")
        if not query or limit == 0:
            return []

        query_folded = query.casefold()

        def iter_scored() -> Iterator[tuple[int, _IndexEntry]]:
            for entry in self.entries:
                score = _score_folded(query_folded, entry.name_folded)
                if score is None:
                    continue
                yield score, entry

        if limit is None:
            ranked = sorted(iter_scored(), key=_ranking_key)
        else:
            ranked = heapq.nsmallest(limit, iter_scored(), key=_ranking_key)
        return [
            SearchResult(
                path=entry.path,
                node_type=entry.node.node_type,
                size=entry.node.size,
                score=score,
            )
            for score, entry in ranked
        ]


class FuzzySearchEngine:
    """Ranked fuzzy name search over one built tree.

    The flattened index is built on the first query and reused afterwards.
    Safe to share between threads.
    """

    def __init__(self, tree: FileNode) -> None:
        self.tree = tree
        self._index: SearchIndex | None = None
        self._lock = threading.Lock()

    @property
    def index(self) -> SearchIndex:
        with self._lock:
            if self._index is None:
                self._index = SearchIndex.from_tree(self.tree)
            return self._index

    def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        return self.index.search(query, limit)


_SEARCH_INDEX_CACHE: dict[int, tuple[weakref.ref[FileNode], SearchIndex]] = {}
_SEARCH_INDEX_CACHE_LOCK = threading.RLock()


def _evict_search_index(key: int, ref: weakref.ref[FileNode]) -> None:
    with _SEARCH_INDEX_CACHE_LOCK:
        cached = _SEARCH_INDEX_CACHE.get(key)
        if cached is not None and cached[0] is ref:
            del _SEARCH_INDEX_CACHE[key]


def cached_search_index(tree: FileNode) -> SearchIndex:
    """Return the index for ``tree``, building it once per live tree object."""
    key = id(tree)
    with _SEARCH_INDEX_CACHE_LOCK:
        cached = _SEARCH_INDEX_CACHE.get(key)
        if cached is not None and cached[0]() is tree:
            return cached[1]
        index = SearchIndex.from_tree(tree)
        _SEARCH_INDEX_CACHE[key] = (weakref.ref(tree, partial(_evict_search_index, key)), index)
        return index


def clear_search_index_cache() -> None:
    with _SEARCH_INDEX_CACHE_LOCK:
        _SEARCH_INDEX_CACHE.clear()


def search(tree: FileNode, query: str, limit: int | None = None) -> list[SearchResult]:
    """Fuzzy-search node names under ``tree``; an empty query matches nothing."""
    return cached_search_index(tree).search(query, limit)


__all__ = [
    "SearchResult",
    "SearchIndex",
    "FuzzySearchEngine",
    "fuzzy_score",
    "is_subsequence",
    "cached_search_index",
    "clear_search_index_cache",
    "search",
]

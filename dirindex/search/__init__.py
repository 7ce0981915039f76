"""Search package exports.

Fuzzy name search over built ``FileNode`` trees.
"""

from __future__ import annotations

from .fuzzy import (
    FuzzySearchEngine,
    SearchIndex,
    SearchResult,
    cached_search_index,
    clear_search_index_cache,
    fuzzy_score,
    is_subsequence,
    search,
)

__all__ = [
    "FuzzySearchEngine",
    "SearchIndex",
    "SearchResult",
    "cached_search_index",
    "clear_search_index_cache",
    "fuzzy_score",
    "is_subsequence",
    "search",
]

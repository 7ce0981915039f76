"""Error taxonomy and non-fatal warnings raised or collected while indexing.

Fatal problems are exceptions; entry-level problems are ``IndexWarning``
records returned next to a successfully built tree.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path


class WarningKind(enum.Enum):
    """Kinds of non-fatal problems found during a build."""

    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    CYCLE_DETECTED = "cycle_detected"
    INVALID_GITIGNORE = "invalid_gitignore"


@dataclass(frozen=True)
class IndexWarning:
    """One non-fatal problem attached to ``path``."""

    kind: WarningKind
    path: Path
    reason: str | None = None

    def __str__(self) -> str:
        if self.reason:
            return f"{self.kind.value}: {self.path} ({self.reason})"
        return f"{self.kind.value}: {self.path}"


def warning_kind_for_os_error(exc: OSError) -> WarningKind:
    """Map an ``OSError`` raised by stat/scandir to a warning kind."""
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
        return WarningKind.NOT_FOUND
    return WarningKind.ACCESS_DENIED


class IndexBuildError(Exception):
    """Base class for fatal build failures."""


class RootInaccessibleError(IndexBuildError):
    """The indexed root could not be stat-ed or listed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"cannot index {path}: {reason}")
        self.path = path
        self.reason = reason


class BuildCancelledError(IndexBuildError):
    """The caller's cancellation signal fired before the build finished."""


class SerializationError(Exception):
    """Base class for persisted-index decode failures."""


class VersionMismatchError(SerializationError):
    def __init__(self, found: object, expected: int) -> None:
        super().__init__(f"unsupported index format version {found!r} (expected {expected})")
        self.found = found
        self.expected = expected


class CorruptIndexError(SerializationError):
    """Input bytes are truncated, damaged, or not a dirindex payload."""


__all__ = [
    "WarningKind",
    "IndexWarning",
    "warning_kind_for_os_error",
    "IndexBuildError",
    "RootInaccessibleError",
    "BuildCancelledError",
    "SerializationError",
    "VersionMismatchError",
    "CorruptIndexError",
]

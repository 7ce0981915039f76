"""Filesystem listing and stat helpers shared by full and sum-only traversal."""

from __future__ import annotations

import os
import stat as stat_module
from dataclasses import dataclass
from pathlib import Path

from ..errors import WarningKind, warning_kind_for_os_error

FileIdentity = tuple[int, int]


@dataclass(frozen=True)
class DirectoryChild:
    """One direct entry of a scanned directory plus stat metadata.

    ``size`` is the entry's byte length for non-directories and ``0`` for
    directories. ``identity`` is ``(st_dev, st_ino)`` for directories.
    ``error`` is set when the entry could not be stat-ed; ``is_dir`` then
    comes from the directory listing alone.
    """

    name: str
    path: Path
    is_dir: bool
    size: int = 0
    identity: FileIdentity | None = None
    error: WarningKind | None = None
    reason: str | None = None


def os_error_reason(exc: OSError) -> str:
    return exc.strerror or exc.__class__.__name__


def identity_of(stat_result: os.stat_result) -> FileIdentity:
    return int(stat_result.st_dev), int(stat_result.st_ino)


def root_name(root: Path) -> str:
    """Return the display name for an indexed root path."""
    absolute = Path(os.path.abspath(root))
    return absolute.name or str(absolute)


def _entry_is_dir_without_stat(entry: os.DirEntry) -> bool:
    """Best-effort directory check from the listing's own type information."""
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False


def _child_from_entry(entry: os.DirEntry, follow_symlinks: bool) -> DirectoryChild:
    name = entry.name
    path = Path(entry.path)
    try:
        entry_stat = entry.stat(follow_symlinks=follow_symlinks)
    except OSError as exc:
        return DirectoryChild(
            name=name,
            path=path,
            is_dir=_entry_is_dir_without_stat(entry),
            error=warning_kind_for_os_error(exc),
            reason=os_error_reason(exc),
        )

    if stat_module.S_ISDIR(entry_stat.st_mode):
        return DirectoryChild(name=name, path=path, is_dir=True, identity=identity_of(entry_stat))
    return DirectoryChild(name=name, path=path, is_dir=False, size=int(entry_stat.st_size))


def scan_directory(directory: Path, follow_symlinks: bool) -> tuple[list[DirectoryChild], OSError | None]:
    """List direct entries of ``directory`` with stat metadata.

    Returns ``(children, scan_error)``. ``scan_error`` is set when the
    directory itself cannot be listed; per-entry stat failures are reported on
    the individual ``DirectoryChild`` instead. Without ``follow_symlinks``
    symlinks are leaves sized by the link itself.
    """
    children: list[DirectoryChild] = []
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                children.append(_child_from_entry(entry, follow_symlinks))
    except OSError as exc:
        return [], exc
    return children, None


__all__ = [
    "FileIdentity",
    "DirectoryChild",
    "identity_of",
    "os_error_reason",
    "root_name",
    "scan_directory",
]

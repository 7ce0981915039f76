"""Parallel, gitignore-aware construction of ``FileNode`` trees.

Directory scans run on a bounded thread pool. Each task owns the records it
produces and hands them back to the coordinating thread together with any
child jobs it did not process itself; nothing mutable is shared between
workers. Once the walk is complete the coordinator folds the records
bottom-up, so the resulting tree is identical for every worker count and
completion order.

Ignored directories are walked by the same scan code in sum-only mode: their
bytes are added to the nearest retained ancestor's ``ignored_size`` without
materializing nodes.
"""

from __future__ import annotations

import logging
import os
import stat as stat_module
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import (
    BuildCancelledError,
    IndexWarning,
    RootInaccessibleError,
    WarningKind,
    warning_kind_for_os_error,
)
from ..gitignore import GitignorePolicy
from .fs import FileIdentity, identity_of, os_error_reason, root_name, scan_directory
from .types import FileNode, child_sort_key, directory_node, file_node

logger = logging.getLogger(__name__)

DEFAULT_FAN_OUT_THRESHOLD = 2

RelativeKey = tuple[str, ...]


def default_parallelism() -> int:
    return max(1, os.cpu_count() or 1)


@dataclass(frozen=True)
class IndexOptions:
    """Build settings.

    ``max_parallelism=None`` uses the available CPU count. Directories with
    fewer than ``fan_out_threshold`` subdirectories keep walking inside the
    current worker instead of submitting new pool tasks.
    """

    respect_gitignore: bool = True
    follow_symlinks: bool = False
    max_parallelism: int | None = None
    fan_out_threshold: int = DEFAULT_FAN_OUT_THRESHOLD

    def __post_init__(self) -> None:
        if self.max_parallelism is not None and self.max_parallelism < 1:
            raise ValueError("max_parallelism must be >= 1")
        if self.fan_out_threshold < 0:
            raise ValueError("fan_out_threshold must be >= 0")

    @property
    def worker_count(self) -> int:
        if self.max_parallelism is None:
            return default_parallelism()
        return self.max_parallelism


@dataclass(frozen=True)
class IndexResult:
    tree: FileNode
    warnings: tuple[IndexWarning, ...] = ()


@dataclass(frozen=True)
class SizeResult:
    path: Path
    size: int
    warnings: tuple[IndexWarning, ...] = ()


@dataclass(frozen=True)
class _DirectoryJob:
    """One directory to scan.

    ``policy`` is the parent's gitignore policy (``None`` when rules are not
    evaluated). ``ancestry`` holds identities of the directories above and
    including this one when symlinks are followed.
    """

    key: RelativeKey
    path: Path
    name: str
    policy: GitignorePolicy | None
    ancestry: frozenset[FileIdentity]
    materialize: bool


@dataclass
class _DirectoryRecord:
    """Owned scan result for one directory.

    ``unlisted_bytes`` counts direct files that get no node: ignored files in
    materializing mode and every file in sum-only mode.
    """

    key: RelativeKey
    name: str
    materialize: bool
    leaves: list[FileNode] = field(default_factory=list)
    subdirectories: list[RelativeKey] = field(default_factory=list)
    unlisted_bytes: int = 0
    warnings: list[IndexWarning] = field(default_factory=list)
    error: WarningKind | None = None
    reason: str | None = None


class TreeBuilder:
    """Walk one root with the configured options.

    ``should_cancel`` is polled before every directory scan; once it returns
    true outstanding work is dropped and ``BuildCancelledError`` is raised.
    """

    def __init__(
        self,
        options: IndexOptions | None = None,
        *,
        should_cancel: Callable[[], bool] | None = None,
    ) -> None:
        self.options = options or IndexOptions()
        self._should_cancel = should_cancel
        self._aborted = threading.Event()

    def _check_cancelled(self) -> None:
        if self._aborted.is_set() or (self._should_cancel is not None and self._should_cancel()):
            raise BuildCancelledError("index build cancelled")

    def _stat_root(self, root: Path) -> os.stat_result:
        try:
            return root.stat()
        except OSError as exc:
            raise RootInaccessibleError(root, os_error_reason(exc)) from exc

    def _root_job(self, root: Path, root_stat: os.stat_result, materialize: bool) -> _DirectoryJob:
        policy = GitignorePolicy() if materialize and self.options.respect_gitignore else None
        ancestry = frozenset({identity_of(root_stat)}) if self.options.follow_symlinks else frozenset()
        return _DirectoryJob(
            key=(),
            path=root,
            name=root_name(root),
            policy=policy,
            ancestry=ancestry,
            materialize=materialize,
        )

    def build(self, root_path: str | os.PathLike[str]) -> IndexResult:
        """Build the tree for ``root_path``.

        Raises ``RootInaccessibleError`` when the root cannot be read and
        ``BuildCancelledError`` when cancelled.
        """
        root = Path(root_path)
        started = time.monotonic()
        self._check_cancelled()
        root_stat = self._stat_root(root)
        if not stat_module.S_ISDIR(root_stat.st_mode):
            return IndexResult(tree=file_node(root_name(root), int(root_stat.st_size)))

        records = self._walk(self._root_job(root, root_stat, materialize=True))
        root_record = records[()]
        if root_record.error is not None:
            raise RootInaccessibleError(root, root_record.reason or root_record.error.value)

        tree = self._fold(records)
        warnings = self._ordered_warnings(records)
        assert isinstance(tree, FileNode)
        logger.info(
            "indexed %s: %d directories scanned, %d bytes, %d warnings in %.3fs",
            root,
            len(records),
            tree.size,
            len(warnings),
            time.monotonic() - started,
        )
        return IndexResult(tree=tree, warnings=warnings)

    def measure(self, root_path: str | os.PathLike[str]) -> SizeResult:
        """Return the total byte size under ``root_path`` without building nodes."""
        root = Path(root_path)
        self._check_cancelled()
        root_stat = self._stat_root(root)
        if not stat_module.S_ISDIR(root_stat.st_mode):
            return SizeResult(path=root, size=int(root_stat.st_size))

        records = self._walk(self._root_job(root, root_stat, materialize=False))
        root_record = records[()]
        if root_record.error is not None:
            raise RootInaccessibleError(root, root_record.reason or root_record.error.value)
        total = self._fold(records)
        assert isinstance(total, int)
        return SizeResult(path=root, size=total, warnings=self._ordered_warnings(records))

    def _walk(self, root_job: _DirectoryJob) -> dict[RelativeKey, _DirectoryRecord]:
        """Run all directory jobs and return their records keyed by relative path."""
        records: dict[RelativeKey, _DirectoryRecord] = {}
        self._aborted.clear()
        executor = ThreadPoolExecutor(
            max_workers=self.options.worker_count,
            thread_name_prefix="dirindex-scan",
        )
        pending: set[Future[tuple[list[_DirectoryRecord], list[_DirectoryJob]]]] = set()
        try:
            pending.add(executor.submit(self._run_task, root_job))
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    task_records, spawned = future.result()
                    for record in task_records:
                        records[record.key] = record
                    self._check_cancelled()
                    for job in spawned:
                        pending.add(executor.submit(self._run_task, job))
        except BaseException:
            self._aborted.set()
            for future in pending:
                future.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return records

    def _run_task(self, job: _DirectoryJob) -> tuple[list[_DirectoryRecord], list[_DirectoryJob]]:
        """Scan ``job`` and keep descending locally through narrow directories."""
        records: list[_DirectoryRecord] = []
        spawned: list[_DirectoryJob] = []
        stack = [job]
        while stack:
            self._check_cancelled()
            current = stack.pop()
            record, child_jobs = self._scan(current)
            records.append(record)
            if len(child_jobs) < self.options.fan_out_threshold:
                stack.extend(reversed(child_jobs))
            else:
                spawned.extend(child_jobs)
        return records, spawned

    def _scan(self, job: _DirectoryJob) -> tuple[_DirectoryRecord, list[_DirectoryJob]]:
        """Scan one directory, classifying entries into leaves, bytes, and child jobs."""
        record = _DirectoryRecord(key=job.key, name=job.name, materialize=job.materialize)
        policy = job.policy
        if policy is not None:
            policy, gitignore_warning = policy.descend(job.path)
            if gitignore_warning is not None:
                record.warnings.append(gitignore_warning)

        follow_symlinks = self.options.follow_symlinks
        children, scan_error = scan_directory(job.path, follow_symlinks)
        if scan_error is not None:
            record.error = warning_kind_for_os_error(scan_error)
            record.reason = os_error_reason(scan_error)
            record.warnings.append(IndexWarning(record.error, job.path, record.reason))
            return record, []

        children.sort(key=lambda item: child_sort_key(item.name))
        child_jobs: list[_DirectoryJob] = []
        for child in children:
            if child.error is not None:
                record.warnings.append(IndexWarning(child.error, child.path, child.reason))
                if job.materialize and not (policy is not None and policy.is_ignored(child.path, child.is_dir)):
                    if child.is_dir:
                        record.leaves.append(directory_node(child.name, error=child.error))
                    else:
                        record.leaves.append(file_node(child.name, 0, error=child.error))
                continue

            keep = job.materialize and not (policy is not None and policy.is_ignored(child.path, child.is_dir))
            if not child.is_dir:
                if keep:
                    record.leaves.append(file_node(child.name, child.size))
                else:
                    record.unlisted_bytes += child.size
                continue

            if follow_symlinks and child.identity in job.ancestry:
                record.warnings.append(
                    IndexWarning(WarningKind.CYCLE_DETECTED, child.path, "directory already on the current path")
                )
                if keep:
                    record.leaves.append(directory_node(child.name, error=WarningKind.CYCLE_DETECTED))
                continue

            ancestry = job.ancestry
            if follow_symlinks and child.identity is not None:
                ancestry = ancestry | {child.identity}
            child_key = job.key + (child.name,)
            record.subdirectories.append(child_key)
            child_jobs.append(
                _DirectoryJob(
                    key=child_key,
                    path=child.path,
                    name=child.name,
                    policy=policy if keep else None,
                    ancestry=ancestry,
                    materialize=keep,
                )
            )
        return record, child_jobs

    @staticmethod
    def _fold(records: dict[RelativeKey, _DirectoryRecord]) -> FileNode | int:
        """Merge records deepest-first into nodes (materialized) or byte totals (sum-only)."""
        results: dict[RelativeKey, FileNode | int] = {}
        for key in sorted(records, key=len, reverse=True):
            record = records[key]
            if not record.materialize:
                results[key] = record.unlisted_bytes + sum(
                    int(results.pop(sub_key)) for sub_key in record.subdirectories
                )
                continue

            children = list(record.leaves)
            ignored_size = record.unlisted_bytes
            for sub_key in record.subdirectories:
                sub_result = results.pop(sub_key)
                if isinstance(sub_result, FileNode):
                    children.append(sub_result)
                else:
                    ignored_size += sub_result
            results[key] = directory_node(record.name, children, ignored_size=ignored_size, error=record.error)
        return results[()]

    @staticmethod
    def _ordered_warnings(records: dict[RelativeKey, _DirectoryRecord]) -> tuple[IndexWarning, ...]:
        """Collect warnings in pre-order over the directory records."""
        ordered: list[IndexWarning] = []
        stack: list[RelativeKey] = [()]
        while stack:
            record = records[stack.pop()]
            ordered.extend(record.warnings)
            stack.extend(reversed(record.subdirectories))
        for warning in ordered:
            logger.debug("index warning: %s", warning)
        return tuple(ordered)


def build_index(
    root_path: str | os.PathLike[str],
    options: IndexOptions | None = None,
    *,
    should_cancel: Callable[[], bool] | None = None,
) -> IndexResult:
    """Index ``root_path`` into a ``FileNode`` tree plus non-fatal warnings."""
    return TreeBuilder(options, should_cancel=should_cancel).build(root_path)


def measure_size(
    root_path: str | os.PathLike[str],
    options: IndexOptions | None = None,
    *,
    should_cancel: Callable[[], bool] | None = None,
) -> SizeResult:
    """Sum every file byte under ``root_path`` without materializing a tree."""
    return TreeBuilder(options, should_cancel=should_cancel).measure(root_path)


__all__ = [
    "DEFAULT_FAN_OUT_THRESHOLD",
    "IndexOptions",
    "IndexResult",
    "SizeResult",
    "TreeBuilder",
    "build_index",
    "measure_size",
]

"""Tests for parallel gitignore-aware tree building and size aggregation."""

from __future__ import annotations

import itertools
import os
import tempfile
import threading
import unittest
from dataclasses import replace
from pathlib import Path
from unittest import mock

from dirindex.errors import BuildCancelledError, RootInaccessibleError, WarningKind
from dirindex.file_tree_model import FileNode, IndexOptions, NodeType, build_index, measure_size, scan_directory


def write_sized(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


def disk_total(root: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            total += os.lstat(os.path.join(dirpath, filename)).st_size
    return total


def iter_directories(node: FileNode):
    stack = [node]
    while stack:
        current = stack.pop()
        if current.is_dir:
            yield current
            stack.extend(current.children)


class TreeBuildTests(unittest.TestCase):
    def assertSizeInvariant(self, tree: FileNode) -> None:
        for directory in iter_directories(tree):
            self.assertEqual(
                directory.size,
                sum(child.size for child in directory.children) + directory.ignored_size,
                directory.name,
            )

    def test_ignored_directory_is_hidden_but_counted(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "a.txt", 10)
            write_sized(root / "b.txt", 20)
            write_sized(root / "sub" / "c.txt", 5)
            (root / ".gitignore").write_text("sub/\n", encoding="utf-8")

            result = build_index(root)

            tree = result.tree
            self.assertEqual([child.name for child in tree.children], [".gitignore", "a.txt", "b.txt"])
            self.assertEqual(tree.child("a.txt").size, 10)
            self.assertEqual(tree.child("b.txt").size, 20)
            self.assertEqual(tree.size, 10 + 20 + 5 + len("sub/\n"))
            self.assertEqual(tree.ignored_size, 5)
            self.assertEqual(result.warnings, ())
            self.assertEqual(tree.name, root.name)

    def test_ignored_bytes_propagate_to_every_ancestor(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "pkg" / "mod.py", 7)
            write_sized(root / "pkg" / "__pycache__" / "mod.pyc", 100)
            write_sized(root / "pkg" / "__pycache__" / "deep" / "x.pyc", 11)
            write_sized(root / "pkg" / "debug.log", 3)
            (root / ".gitignore").write_text("__pycache__/\n*.log\n", encoding="utf-8")

            tree = build_index(root).tree

            pkg = tree.child("pkg")
            self.assertEqual([child.name for child in pkg.children], ["mod.py"])
            self.assertEqual(pkg.size, 7 + 100 + 11 + 3)
            self.assertEqual(pkg.ignored_size, 114)
            self.assertEqual(tree.size, disk_total(root))
            self.assertSizeInvariant(tree)

    def test_nested_gitignore_negation_keeps_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "top.log", 4)
            write_sized(root / "sub" / "keep.log", 6)
            write_sized(root / "sub" / "drop.log", 8)
            (root / ".gitignore").write_text("*.log\n", encoding="utf-8")
            (root / "sub" / ".gitignore").write_text("!keep.log\n", encoding="utf-8")

            tree = build_index(root).tree

            self.assertIsNone(tree.child("top.log"))
            sub = tree.child("sub")
            self.assertEqual([child.name for child in sub.children], [".gitignore", "keep.log"])
            self.assertEqual(sub.ignored_size, 8)
            self.assertEqual(tree.ignored_size, 4)
            self.assertEqual(tree.size, disk_total(root))

    def test_gitignore_inside_ignored_directory_is_not_consulted(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "vendor" / "lib.py", 9)
            (root / "vendor" / ".gitignore").write_text("!*\n", encoding="utf-8")
            (root / ".gitignore").write_text("vendor/\n", encoding="utf-8")

            tree = build_index(root).tree

            self.assertIsNone(tree.child("vendor"))
            self.assertEqual(tree.ignored_size, 9 + len("!*\n"))

    def test_respect_gitignore_false_materializes_everything(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "sub" / "c.txt", 5)
            (root / ".gitignore").write_text("sub/\n", encoding="utf-8")

            tree = build_index(root, IndexOptions(respect_gitignore=False)).tree

            self.assertIsNotNone(tree.child("sub"))
            self.assertEqual(tree.ignored_size, 0)
            self.assertEqual(tree.size, disk_total(root))

    def test_build_is_deterministic_across_worker_counts(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            for top in range(4):
                for mid in range(3):
                    for leaf in range(3):
                        write_sized(root / f"d{top}" / f"m{mid}" / f"f{leaf}.txt", top + mid + leaf + 1)
                write_sized(root / f"d{top}" / "skip.tmp", 50)
            (root / ".gitignore").write_text("*.tmp\nd3/m1/\n", encoding="utf-8")

            baseline = build_index(root, IndexOptions(max_parallelism=1, fan_out_threshold=0))
            for workers, threshold in ((2, 0), (8, 2), (4, 100)):
                other = build_index(root, IndexOptions(max_parallelism=workers, fan_out_threshold=threshold))
                self.assertEqual(other.tree, baseline.tree)
                self.assertEqual(other.warnings, baseline.warnings)

            self.assertEqual(baseline.tree.size, disk_total(root))
            self.assertSizeInvariant(baseline.tree)

    def test_invalid_gitignore_is_reported_and_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "x.log", 3)
            (root / ".gitignore").write_bytes(b"*.log\n\xff\xfe\n")

            result = build_index(root)

            self.assertIsNotNone(result.tree.child("x.log"))
            self.assertEqual(len(result.warnings), 1)
            self.assertEqual(result.warnings[0].kind, WarningKind.INVALID_GITIGNORE)
            self.assertEqual(result.warnings[0].path, root / ".gitignore")

    def test_root_file_yields_single_file_node(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "only.bin"
            write_sized(target, 12)

            tree = build_index(target).tree

            self.assertEqual(tree, FileNode(name="only.bin", node_type=NodeType.FILE, size=12))

    def test_missing_root_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(RootInaccessibleError) as ctx:
                build_index(Path(tmp) / "missing")

            self.assertEqual(ctx.exception.path, Path(tmp) / "missing")

    @unittest.skipIf(not hasattr(os, "geteuid") or os.geteuid() == 0, "permission checks need a non-root user")
    def test_unreadable_directory_is_marked_and_build_continues(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "ok.txt", 2)
            locked = root / "locked"
            write_sized(locked / "secret.txt", 40)
            locked.chmod(0)
            try:
                result = build_index(root)
            finally:
                locked.chmod(0o755)

            node = result.tree.child("locked")
            self.assertEqual(node.size, 0)
            self.assertEqual(node.error, WarningKind.ACCESS_DENIED)
            self.assertEqual(node.children, ())
            self.assertEqual([warning.kind for warning in result.warnings], [WarningKind.ACCESS_DENIED])
            self.assertEqual(result.tree.size, 2)

    @unittest.skipIf(not hasattr(os, "geteuid") or os.geteuid() == 0, "permission checks need a non-root user")
    def test_unreadable_root_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp) / "locked"
            root.mkdir()
            root.chmod(0)
            try:
                with self.assertRaises(RootInaccessibleError):
                    build_index(root)
            finally:
                root.chmod(0o755)


@unittest.skipIf(not hasattr(os, "symlink"), "symlinks are not supported")
class SymlinkBuildTests(unittest.TestCase):
    def _make_loop(self, root: Path) -> Path:
        write_sized(root / "a" / "data.txt", 5)
        link = root / "a" / "loop"
        try:
            os.symlink(root, link, target_is_directory=True)
        except OSError as exc:
            self.skipTest(f"cannot create symlink: {exc}")
        return link

    def test_symlinks_are_leaves_by_default(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            link = self._make_loop(root)

            result = build_index(root)

            loop = result.tree.child("a").child("loop")
            self.assertEqual(loop.node_type, NodeType.FILE)
            self.assertEqual(loop.size, os.lstat(link).st_size)
            self.assertEqual(result.warnings, ())

    def test_following_symlink_cycle_terminates_with_warning(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            link = self._make_loop(root)

            result = build_index(root, IndexOptions(follow_symlinks=True))

            loop = result.tree.child("a").child("loop")
            self.assertEqual(loop.node_type, NodeType.DIRECTORY)
            self.assertEqual(loop.size, 0)
            self.assertEqual(loop.error, WarningKind.CYCLE_DETECTED)
            self.assertEqual([(w.kind, w.path) for w in result.warnings], [(WarningKind.CYCLE_DETECTED, link)])
            self.assertEqual(result.tree.size, 5)

    def test_same_target_from_unrelated_branches_is_not_a_cycle(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            shared = base / "shared"
            write_sized(shared / "blob.bin", 30)
            root = base / "root"
            (root / "one").mkdir(parents=True)
            (root / "two").mkdir()
            try:
                os.symlink(shared, root / "one" / "link", target_is_directory=True)
                os.symlink(shared, root / "two" / "link", target_is_directory=True)
            except OSError as exc:
                self.skipTest(f"cannot create symlink: {exc}")

            result = build_index(root, IndexOptions(follow_symlinks=True))

            self.assertEqual(result.warnings, ())
            self.assertEqual(result.tree.size, 60)

    def test_dangling_symlink_is_not_found_when_following(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            link = root / "dangling"
            try:
                os.symlink(root / "nowhere", link)
            except OSError as exc:
                self.skipTest(f"cannot create symlink: {exc}")

            result = build_index(root, IndexOptions(follow_symlinks=True))

            node = result.tree.child("dangling")
            self.assertEqual(node.size, 0)
            self.assertEqual(node.error, WarningKind.NOT_FOUND)
            self.assertEqual([(w.kind, w.path) for w in result.warnings], [(WarningKind.NOT_FOUND, link)])


def permission_denied(path) -> PermissionError:
    return PermissionError(13, "Permission denied", str(path))


class SimulatedFailureBuildTests(unittest.TestCase):
    def test_unlistable_subdirectory_is_marked_with_zero_size(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "ok.txt", 2)
            locked = root / "locked"
            write_sized(locked / "secret.txt", 40)
            real_scandir = os.scandir

            def scandir(path):
                if Path(path) == locked:
                    raise permission_denied(path)
                return real_scandir(path)

            with mock.patch("dirindex.file_tree_model.fs.os.scandir", side_effect=scandir):
                result = build_index(root, IndexOptions(max_parallelism=2))

            node = result.tree.child("locked")
            self.assertEqual(node.node_type, NodeType.DIRECTORY)
            self.assertEqual(node.size, 0)
            self.assertEqual(node.error, WarningKind.ACCESS_DENIED)
            self.assertEqual(node.children, ())
            self.assertEqual([(w.kind, w.path) for w in result.warnings], [(WarningKind.ACCESS_DENIED, locked)])
            self.assertEqual(result.tree.size, 2)

    def test_unlistable_root_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            real_scandir = os.scandir

            def scandir(path):
                if Path(path) == root:
                    raise permission_denied(path)
                return real_scandir(path)

            with mock.patch("dirindex.file_tree_model.fs.os.scandir", side_effect=scandir):
                with self.assertRaises(RootInaccessibleError) as ctx:
                    build_index(root)

            self.assertEqual(ctx.exception.path, root)

    def test_unstattable_root_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            real_stat = Path.stat

            def stat(self, *args, **kwargs):
                if self == root:
                    raise permission_denied(self)
                return real_stat(self, *args, **kwargs)

            with mock.patch.object(Path, "stat", stat):
                with self.assertRaises(RootInaccessibleError) as ctx:
                    measure_size(root)

            self.assertEqual(ctx.exception.reason, "Permission denied")

    def test_dir_only_rule_hides_unstattable_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "build").mkdir()
            write_sized(root / "keep.txt", 4)
            (root / ".gitignore").write_text("build/\n", encoding="utf-8")

            def scan_with_unreadable_build(directory, follow_symlinks):
                children, error = scan_directory(directory, follow_symlinks)
                return [
                    replace(child, identity=None, error=WarningKind.ACCESS_DENIED, reason="Permission denied")
                    if child.name == "build"
                    else child
                    for child in children
                ], error

            with mock.patch(
                "dirindex.file_tree_model.build.scan_directory", side_effect=scan_with_unreadable_build
            ):
                hidden = build_index(root)
                shown = build_index(root, IndexOptions(respect_gitignore=False))

            self.assertIsNone(hidden.tree.child("build"))
            self.assertEqual([w.kind for w in hidden.warnings], [WarningKind.ACCESS_DENIED])
            marked = shown.tree.child("build")
            self.assertEqual(marked.node_type, NodeType.DIRECTORY)
            self.assertEqual(marked.error, WarningKind.ACCESS_DENIED)
            self.assertEqual(marked.size, 0)


class CancellationAndMeasureTests(unittest.TestCase):
    def test_cancelled_before_start_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            cancel = threading.Event()
            cancel.set()

            with self.assertRaises(BuildCancelledError):
                build_index(Path(tmp), should_cancel=cancel.is_set)

    def test_cancellation_during_walk_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            for idx in range(20):
                write_sized(root / f"d{idx}" / "inner" / "f.txt", 1)
            counter = itertools.count()

            def should_cancel() -> bool:
                return next(counter) >= 5

            with self.assertRaises(BuildCancelledError):
                build_index(root, IndexOptions(max_parallelism=2), should_cancel=should_cancel)

    def test_measure_size_matches_built_tree(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write_sized(root / "a.txt", 10)
            write_sized(root / "sub" / "c.txt", 5)
            write_sized(root / "sub" / "deeper" / "d.txt", 9)
            (root / ".gitignore").write_text("sub/\n", encoding="utf-8")

            measured = measure_size(root)

            self.assertEqual(measured.size, build_index(root).tree.size)
            self.assertEqual(measured.size, disk_total(root))
            self.assertEqual(measured.warnings, ())

    def test_options_reject_invalid_parallelism(self) -> None:
        with self.assertRaises(ValueError):
            IndexOptions(max_parallelism=0)


if __name__ == "__main__":
    unittest.main()

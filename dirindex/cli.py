"""Command-line front door for dirindex.

Builds and persists indexes, measures directory sizes, and runs fuzzy
searches against saved indexes. All real work happens in the library.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from collections.abc import Iterable
from pathlib import Path

from . import config
from .errors import IndexBuildError, IndexWarning, SerializationError
from .file_tree_model import IndexOptions, NodeType, build_index, deserialize, measure_size, serialize
from .search import search

DEFAULT_OUTPUT = "file_tree.idx"
SIZE_UNITS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB")


def format_size(size: int) -> str:
    """Render a byte count with binary units, e.g. ``1.5 KiB``."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in SIZE_UNITS[1:]:
        value /= 1024.0
        if value < 1024.0 or unit == SIZE_UNITS[-1]:
            return f"{value:.1f} {unit}"
    raise AssertionError("unreachable")


def _positive_int(value: str) -> int:
    """argparse type for positive integer values."""
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("value must be >= 1")
    return parsed


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError("value must be >= 0")
    return parsed


def _add_walk_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", help="Directory to walk.")
    parser.add_argument(
        "--gitignore",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Honor .gitignore files (default from config, normally on).",
    )
    parser.add_argument(
        "--follow-symlinks",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Descend into symlinked directories (default off).",
    )
    parser.add_argument("-j", "--jobs", type=_positive_int, default=None, help="Worker thread count.")
    parser.add_argument(
        "--fan-out-threshold",
        type=_non_negative_int,
        default=None,
        help="Minimum subdirectory count before work is split across workers.",
    )
    parser.add_argument(
        "--save-defaults",
        action="store_true",
        help="Persist the effective walk options as future defaults.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dirindex",
        description="Index a directory tree with sizes, honoring .gitignore, and fuzzy-search it.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity.")
    subcommands = parser.add_subparsers(dest="command", required=True)

    index_parser = subcommands.add_parser("index", help="Build an index and write it to a file.")
    _add_walk_arguments(index_parser)
    index_parser.add_argument(
        "-o",
        "--output",
        default=DEFAULT_OUTPUT,
        help=f"Where to write the serialized index (default: {DEFAULT_OUTPUT}).",
    )

    size_parser = subcommands.add_parser("size", help="Print the total size of a directory.")
    _add_walk_arguments(size_parser)

    search_parser = subcommands.add_parser("search", help="Fuzzy-search names in a saved index.")
    search_parser.add_argument("index", help="Serialized index file.")
    search_parser.add_argument("query", help="Characters to match, in order.")
    search_parser.add_argument("-n", "--limit", type=_non_negative_int, default=None, help="Maximum results.")
    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def resolve_options(args: argparse.Namespace) -> IndexOptions:
    """Merge CLI flags over persisted defaults."""
    defaults = config.load_index_options()
    return IndexOptions(
        respect_gitignore=defaults.respect_gitignore if args.gitignore is None else args.gitignore,
        follow_symlinks=defaults.follow_symlinks if args.follow_symlinks is None else args.follow_symlinks,
        max_parallelism=defaults.max_parallelism if args.jobs is None else args.jobs,
        fan_out_threshold=(
            defaults.fan_out_threshold if args.fan_out_threshold is None else args.fan_out_threshold
        ),
    )


def _print_warnings(warnings: Iterable[IndexWarning]) -> None:
    for warning in warnings:
        sys.stderr.write(f"warning: {warning}\n")


def _run_index(args: argparse.Namespace, options: IndexOptions, cancel: threading.Event) -> None:
    started = time.monotonic()
    result = build_index(args.path, options, should_cancel=cancel.is_set)
    elapsed = time.monotonic() - started

    payload = serialize(result.tree)
    output = Path(args.output)
    try:
        output.write_bytes(payload)
    except OSError as exc:
        raise SystemExit(f"Cannot write {output}: {exc.strerror or exc}") from exc

    _print_warnings(result.warnings)
    sys.stdout.write(f"Indexed {args.path} in {elapsed:.3f}s\n")
    sys.stdout.write(f"Total size: {format_size(result.tree.size)}\n")
    sys.stdout.write(f"Wrote {len(payload)} bytes to {output}\n")


def _run_size(args: argparse.Namespace, options: IndexOptions, cancel: threading.Event) -> None:
    started = time.monotonic()
    result = measure_size(args.path, options, should_cancel=cancel.is_set)
    elapsed = time.monotonic() - started
    _print_warnings(result.warnings)
    sys.stdout.write(f"Total size: {format_size(result.size)} ({result.size} bytes)\n")
    sys.stdout.write(f"Time taken: {elapsed:.3f}s\n")


def _run_search(args: argparse.Namespace) -> None:
    index_path = Path(args.index)
    try:
        tree = deserialize(index_path.read_bytes())
    except OSError as exc:
        raise SystemExit(f"Cannot read {index_path}: {exc.strerror or exc}") from exc
    except SerializationError as exc:
        raise SystemExit(f"Invalid index {index_path}: {exc}") from exc

    for result in search(tree, args.query, limit=args.limit):
        kind = "d" if result.node_type is NodeType.DIRECTORY else "f"
        sys.stdout.write(f"{result.score:5d}  {kind}  {format_size(result.size):>10}  {result.path}\n")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the requested subcommand."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "search":
        _run_search(args)
        return

    options = resolve_options(args)
    if args.save_defaults:
        config.save_index_options(options)

    cancel = threading.Event()
    try:
        if args.command == "index":
            _run_index(args, options, cancel)
        else:
            _run_size(args, options, cancel)
    except KeyboardInterrupt:
        cancel.set()
        raise SystemExit("Interrupted.") from None
    except IndexBuildError as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()

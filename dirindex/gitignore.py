"""Directory-scoped ``.gitignore`` parsing and evaluation.

Each directory may contribute one rule set read from its own ``.gitignore``.
A ``GitignorePolicy`` is the ordered stack of rule sets from the indexed root
down to one directory; tree builders derive child policies with ``descend``
instead of mutating shared state during traversal.
"""

from __future__ import annotations

import logging
import stat as stat_module
from dataclasses import dataclass, field
from pathlib import Path

from wcmatch import glob as wcglob

from .errors import IndexWarning, WarningKind

logger = logging.getLogger(__name__)

GITIGNORE_FILENAME = ".gitignore"
GLOB_FLAGS = wcglob.GLOBSTAR | wcglob.DOTGLOB | wcglob.FORCEUNIX


def _is_within(path: Path, root: Path) -> bool:
    """Return whether ``path`` is at or under ``root``."""
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


@dataclass(frozen=True)
class GitignoreRule:
    """One parsed pattern line.

    Anchored rules match the path relative to the ``.gitignore`` directory;
    unanchored rules match an entry's name at any depth.
    """

    pattern: str
    negated: bool = False
    dir_only: bool = False
    anchored: bool = False
    matcher: object = field(default=None, compare=False, repr=False)

    def matches(self, relative_path: str, name: str, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        target = relative_path if self.anchored else name
        return bool(self.matcher.match(target))


def _strip_trailing_spaces(line: str) -> str:
    """Drop trailing spaces unless escaped with a backslash."""
    while line.endswith(" ") and not line.endswith("\\ "):
        line = line[:-1]
    return line


def parse_gitignore_line(line: str) -> GitignoreRule | None:
    """Parse one ``.gitignore`` line, returning ``None`` for blanks/comments.

    Raises ``ValueError`` when the glob cannot be compiled.
    """
    line = _strip_trailing_spaces(line.rstrip("\r\n"))
    if not line or line.startswith("#"):
        return None

    negated = False
    if line.startswith("!"):
        negated = True
        line = line[1:]
    elif line.startswith("\\!") or line.startswith("\\#"):
        line = line[1:]

    dir_only = False
    if line.endswith("/") and not line.endswith("\\/"):
        dir_only = True
        line = line[:-1]

    anchored = "/" in line
    if line.startswith("/"):
        line = line[1:]
    if not line:
        return None

    try:
        matcher = wcglob.compile(line, flags=GLOB_FLAGS)
    except Exception as exc:
        raise ValueError(f"invalid pattern {line!r}: {exc}") from exc

    return GitignoreRule(
        pattern=line,
        negated=negated,
        dir_only=dir_only,
        anchored=anchored,
        matcher=matcher,
    )


def parse_gitignore(text: str) -> tuple[GitignoreRule, ...]:
    """Parse ``.gitignore`` text into rules, preserving file order."""
    rules: list[GitignoreRule] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        try:
            rule = parse_gitignore_line(line)
        except ValueError as exc:
            raise ValueError(f"line {lineno}: {exc}") from exc
        if rule is not None:
            rules.append(rule)
    return tuple(rules)


@dataclass(frozen=True)
class GitignoreRuleSet:
    """Rules contributed by the ``.gitignore`` inside ``base``."""

    base: Path
    rules: tuple[GitignoreRule, ...]

    def decide(self, relative_path: str, name: str, is_dir: bool) -> bool | None:
        """Return the last matching rule's verdict, or ``None`` when none match."""
        decision: bool | None = None
        for rule in self.rules:
            if rule.matches(relative_path, name, is_dir):
                decision = not rule.negated
        return decision


def load_gitignore(directory: Path) -> tuple[GitignoreRuleSet | None, IndexWarning | None]:
    """Read ``directory/.gitignore`` into a rule set.

    Missing files contribute nothing. Unreadable or malformed files contribute
    no rules and produce an ``INVALID_GITIGNORE`` warning instead of failing.
    """
    gitignore_path = directory / GITIGNORE_FILENAME
    try:
        if not stat_module.S_ISREG(gitignore_path.stat().st_mode):
            return None, IndexWarning(WarningKind.INVALID_GITIGNORE, gitignore_path, "not a regular file")
        raw = gitignore_path.read_bytes()
    except FileNotFoundError:
        return None, None
    except OSError as exc:
        return None, IndexWarning(WarningKind.INVALID_GITIGNORE, gitignore_path, exc.strerror or str(exc))

    if b"\x00" in raw:
        return None, IndexWarning(WarningKind.INVALID_GITIGNORE, gitignore_path, "binary content")
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        return None, IndexWarning(WarningKind.INVALID_GITIGNORE, gitignore_path, f"not valid UTF-8: {exc.reason}")
    try:
        rules = parse_gitignore(text)
    except ValueError as exc:
        return None, IndexWarning(WarningKind.INVALID_GITIGNORE, gitignore_path, str(exc))

    logger.debug("loaded %d gitignore rules from %s", len(rules), gitignore_path)
    if not rules:
        return None, None
    return GitignoreRuleSet(base=directory, rules=rules), None


@dataclass(frozen=True)
class GitignorePolicy:
    """Ordered rule sets from the indexed root down to one directory.

    Rule sets are evaluated root first, so the deepest matching rule decides.
    """

    rule_sets: tuple[GitignoreRuleSet, ...] = ()

    @classmethod
    def for_root(cls, root: Path) -> tuple[GitignorePolicy, IndexWarning | None]:
        return cls().descend(root)

    def descend(self, directory: Path) -> tuple[GitignorePolicy, IndexWarning | None]:
        """Return the policy for entries of ``directory``.

        ``directory``'s own ``.gitignore`` (if any) is appended to the stack.
        """
        rule_set, warning = load_gitignore(directory)
        if rule_set is None:
            return self, warning
        return GitignorePolicy(rule_sets=self.rule_sets + (rule_set,)), warning

    def is_ignored(self, path: Path, is_dir: bool) -> bool:
        """Return whether ``path`` (a direct entry of the policy's directory) is ignored."""
        ignored = False
        name = path.name
        for rule_set in self.rule_sets:
            if not _is_within(path, rule_set.base):
                continue
            relative = path.relative_to(rule_set.base).as_posix()
            decision = rule_set.decide(relative, name, is_dir)
            if decision is not None:
                ignored = decision
        return ignored


__all__ = [
    "GITIGNORE_FILENAME",
    "GitignoreRule",
    "GitignoreRuleSet",
    "GitignorePolicy",
    "parse_gitignore",
    "parse_gitignore_line",
    "load_gitignore",
]

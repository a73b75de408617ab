"""
Glob-based include/exclude matching for repository paths.

Patterns follow .gitignore conventions:

- ``*`` and ``?`` never cross a ``/``
- ``**`` crosses any number of directories
- a pattern ending in ``/**`` (or ``/``) matches the directory itself and
  everything below it
- a pattern without a leading ``/`` may match at any depth; a leading ``/``
  anchors it to the scan root
- a ``!`` prefix re-includes paths an earlier pattern excluded

Exclusion rules are evaluated in order and the last matching rule wins, so
a negation listed after an exclude can rescue a path.

Usage:
    >>> matcher = PathMatcher(exclude_patterns=["*.log", "tmp/**"])
    >>> matcher.is_excluded("tmp/cache/a.txt")
    True
    >>> matcher.is_excluded("src/app.py")
    False
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES: tuple[str, ...] = (
    "node_modules/**",
    ".git/**",
    ".next/**",
    "dist/**",
    "build/**",
    "coverage/**",
    ".turbo/**",
    "__pycache__/**",
    ".venv/**",
    "*.tsbuildinfo",
    ".DS_Store",
    "Thumbs.db",
)


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile a glob pattern into a regex matched against POSIX relative paths.

    Args:
        pattern: Glob pattern (without any leading ``!``)

    Returns:
        Compiled regular expression that must match the whole path

    Example:
        >>> bool(glob_to_regex("src/**/*.py").match("src/a/b/c.py"))
        True
        >>> bool(glob_to_regex("*.py").match("deep/dir/c.py"))
        True
    """
    anchored = pattern.startswith("/")
    body = pattern.lstrip("/")
    if body.endswith("/"):
        body = body + "**"

    dir_tree = body.endswith("/**")
    if dir_tree:
        body = body[: -len("/**")]

    parts: list[str] = []
    i = 0
    while i < len(body):
        char = body[i]
        if body.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif body.startswith("**", i):
            parts.append(".*")
            i += 2
        elif char == "*":
            parts.append("[^/]*")
            i += 1
        elif char == "?":
            parts.append("[^/]")
            i += 1
        elif char == "[":
            end = body.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(char))
                i += 1
            else:
                inner = body[i + 1 : end]
                if inner.startswith("!"):
                    inner = "^" + inner[1:]
                parts.append(f"[{inner}]")
                i = end + 1
        else:
            parts.append(re.escape(char))
            i += 1

    regex = "".join(parts)
    if not anchored and not body.startswith("**"):
        regex = "(?:.*/)?" + regex
    if dir_tree:
        regex += "(?:/.*)?"
    return re.compile(f"^{regex}$")


@dataclass(frozen=True)
class _Rule:
    pattern: str
    regex: re.Pattern[str]
    negated: bool


def _compile_rules(patterns: Iterable[str]) -> list[_Rule]:
    rules = []
    for raw in patterns:
        pattern = raw.strip()
        if not pattern or pattern.startswith("#"):
            continue
        negated = pattern.startswith("!")
        if negated:
            pattern = pattern[1:]
        if not pattern:
            continue
        rules.append(_Rule(pattern=pattern, regex=glob_to_regex(pattern), negated=negated))
    return rules


class PathMatcher:
    """
    Pure include/exclude predicate over repository-relative paths.

    Attributes:
        include_patterns: Patterns a file must match to be kept (empty keeps all)
        exclude_patterns: Ordered exclusion rules, defaults first
    """

    def __init__(
        self,
        include_patterns: Iterable[str] | None = None,
        exclude_patterns: Iterable[str] | None = None,
        use_defaults: bool = True,
    ) -> None:
        self.include_patterns = list(include_patterns or [])
        excludes = list(DEFAULT_EXCLUDES) if use_defaults else []
        excludes.extend(exclude_patterns or [])
        self.exclude_patterns = excludes
        self._include_rules = _compile_rules(self.include_patterns)
        self._exclude_rules = _compile_rules(self.exclude_patterns)

    @classmethod
    def for_root(
        cls,
        root: Path,
        include_patterns: Iterable[str] | None = None,
        exclude_patterns: Iterable[str] | None = None,
        respect_gitignore: bool = True,
    ) -> PathMatcher:
        """
        Build a matcher for a scan root, appending its .gitignore rules.

        Args:
            root: Repository root
            include_patterns: Include globs
            exclude_patterns: Extra exclude globs
            respect_gitignore: Whether to read ``root/.gitignore``

        Returns:
            Configured PathMatcher
        """
        excludes = list(exclude_patterns or [])
        if respect_gitignore:
            excludes.extend(read_gitignore(root))
        return cls(include_patterns=include_patterns, exclude_patterns=excludes)

    def is_excluded(self, path: str) -> bool:
        """Check whether a relative path is excluded (last matching rule wins)."""
        excluded = False
        for rule in self._exclude_rules:
            if rule.regex.match(path):
                excluded = not rule.negated
        return excluded

    def is_included(self, path: str) -> bool:
        """Check whether a relative file path passes the include filter."""
        if not self._include_rules:
            return True
        return any(rule.regex.match(path) for rule in self._include_rules)

    def accepts(self, path: str) -> bool:
        """True if a file path is included and not excluded."""
        return self.is_included(path) and not self.is_excluded(path)


def read_gitignore(root: Path) -> list[str]:
    """
    Read exclusion patterns from ``root/.gitignore``.

    Args:
        root: Repository root

    Returns:
        Pattern lines with comments and blanks removed; empty if the file is
        missing or unreadable
    """
    gitignore = root / ".gitignore"
    if not gitignore.is_file():
        return []
    try:
        lines = gitignore.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        logger.warning(f"Could not read {gitignore}: {e}")
        return []
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]

"""
Repository tree walking.

RepoScanner walks a root breadth-first in sorted order and produces flat
file metadata for the scorer. Excluded paths are pruned before the
filesystem is touched, the depth limit stops descent, and the file-count
limit stops the walk. Paths that cannot be listed or stat'ed are recorded
as unreadable rather than failing the scan; only a missing root is fatal.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from cairn.core.repo.classifier import FileClassifier
from cairn.core.repo.matcher import PathMatcher
from cairn.core.repo.models import RepoFileMeta, ScanOptions, ScanResult

logger = logging.getLogger(__name__)


class ScanError(ValueError):
    """Raised when the scan root is missing or cannot be listed."""


class RepoScanner:
    """
    Breadth-first scanner producing RepoFileMeta for every accepted file.

    Example:
        >>> scanner = RepoScanner(ScanOptions(root_path=Path(".")))
        >>> result = scanner.scan()
        >>> len(result.files) <= 2000
        True
    """

    def __init__(
        self,
        options: ScanOptions,
        matcher: PathMatcher | None = None,
        classifier: FileClassifier | None = None,
    ) -> None:
        self.options = options
        self.root = Path(options.root_path).resolve()
        self.matcher = matcher or PathMatcher.for_root(
            self.root,
            include_patterns=options.include_patterns,
            exclude_patterns=options.exclude_patterns,
            respect_gitignore=options.respect_gitignore,
        )
        self.classifier = classifier or FileClassifier()

    def scan(self) -> ScanResult:
        """
        Walk the tree and collect file metadata.

        Returns:
            ScanResult with files in walk order plus unreadable paths

        Raises:
            ScanError: If the root does not exist, is not a directory, or
                cannot be listed
        """
        if not self.root.exists():
            raise ScanError(f"Scan root does not exist: {self.options.root_path}")
        if not self.root.is_dir():
            raise ScanError(f"Scan root is not a directory: {self.options.root_path}")

        files: list[RepoFileMeta] = []
        unreadable: list[str] = []
        truncated = False
        queue: deque[tuple[Path, int]] = deque([(self.root, 0)])

        while queue and not truncated:
            directory, depth = queue.popleft()
            try:
                entries = sorted(directory.iterdir(), key=lambda p: p.name)
            except OSError as e:
                if directory == self.root:
                    raise ScanError(f"Cannot list scan root {self.root}: {e}") from e
                if len(files) + len(unreadable) >= self.options.max_files:
                    truncated = True
                    break
                logger.debug(f"Skipping unreadable directory {directory}: {e}")
                unreadable.append(self._relative(directory))
                continue

            candidates: list[tuple[Path, str]] = []
            for entry in entries:
                rel = self._relative(entry)
                if self.matcher.is_excluded(rel):
                    continue
                if entry.is_dir():
                    if entry.is_symlink():
                        continue
                    if depth + 1 <= self.options.max_depth:
                        queue.append((entry, depth + 1))
                    continue
                if self.matcher.is_included(rel):
                    candidates.append((entry, rel))

            remaining = max(0, self.options.max_files - len(files) - len(unreadable))
            if len(candidates) > remaining:
                candidates = candidates[:remaining]
                truncated = True

            metas = self._stat_all(candidates, depth)
            for (_, rel), meta in zip(candidates, metas):
                if meta is None:
                    unreadable.append(rel)
                else:
                    files.append(meta)

        if truncated:
            logger.info(f"Scan of {self.root} stopped at max_files={self.options.max_files}")

        return ScanResult(
            root=str(self.root),
            files=files,
            unreadable=unreadable,
            truncated=truncated,
        )

    def _stat_all(
        self, candidates: list[tuple[Path, str]], depth: int
    ) -> list[RepoFileMeta | None]:
        if self.options.workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.options.workers) as pool:
                return list(pool.map(lambda c: self._stat(c[0], c[1], depth), candidates))
        return [self._stat(path, rel, depth) for path, rel in candidates]

    def _stat(self, path: Path, rel: str, depth: int) -> RepoFileMeta | None:
        try:
            stat = path.stat()
        except OSError as e:
            logger.debug(f"Skipping unreadable file {path}: {e}")
            return None
        if not os.access(path, os.R_OK):
            logger.debug(f"Skipping file without read permission: {path}")
            return None
        return RepoFileMeta(
            path=rel,
            size_bytes=stat.st_size,
            modified_at=stat.st_mtime,
            depth=depth,
            kind=self.classifier.classify(rel),
            is_entry_point=self.classifier.is_entry_point(rel),
        )

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

"""
Repository summary construction.

RepoIndexBuilder ranks scored files (score descending, path ascending) and
takes the longest prefix of that ranking that fits the caller's caps. The
first file that would break a cap and every file after it are omitted, so
the summary is always a prefix of the ranking and
``included + omitted == total scanned``.

Usage:
    >>> from cairn.core.repo.index import scan_repository
    >>> summary = scan_repository(ScanOptions(root_path=Path("."), max_summary_files=20))
    >>> summary.included_count <= 20
    True
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence

from cairn.core.repo.models import FileKind, RepoFileMeta, RepoSummary, ScanOptions, ScanResult
from cairn.core.repo.scanner import RepoScanner
from cairn.core.repo.scorer import ImportanceScorer

logger = logging.getLogger(__name__)


def rank_files(files: Sequence[RepoFileMeta]) -> list[RepoFileMeta]:
    """Order files by score descending, ties broken by path."""
    return sorted(files, key=lambda f: (-f.score, f.path))


class RepoIndexBuilder:
    """
    Merges scored metadata into a size-bounded RepoSummary.

    Attributes:
        max_total_size_bytes: Cumulative size cap for included files
        max_files: Optional cap on the number of included files
    """

    def __init__(self, max_total_size_bytes: int, max_files: int | None = None) -> None:
        if max_total_size_bytes < 0:
            raise ValueError(f"max_total_size_bytes must be >= 0, got {max_total_size_bytes}")
        if max_files is not None and max_files < 0:
            raise ValueError(f"max_files must be >= 0, got {max_files}")
        self.max_total_size_bytes = max_total_size_bytes
        self.max_files = max_files

    def build(
        self,
        root: str,
        scored: Sequence[RepoFileMeta],
        unreadable: Sequence[str] = (),
    ) -> RepoSummary:
        """
        Select the highest-value prefix of the ranked files.

        Args:
            root: Scan root recorded in the summary
            scored: Files with importance scores assigned
            unreadable: Paths that could not be read (always omitted)

        Returns:
            RepoSummary with included files in rank order
        """
        ranked = rank_files(scored)
        included: list[RepoFileMeta] = []
        total_size = 0

        cut = len(ranked)
        for index, meta in enumerate(ranked):
            if self.max_files is not None and len(included) >= self.max_files:
                cut = index
                break
            if total_size + meta.size_bytes > self.max_total_size_bytes:
                cut = index
                break
            included.append(meta)
            total_size += meta.size_bytes

        omitted = [meta.path for meta in ranked[cut:]]
        omitted.extend(sorted(unreadable))

        if cut < len(ranked):
            logger.debug(
                f"Repo summary cut at {ranked[cut].path}: "
                f"{len(included)} included, {len(omitted)} omitted"
            )

        by_kind: Counter[FileKind] = Counter(meta.kind for meta in included)
        return RepoSummary(
            root=root,
            files=included,
            omitted=omitted,
            total_scanned=len(ranked) + len(unreadable),
            unreadable_count=len(unreadable),
            included_size_bytes=total_size,
            by_kind={kind: by_kind[kind] for kind in FileKind if by_kind[kind]},
            entry_points=[meta.path for meta in included if meta.is_entry_point],
        )


def summarize(
    scan: ScanResult,
    options: ScanOptions,
    scorer: ImportanceScorer | None = None,
) -> RepoSummary:
    """Score a scan result and build its summary."""
    scored = (scorer or ImportanceScorer()).score_all(scan.files)
    builder = RepoIndexBuilder(options.max_total_size_bytes, options.max_summary_files)
    return builder.build(scan.root, scored, scan.unreadable)


def scan_repository(
    options: ScanOptions,
    scorer: ImportanceScorer | None = None,
) -> RepoSummary:
    """
    Scan a repository and return its budget-bounded summary.

    Args:
        options: Scan request
        scorer: Optional scorer with custom weights

    Returns:
        RepoSummary for ``options.root_path``

    Raises:
        ScanError: If the root does not exist
    """
    scan = RepoScanner(options).scan()
    return summarize(scan, options, scorer)

"""
Repository scanning and summarization.

Walks a repository within depth, count, and size limits, classifies and
scores every file, and reduces the result to a ranked summary that fits
a byte budget.

Main entry points:
    - scan_repository(): Scan, score, and summarize in one call
    - RepoScanner: Bounded filesystem walk
    - ImportanceScorer: Per-file importance in [0, 1]
    - render_summary(): Markdown rendering for prompts

Example:
    >>> from cairn.core.repo import ScanOptions, scan_repository
    >>> summary = scan_repository(ScanOptions(root_path=Path("."), max_files=500))
    >>> summary.included_count, summary.omitted_count
    (120, 14)
"""

from cairn.core.repo.classifier import FileClassifier, classify, is_entry_point
from cairn.core.repo.index import RepoIndexBuilder, rank_files, scan_repository, summarize
from cairn.core.repo.matcher import PathMatcher, glob_to_regex, read_gitignore
from cairn.core.repo.models import (
    FileKind,
    RepoFileMeta,
    RepoSummary,
    ScanOptions,
    ScanResult,
)
from cairn.core.repo.renderer import render_summary
from cairn.core.repo.scanner import RepoScanner, ScanError
from cairn.core.repo.scorer import ImportanceScorer, ScoringWeights

__all__ = [
    # Models
    "FileKind",
    "RepoFileMeta",
    "RepoSummary",
    "ScanOptions",
    "ScanResult",
    # Scanning
    "PathMatcher",
    "RepoScanner",
    "ScanError",
    "glob_to_regex",
    "read_gitignore",
    # Classification and scoring
    "FileClassifier",
    "ImportanceScorer",
    "ScoringWeights",
    "classify",
    "is_entry_point",
    # Summaries
    "RepoIndexBuilder",
    "rank_files",
    "render_summary",
    "scan_repository",
    "summarize",
]

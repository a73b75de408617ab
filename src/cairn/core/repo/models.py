"""
Data models for repository awareness.

Defines the scan request, per-file metadata, and the budget-bounded
repository summary produced by the index builder. These models are
frozen: a scanned file is immutable once scored, and a summary is
read-only once built.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class FileKind(str, Enum):
    """Classification of a repository file.

    Assigned from path and extension heuristics only; file content is
    never read.
    """

    SOURCE = "source"
    TEST = "test"
    CONFIG = "config"
    DOC = "doc"
    GENERATED = "generated"
    TOOLING = "tooling"
    DATA = "data"
    OTHER = "other"


class ScanOptions(BaseModel):
    """Scan request for a repository root.

    Patterns use glob syntax: ``*`` stays inside one path segment, ``**``
    crosses directories, and a pattern without ``/`` matches the file name
    at any depth.
    """

    model_config = ConfigDict(frozen=True)

    root_path: Path = Field(description="Repository root to scan")
    include_patterns: list[str] = Field(
        default_factory=list,
        description="Only files matching one of these are kept (empty = all)",
    )
    exclude_patterns: list[str] = Field(
        default_factory=list,
        description="Paths matching any of these are skipped before any stat",
    )
    max_depth: int = Field(default=8, ge=0, description="Maximum directory depth")
    max_files: int = Field(default=2000, ge=1, description="Stop after this many files")
    max_total_size_bytes: int = Field(
        default=1_000_000,
        ge=0,
        description="Size cap for files included in the summary",
    )
    max_summary_files: int | None = Field(
        default=None,
        ge=0,
        description="Optional cap on the number of files in the summary",
    )
    respect_gitignore: bool = Field(
        default=True, description="Apply the root .gitignore as extra excludes"
    )
    workers: int = Field(
        default=1, ge=1, description="Threads used to stat files of each directory"
    )


class RepoFileMeta(BaseModel):
    """Metadata for one scanned file."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="POSIX path relative to the scan root")
    size_bytes: int = Field(ge=0)
    modified_at: float = Field(default=0.0, description="mtime in epoch seconds")
    depth: int = Field(default=0, ge=0, description="Number of parent directories")
    kind: FileKind = FileKind.OTHER
    is_entry_point: bool = False
    score: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def name(self) -> str:
        """File name without directories."""
        return self.path.rsplit("/", 1)[-1]

    def with_score(self, score: float) -> "RepoFileMeta":
        """Return a copy carrying the given importance score."""
        return self.model_copy(update={"score": score})


class ScanResult(BaseModel):
    """Raw scanner output before scoring and selection."""

    model_config = ConfigDict(frozen=True)

    root: str
    files: list[RepoFileMeta] = Field(default_factory=list)
    unreadable: list[str] = Field(
        default_factory=list, description="Paths skipped because stat/listdir failed"
    )
    truncated: bool = Field(
        default=False, description="True if max_files stopped the walk early"
    )


class RepoSummary(BaseModel):
    """Budget-bounded view of a repository.

    ``files`` is always a prefix of the score-descending, path-ascending
    ordering of every scanned file; everything after that prefix is listed
    in ``omitted``.
    """

    model_config = ConfigDict(frozen=True)

    root: str
    files: list[RepoFileMeta] = Field(default_factory=list)
    omitted: list[str] = Field(default_factory=list)
    total_scanned: int = Field(default=0, ge=0)
    unreadable_count: int = Field(default=0, ge=0)
    included_size_bytes: int = Field(default=0, ge=0)
    by_kind: dict[FileKind, int] = Field(default_factory=dict)
    entry_points: list[str] = Field(default_factory=list)

    @property
    def included_count(self) -> int:
        """Number of files included in the summary."""
        return len(self.files)

    @property
    def omitted_count(self) -> int:
        """Number of scanned files left out of the summary."""
        return len(self.omitted)

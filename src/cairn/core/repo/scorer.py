"""
Importance scoring for scanned files.

A file's score is a weighted blend of three factors, each in [0, 1]:

- kind: source > config > docs > tooling/data > tests > other > generated
- recency: newest file in the scan scores 1.0, oldest 0.0 (linear)
- size: small and medium files score 1.0, very large files decay toward 0.0

Entry points and files near the root get a small bonus. The result is
clamped to [0, 1] and rounded so scores are stable across platforms.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from cairn.core.repo.models import FileKind, RepoFileMeta

DEFAULT_KIND_WEIGHTS: dict[FileKind, float] = {
    FileKind.SOURCE: 1.0,
    FileKind.CONFIG: 0.75,
    FileKind.DOC: 0.55,
    FileKind.TOOLING: 0.4,
    FileKind.DATA: 0.4,
    FileKind.TEST: 0.3,
    FileKind.OTHER: 0.2,
    FileKind.GENERATED: 0.05,
}


class ScoringWeights(BaseModel):
    """Tunable weights for ImportanceScorer."""

    model_config = ConfigDict(frozen=True)

    kind: float = Field(default=0.6, ge=0.0)
    recency: float = Field(default=0.2, ge=0.0)
    size: float = Field(default=0.2, ge=0.0)
    entry_point_bonus: float = Field(default=0.1, ge=0.0)
    shallow_bonus: float = Field(default=0.05, ge=0.0)
    shallow_depth: int = Field(default=1, ge=0)
    size_full_score_bytes: int = Field(default=32 * 1024, ge=0)
    size_zero_score_bytes: int = Field(default=1024 * 1024, ge=1)
    kind_weights: dict[FileKind, float] = Field(
        default_factory=lambda: dict(DEFAULT_KIND_WEIGHTS)
    )


class ImportanceScorer:
    """
    Assigns each scanned file a relevance score in [0, 1].

    Recency is relative to the scanned set, so scoring takes the whole list
    at once.

    Example:
        >>> scorer = ImportanceScorer()
        >>> scored = scorer.score_all(files)
        >>> all(0.0 <= f.score <= 1.0 for f in scored)
        True
    """

    def __init__(self, weights: ScoringWeights | None = None) -> None:
        self.weights = weights or ScoringWeights()

    def score_all(self, files: Sequence[RepoFileMeta]) -> list[RepoFileMeta]:
        """
        Score every file relative to the others in the scan.

        Args:
            files: Scanned file metadata

        Returns:
            New RepoFileMeta instances with ``score`` set, in input order
        """
        if not files:
            return []
        newest = max(f.modified_at for f in files)
        oldest = min(f.modified_at for f in files)
        return [f.with_score(self.score(f, newest=newest, oldest=oldest)) for f in files]

    def score(self, meta: RepoFileMeta, newest: float, oldest: float) -> float:
        """Score one file given the mtime range of its scan."""
        w = self.weights
        total = (
            w.kind * self.kind_factor(meta.kind)
            + w.recency * self.recency_factor(meta.modified_at, newest, oldest)
            + w.size * self.size_factor(meta.size_bytes)
        )
        if meta.is_entry_point:
            total += w.entry_point_bonus
        if meta.depth <= w.shallow_depth:
            total += w.shallow_bonus
        return round(min(1.0, max(0.0, total)), 6)

    def kind_factor(self, kind: FileKind) -> float:
        return self.weights.kind_weights.get(kind, 0.0)

    @staticmethod
    def recency_factor(modified_at: float, newest: float, oldest: float) -> float:
        span = newest - oldest
        if span <= 0:
            return 1.0
        return (modified_at - oldest) / span

    def size_factor(self, size_bytes: int) -> float:
        # Empty files carry no content worth ranking up.
        if size_bytes == 0:
            return 0.5
        full = self.weights.size_full_score_bytes
        zero = max(self.weights.size_zero_score_bytes, full + 1)
        if size_bytes <= full:
            return 1.0
        if size_bytes >= zero:
            return 0.0
        return 1.0 - (size_bytes - full) / (zero - full)

"""
Text rendering for repository summaries.

Produces the markdown block the repo assembler places in the prompt. The
output is a pure function of the summary so assembly stays idempotent.
"""

from pathlib import PurePath

from cairn.core.repo.models import RepoFileMeta, RepoSummary


def render_summary(summary: RepoSummary, max_files: int | None = None) -> str:
    """Render a repository summary as markdown.

    Files are listed in rank order. When ``max_files`` is given only that
    many are listed and the rest are folded into the omitted count, which
    lets a caller shrink the block from its least important end.

    Args:
        summary: Summary to render
        max_files: Optional cap on listed files

    Returns:
        Markdown text
    """
    listed = summary.files if max_files is None else summary.files[:max_files]
    hidden = len(summary.files) - len(listed)

    sections = [
        _render_header(summary),
        _render_counts(summary, hidden),
        _render_entry_points(summary, {f.path for f in listed}),
        _render_files(listed),
    ]
    return "\n\n".join(filter(None, sections))


def _render_header(summary: RepoSummary) -> str:
    """Render summary header with repository name."""
    name = PurePath(summary.root).name or summary.root
    return f"# Repository Summary: {name}"


def _render_counts(summary: RepoSummary, hidden: int) -> str:
    """Render scanned/included/omitted counts and the kind breakdown."""
    lines = [
        f"Files scanned: {summary.total_scanned}",
        f"Files included: {summary.included_count - hidden}",
        f"Files omitted: {summary.omitted_count + hidden}",
    ]
    if summary.unreadable_count:
        lines.append(f"Unreadable: {summary.unreadable_count}")
    if summary.by_kind:
        kinds = ", ".join(f"{kind.value}={count}" for kind, count in summary.by_kind.items())
        lines.append(f"By kind: {kinds}")
    return "\n".join(lines)


def _render_entry_points(summary: RepoSummary, listed: set[str]) -> str:
    """Render entry points that are still listed."""
    entry_points = [path for path in summary.entry_points if path in listed]
    if not entry_points:
        return ""
    lines = ["## Entry Points", ""]
    lines.extend(f"- `{path}`" for path in entry_points)
    return "\n".join(lines)


def _render_files(files: list[RepoFileMeta]) -> str:
    """Render the ranked file list."""
    if not files:
        return ""
    lines = ["## Important Files", ""]
    for meta in files:
        lines.append(
            f"- `{meta.path}` ({meta.kind.value}, {meta.size_bytes} B, score {meta.score:.2f})"
        )
    return "\n".join(lines)

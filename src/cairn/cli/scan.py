"""
Cairn CLI - Scan command.

Scan a repository and print its budget-bounded summary: the highest
scoring files that fit the size cap, entry points, and what was left out.
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cairn.core.config import load_config
from cairn.core.repo import RepoSummary, ScanError, ScanOptions, scan_repository

console = Console()


def _print_summary(summary: RepoSummary, top: int) -> None:
    table = Table(title=f"Repository Summary: {Path(summary.root).name}")
    table.add_column("Score", justify="right", style="cyan")
    table.add_column("Path", style="green")
    table.add_column("Kind", style="magenta")
    table.add_column("Size", justify="right")
    for meta in summary.files[:top]:
        marker = " *" if meta.is_entry_point else ""
        table.add_row(
            f"{meta.score:.3f}", meta.path + marker, meta.kind.value, str(meta.size_bytes)
        )
    console.print(table)

    console.print(
        f"Scanned {summary.total_scanned} files: {summary.included_count} included "
        f"({summary.included_size_bytes} bytes), {summary.omitted_count} omitted, "
        f"{summary.unreadable_count} unreadable"
    )
    if summary.included_count > top:
        console.print(f"[dim]... {summary.included_count - top} more included files[/dim]")
    if summary.entry_points:
        console.print(f"Entry points: {', '.join(summary.entry_points)}")


def main(
    root: str = typer.Argument(".", help="Repository root to scan"),
    include: Optional[list[str]] = typer.Option(
        None,
        "--include",
        "-i",
        help="Only include paths matching this glob (repeatable)",
    ),
    exclude: Optional[list[str]] = typer.Option(
        None,
        "--exclude",
        "-e",
        help="Skip paths matching this glob (repeatable)",
    ),
    max_depth: Optional[int] = typer.Option(
        None, "--max-depth", "-d", min=0, help="Maximum directory depth"
    ),
    max_files: Optional[int] = typer.Option(
        None, "--max-files", min=1, help="Stop after this many files"
    ),
    max_size: Optional[int] = typer.Option(
        None, "--max-size", min=0, help="Byte cap for files included in the summary"
    ),
    top: int = typer.Option(20, "--top", "-n", min=1, help="Rows to show in the table"),
    json_output: bool = typer.Option(False, "--json", help="Output the summary as JSON"),
) -> None:
    """
    Summarize a repository for use as prompt context.

    Limits default to the scan section of .cairn.json.

    Examples:
        cairn scan .
        cairn scan ~/src/app --include "src/**" --exclude "*.lock"
        cairn scan . --max-size 200000 --json
    """
    root_path = Path(root).expanduser().resolve()
    config = load_config(project_dir=root_path if root_path.is_dir() else None)
    defaults = config.scan

    options = ScanOptions(
        root_path=root_path,
        include_patterns=include if include else defaults.include_patterns,
        exclude_patterns=defaults.exclude_patterns + (exclude or []),
        max_depth=max_depth if max_depth is not None else defaults.max_depth,
        max_files=max_files if max_files is not None else defaults.max_files,
        max_total_size_bytes=max_size if max_size is not None else defaults.max_total_size_bytes,
        respect_gitignore=defaults.respect_gitignore,
        workers=defaults.workers,
    )

    try:
        summary = scan_repository(options)
    except ScanError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps(summary.model_dump(mode="json"), indent=2))
        return

    _print_summary(summary, top)

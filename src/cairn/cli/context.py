"""
Cairn CLI - Context command.

Assemble a system + repository context for a goal and report how each
section fared against the token budget.
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cairn.core.config import load_config
from cairn.core.context import (
    AssemblySections,
    AssemblyStrategy,
    ContextAssemblyError,
    ContextBuilder,
    SystemInput,
    TokenCounter,
    context_window,
)
from cairn.core.repo import ScanError, ScanOptions, scan_repository

console = Console()


def main(
    root: str = typer.Argument(".", help="Repository root"),
    goal: str = typer.Option(..., "--goal", "-g", help="Goal placed in the system section"),
    strategy: Optional[AssemblyStrategy] = typer.Option(
        None, "--strategy", "-s", help="Assembly strategy (default from config)"
    ),
    budget: Optional[int] = typer.Option(
        None, "--budget", "-b", min=0, help="Token budget (default: the model window)"
    ),
    model: str = typer.Option("gpt-4o", "--model", "-m", help="Model id for token estimates"),
    show: bool = typer.Option(False, "--show", help="Print the assembled messages"),
    json_output: bool = typer.Option(False, "--json", help="Output the report as JSON"),
) -> None:
    """
    Assemble prompt context for a goal and show the budget report.

    Examples:
        cairn context . --goal "Add retries to the HTTP client"
        cairn context . -g "Refactor config" --strategy greedy --budget 2000
    """
    root_path = Path(root).expanduser().resolve()
    config = load_config(project_dir=root_path if root_path.is_dir() else None)
    scan_defaults = config.scan

    try:
        summary = scan_repository(
            ScanOptions(
                root_path=root_path,
                include_patterns=scan_defaults.include_patterns,
                exclude_patterns=scan_defaults.exclude_patterns,
                max_depth=scan_defaults.max_depth,
                max_files=scan_defaults.max_files,
                max_total_size_bytes=scan_defaults.max_total_size_bytes,
                respect_gitignore=scan_defaults.respect_gitignore,
                workers=scan_defaults.workers,
            )
        )
    except ScanError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    builder = ContextBuilder(
        counter=TokenCounter(config.context.chars_per_token),
        model=model,
        weights=config.context.weights,
        headroom_fraction=config.context.headroom_fraction,
        min_system_tokens=config.context.min_system_tokens,
    )
    chosen = strategy or config.context.default_strategy
    total = budget if budget is not None else context_window(model)
    sections = AssemblySections(system=SystemInput(goal=goal), repo=summary)

    try:
        result = builder.assemble(sections, chosen, total)
    except ContextAssemblyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    report = result.report
    if json_output:
        typer.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    table = Table(title=f"Context Assembly ({report.strategy.value})")
    table.add_column("Section", style="cyan")
    table.add_column("Requested", justify="right")
    table.add_column("Granted", justify="right")
    table.add_column("Status")
    for section in report.sections:
        if section.dropped:
            status = "[red]dropped[/red]"
        elif section.truncated:
            status = "[yellow]truncated[/yellow]"
        else:
            status = "[green]full[/green]"
        table.add_row(
            section.section.value,
            str(section.requested_tokens),
            str(section.granted_tokens),
            status,
        )
    console.print(table)
    console.print(f"Total: {report.total_tokens} / {report.total_budget} tokens")

    if show:
        for message in result.messages:
            console.rule(f"{message.role.value} ({message.metadata.get('source', '')})")
            console.print(message.content, markup=False)

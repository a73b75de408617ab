"""
Cairn CLI - Tokens command.

Estimate how many tokens a file costs in a model's context window.
"""

from pathlib import Path

import typer
from rich.console import Console

from cairn.core.config import load_config
from cairn.core.context import TokenCounter, context_window

console = Console()


def main(
    file: Path = typer.Argument(..., help="File to measure"),
    model: str = typer.Option("gpt-4o", "--model", "-m", help="Model id for the estimate"),
) -> None:
    """
    Estimate the token count of a file.

    Examples:
        cairn tokens README.md
        cairn tokens src/app.py --model claude-4.5-sonnet
    """
    if not file.is_file():
        console.print(f"[red]Error:[/red] Not a file: {file}")
        raise typer.Exit(1)

    try:
        text = file.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        console.print(f"[red]Error:[/red] Cannot read {file}: {e}")
        raise typer.Exit(1)

    counter = TokenCounter(load_config().context.chars_per_token)
    count = counter.count(text, model)
    window = context_window(model)
    share = count / window * 100 if window else 0.0

    console.print(f"[bold]{file}[/bold]")
    console.print(f"  Characters: {len(text)}")
    console.print(f"  Tokens (~{counter.ratio(model):g} chars/token): {count}")
    console.print(f"  Window share ({model}, {window}): {share:.1f}%")

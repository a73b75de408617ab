"""
Cairn CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging

import typer
from rich.console import Console

from cairn import __version__
from cairn.cli import context, prices, scan, tokens
from cairn.core.config.env import load_layered_env

PANEL_INSPECT = "Inspect a Repository"
PANEL_COST = "Tokens and Cost"

app = typer.Typer(
    name="cairn",
    help="Orchestration core for AI coding agents",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"cairn {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """
    Cairn - token-budgeted context, cost accounting, and run orchestration.

    Examples:
        cairn scan .                         # Summarize the current repository
        cairn prices --provider openai       # Show known prices
        cairn tokens README.md --model gpt-4o
        cairn context . --goal "Fix the flaky test" --strategy greedy
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Precedence: OS env > project .env.local > project .env > user .env
    load_layered_env()

    ctx.obj = {"verbose": verbose}


# =============================================================================
# Inspect a Repository
# =============================================================================

app.command(name="scan", rich_help_panel=PANEL_INSPECT)(scan.main)
app.command(name="context", rich_help_panel=PANEL_INSPECT)(context.main)


# =============================================================================
# Tokens and Cost
# =============================================================================

app.command(name="tokens", rich_help_panel=PANEL_COST)(tokens.main)
app.command(name="prices", rich_help_panel=PANEL_COST)(prices.main)


def cli_main() -> None:
    """Entry point for running the CLI as a module."""
    app()


if __name__ == "__main__":
    cli_main()

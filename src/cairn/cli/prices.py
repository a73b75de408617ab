"""
Cairn CLI - Prices command.

List the pricing entries cost accounting resolves against: the seeded
table plus anything added in configuration.
"""

import json
from datetime import date
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cairn.core.config import load_config
from cairn.core.cost import PricingError, PricingRegistry, build_resolver

console = Console()


def main(
    provider: Optional[str] = typer.Option(
        None, "--provider", "-p", help="Only show entries for this provider"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output entries as JSON"),
) -> None:
    """
    Show known model prices (USD per 1K tokens).

    Entries older than pricing.stale_after_days are flagged as stale.

    Examples:
        cairn prices
        cairn prices --provider anthropic --json
    """
    config = load_config()
    try:
        resolver = build_resolver(config.pricing)
    except PricingError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    today = date.today()
    max_age = config.pricing.stale_after_days
    entries = [
        entry
        for entry in resolver.registry.entries()
        if provider is None or entry.provider == provider.strip().lower()
    ]

    if json_output:
        payload = [
            {
                **entry.model_dump(mode="json"),
                "stale": PricingRegistry.is_stale(entry, today, max_age),
            }
            for entry in entries
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    if not entries:
        console.print(f"[yellow]No prices found for provider '{provider}'[/yellow]")
        return

    table = Table(title="Model Prices (USD / 1K tokens)")
    table.add_column("Provider", style="cyan")
    table.add_column("Model", style="green")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Effective", style="dim")
    table.add_column("Stale", style="red")
    for entry in entries:
        stale = PricingRegistry.is_stale(entry, today, max_age)
        table.add_row(
            entry.provider,
            entry.model,
            str(entry.input_per_1k),
            str(entry.output_per_1k),
            entry.effective_date.isoformat(),
            "yes" if stale else "",
        )
    console.print(table)
    if resolver.strict:
        console.print("[dim]Strict pricing: unknown models fail instead of being estimated[/dim]")

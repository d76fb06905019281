"""Provider diagnostics CLI commands.

Provides commands for viewing provider health and fallback behaviour:
- switchyard providers status - Probe providers and show health, breakers, usage
- switchyard providers fallbacks - Run a probe round and show fallback history
"""

import json

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from switchyard.cli.context import with_orchestrator

console = Console()

STATUS_COLORS = {
    "healthy": "green",
    "degraded": "yellow",
    "unhealthy": "red",
}


@click.group()
def providers():
    """Provider health and fallback diagnostics."""
    pass


@providers.command()
@click.option("--probe/--no-probe", default=True, show_default=True, help="Probe every provider first")
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def status(ctx: click.Context, probe: bool, as_json: bool):
    """Show provider health, circuit state and usage."""

    async def collect(orchestrator):
        if probe:
            for provider in orchestrator.coordinator.provider_order():
                await orchestrator.coordinator.probe_provider(provider)
        return orchestrator.get_status()

    status_data = with_orchestrator(ctx, collect)

    if as_json:
        click.echo(json.dumps(status_data, indent=2, default=str))
        return

    provider_rows = status_data["providers"]
    unhealthy = sum(1 for p in provider_rows.values() if p["health"]["status"] == "unhealthy")
    health_color = "green" if unhealthy == 0 else "yellow" if unhealthy < len(provider_rows) else "red"

    console.print(
        Panel(
            f"[bold]Active provider:[/bold] {status_data['active_provider']}\n"
            f"Automatic fallback: {'enabled' if status_data['auto_fallback_enabled'] else 'disabled'}\n"
            f"Selection strategy: {status_data['selection_strategy']}\n"
            f"Unhealthy: [{health_color}]{unhealthy}[/{health_color}] of {len(provider_rows)}",
            title="Provider Status",
        )
    )

    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Role")
    table.add_column("Status", justify="center")
    table.add_column("Score", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Circuit", justify="center")
    table.add_column("Requests", justify="right")
    table.add_column("Last Error", style="dim")

    for index, (provider, row) in enumerate(provider_rows.items()):
        health = row["health"]
        color = STATUS_COLORS.get(health["status"], "white")
        role = "primary" if index == 0 else f"fallback {index}"
        if not row["configured"]:
            role += " (not configured)"
        table.add_row(
            provider,
            role,
            f"[{color}]{health['status']}[/{color}]",
            f"{row['score']:.2f}",
            f"{health['success_rate']:.0%}",
            f"{health['response_time_ms']:.0f}ms",
            row["circuit"]["state"],
            str(row["usage"]["requests_today"]),
            (health["last_error"] or "")[:40],
        )

    console.print(table)


@providers.command()
@click.option(
    "--probe/--no-probe",
    default=True,
    show_default=True,
    help="Run one probe round first (may promote a fallback)",
)
@click.option("--limit", "-n", default=20, show_default=True, help="Number of events to show")
@click.pass_context
def fallbacks(ctx: click.Context, probe: bool, limit: int):
    """Show provider fallback history."""

    async def collect(orchestrator):
        if probe:
            await orchestrator.run_health_probes()
        return orchestrator.active_provider(), orchestrator.get_fallback_history()

    active, events = with_orchestrator(ctx, collect)

    if not events:
        console.print(f"[dim]No fallback events recorded. Active provider: {active}[/dim]")
        return

    table = Table(title=f"Fallback History (active: {active})")
    table.add_column("Time", style="dim")
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Reason")

    for event in events[-limit:]:
        result = "[green]switched[/green]" if event.success else "[red]failed[/red]"
        table.add_row(
            event.timestamp.strftime("%H:%M:%S"),
            event.from_provider,
            event.to_provider,
            result,
            event.reason[:60],
        )

    console.print(table)

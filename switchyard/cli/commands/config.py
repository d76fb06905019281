"""Config commands - generate, validate, inspect and update configuration."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.table import Table

from switchyard.cli.context import CHECK, CROSS, WARN, with_orchestrator

console = Console()


@click.group()
def config():
    """Manage and validate configuration."""
    pass


@config.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write to file instead of stdout")
@click.pass_context
def template(ctx: click.Context, output: Optional[str]):
    """
    Print a .env template for the current configuration.

    Example:
        switchyard config template -o .env
    """

    async def render(orchestrator):
        return orchestrator.generate_configuration_template()

    text = with_orchestrator(ctx, render)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        click.echo(f"{CHECK} Template written to {output}")
    else:
        click.echo(text)


@config.command()
@click.pass_context
def validate(ctx: click.Context):
    """
    Validate configuration against the available providers.

    Checks:
    - Primary provider is supported and has credentials
    - Fallback providers are supported and configured
    - Performance thresholds are sensible

    Exits with status 1 when errors are found.
    """

    async def check(orchestrator):
        return await orchestrator.validate_configuration()

    result = with_orchestrator(ctx, check)

    for error in result["errors"]:
        click.echo(f"{CROSS} {error}")
    for warning in result["warnings"]:
        click.echo(f"{WARN} {warning}")
    if result["recommendations"]:
        click.echo("\nRecommendations:")
        for recommendation in result["recommendations"]:
            click.echo(f"  - {recommendation}")

    if result["valid"]:
        click.echo(f"\n{CHECK} Configuration is valid")
    else:
        click.echo(f"\n{CROSS} Configuration has {len(result['errors'])} error(s)")
        ctx.exit(1)


@config.command()
@click.option("--json", "as_json", is_flag=True, help="Print the full configuration as JSON")
@click.pass_context
def show(ctx: click.Context, as_json: bool):
    """Show the effective configuration (file + environment)."""

    async def dump(orchestrator):
        return orchestrator.config.model_dump(mode="json")

    data = with_orchestrator(ctx, dump)

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title="Switchyard Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in _flatten(data).items():
        table.add_row(key, str(value))
    console.print(table)


@config.command(name="set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_value(ctx: click.Context, key: str, value: str):
    """
    Update one setting and save it to the config file.

    KEY uses dot notation; VALUE is parsed as JSON when possible.

    Example:
        switchyard config set performance_thresholds.max_response_time_ms 8000
        switchyard config set fallback_providers '["local-inference"]'
    """
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value

    updates: Dict[str, Any] = {}
    container = updates
    parts = key.split(".")
    for part in parts[:-1]:
        container = container.setdefault(part, {})
    container[parts[-1]] = parsed

    async def apply(orchestrator):
        await orchestrator.update_configuration(updates)

    with_orchestrator(ctx, apply, persist=True)
    click.echo(f"{CHECK} {key} = {parsed!r}")


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            flat.update(_flatten(value, path))
        else:
            flat[path] = value
    return flat

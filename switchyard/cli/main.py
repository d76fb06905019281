"""
Switchyard CLI - diagnostics for the provider orchestration layer.

Command Structure: switchyard <group> <command> [options]

Examples:
    switchyard providers status
    switchyard providers fallbacks
    switchyard config template > .env
    switchyard config validate
    switchyard complete "Summarize the release notes" --provider local-inference
"""

import logging
from typing import Optional

import click

from switchyard import __version__

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(version=__version__, prog_name="Switchyard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="JSON config file (default: $SWITCHYARD_CONFIG or ./.switchyard.json)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: str):
    """
    Switchyard - resilient routing across LLM providers.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj.setdefault("config_path", config_path)


# Import command groups
from switchyard.cli.commands import complete, config, providers  # noqa: E402

cli.add_command(providers.providers)
cli.add_command(config.config)
cli.add_command(complete.complete)


def main():
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()

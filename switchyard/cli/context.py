"""Shared plumbing for CLI commands: orchestrator construction and async execution."""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine, TypeVar

import click

from switchyard.core.errors import SwitchyardError

if TYPE_CHECKING:
    from switchyard.services.orchestrator import CallOrchestrator

T = TypeVar("T")

CHECK = "[OK]"
CROSS = "[X]"
WARN = "[!]"


def get_orchestrator(ctx: click.Context, persist: bool = False) -> "CallOrchestrator":
    """Return the orchestrator for this invocation.

    Tests (and embedding applications) can pass a ready orchestrator as
    ``obj={"orchestrator": ...}``; otherwise one is built from the config
    file named by --config.
    """
    obj = ctx.find_root().obj or {}
    if obj.get("orchestrator") is not None:
        return obj["orchestrator"]

    from switchyard import create_orchestrator

    try:
        return create_orchestrator(config_path=obj.get("config_path"), persist=persist)
    except SwitchyardError as e:
        raise click.ClickException(e.message) from e


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine to completion."""
    return asyncio.run(coro)


def with_orchestrator(
    ctx: click.Context,
    action: Callable[["CallOrchestrator"], Awaitable[T]],
    persist: bool = False,
) -> T:
    """Run `action(orchestrator)` and close the orchestrator afterwards.

    SwitchyardError is reported as a ClickException (exit code 1).
    """
    orchestrator = get_orchestrator(ctx, persist=persist)

    async def runner() -> T:
        try:
            return await action(orchestrator)
        finally:
            await orchestrator.close()

    try:
        return run_async(runner())
    except SwitchyardError as e:
        raise click.ClickException(f"{e.error_code}: {e.message}") from e

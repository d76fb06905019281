"""Complete command - send one prompt through the orchestrator."""

from typing import Optional

import click

from switchyard.cli.context import with_orchestrator
from switchyard.core.cancellation import CancellationToken
from switchyard.providers.base import ChatMessage


@click.command()
@click.argument("prompt")
@click.option("--system", "system_prompt", default=None, help="Optional system message")
@click.option("--provider", default=None, help="Strict mode: use only this provider, never fall back")
@click.option("--max-tokens", type=int, default=None, help="Maximum output tokens")
@click.option("--timeout", type=float, default=None, help="Overall deadline in seconds")
@click.option("--show-provider", is_flag=True, help="Print which provider answered")
@click.pass_context
def complete(
    ctx: click.Context,
    prompt: str,
    system_prompt: Optional[str],
    provider: Optional[str],
    max_tokens: Optional[int],
    timeout: Optional[float],
    show_provider: bool,
):
    """
    Send PROMPT to the active provider, falling back on failure.

    Example:
        switchyard complete "Explain circuit breakers in two sentences"
        switchyard complete "Hello" --provider local-inference --timeout 30
    """
    messages = []
    if system_prompt:
        messages.append(ChatMessage(role="system", content=system_prompt))
    messages.append(ChatMessage(role="user", content=prompt))

    cancel = CancellationToken.with_timeout(timeout) if timeout else None

    async def run(orchestrator):
        answered_by = []

        async def operation(provider_id: str) -> str:
            answered_by.append(provider_id)
            adapter = orchestrator.catalog.get(provider_id)
            return await adapter.complete(messages, max_tokens, cancel=cancel)

        with orchestrator.strict_provider(provider):
            text = await orchestrator.execute("complete", operation, cancel=cancel)
        return text, answered_by[-1]

    text, answered_by = with_orchestrator(ctx, run)

    if show_provider:
        click.echo(f"[{answered_by}]", err=True)
    click.echo(text)

"""OpenAI adapter (provider id "primary-llm")."""

import os
from typing import Any, Optional, Sequence

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError

from switchyard.core.constants import PRIMARY_LLM
from switchyard.core.errors import (
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

from .base import ChatMessage, ProbeResult, ProviderAdapter, timed_probe


def translate_openai_error(provider: str, error: Exception) -> ProviderError:
    """Map an openai SDK exception onto the ProviderError family.

    Messages carry the markers the retry classifier matches on
    ("rate limit", "timeout", HTTP status codes, "ECONNRESET").
    """
    if isinstance(error, RateLimitError):
        retry_after = None
        response = getattr(error, "response", None)
        if response is not None:
            header = response.headers.get("retry-after")
            if header and header.isdigit():
                retry_after = int(header)
        return ProviderRateLimitError(provider, retry_after=retry_after)
    if isinstance(error, APITimeoutError):
        return ProviderTimeoutError(provider)
    if isinstance(error, APIConnectionError):
        return ProviderUnavailableError(provider, reason=f"Connection failed (ECONNRESET): {error}")
    if isinstance(error, APIStatusError):
        if error.status_code >= 500:
            return ProviderUnavailableError(provider, status_code=error.status_code, reason=str(error))
        return ProviderResponseError(provider, str(error), status_code=error.status_code)
    return ProviderError(f"{provider} call failed: {error}", provider=provider)


class OpenAICompatibleAdapter(ProviderAdapter):
    """Shared chat-completions flow for OpenAI-protocol backends."""

    model: str = ""

    async def check_reachable(self) -> ProbeResult:
        async def probe():
            await self.ensure_client().models.list()

        return await timed_probe(self, probe)

    async def call(self, messages: Sequence[ChatMessage], max_output_tokens: int) -> str:
        client = self.ensure_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[m.to_dict() for m in messages],
                max_tokens=max_output_tokens,
            )
        except ProviderError:
            raise
        except Exception as e:
            raise translate_openai_error(self.provider_id, e) from e

        if not response.choices:
            raise ProviderResponseError(self.provider_id, "no choices returned")
        content = response.choices[0].message.content
        if not content:
            raise ProviderResponseError(self.provider_id, "empty completion")
        return content


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI API via AsyncOpenAI."""

    provider_id = PRIMARY_LLM
    display_name = "OpenAI"
    model_max_tokens = 128_000
    required_credential_names = ("OPENAI_API_KEY",)

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        **kwargs: Any,
    ):
        """
        Initialize OpenAI adapter.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            model: Model name (defaults to OPENAI_MODEL env var, then gpt-4o)
            base_url: Custom base URL (optional)
            organization: OpenAI organization ID (optional)
        """
        super().__init__(**kwargs)
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o")
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self.organization = organization or os.getenv("OPENAI_ORGANIZATION")

    def check_configured(self) -> bool:
        return bool(self.api_key)

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, organization=self.organization)

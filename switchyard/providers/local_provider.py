"""Ollama adapter (provider id "local-inference").

Talks to the Ollama HTTP API directly with httpx: GET /api/tags for the
probe and POST /api/chat (non-streaming) for completions. No credentials
are needed, so the adapter is always configured.
"""

import os
from typing import Any, Optional, Sequence

import httpx

from switchyard.core.constants import LOCAL_INFERENCE
from switchyard.core.errors import (
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

from .base import ChatMessage, ProbeResult, ProviderAdapter, timed_probe

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"
DEFAULT_REQUEST_TIMEOUT = 120.0


class OllamaAdapter(ProviderAdapter):
    provider_id = LOCAL_INFERENCE
    display_name = "Ollama"
    model_max_tokens = 131_072
    required_credential_names = ()

    def __init__(
        self,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        """
        Initialize Ollama adapter.

        Args:
            endpoint: Ollama base URL (defaults to OLLAMA_ENDPOINT env var)
            model: Model tag (defaults to OLLAMA_MODEL env var, then llama3.1)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        super().__init__(**kwargs)
        self.endpoint = (endpoint or os.getenv("OLLAMA_ENDPOINT", DEFAULT_OLLAMA_ENDPOINT)).rstrip("/")
        self.model = model or os.getenv("OLLAMA_MODEL", "llama3.1")
        self.timeout = timeout
        self.transport = transport

    def check_configured(self) -> bool:
        return True

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.endpoint, timeout=self.timeout, transport=self.transport)

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def check_reachable(self) -> ProbeResult:
        async def probe():
            response = await self.ensure_client().get("/api/tags")
            response.raise_for_status()

        return await timed_probe(self, probe)

    async def call(self, messages: Sequence[ChatMessage], max_output_tokens: int) -> str:
        client = self.ensure_client()
        payload = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
            "options": {"num_predict": max_output_tokens},
        }
        try:
            response = await client.post("/api/chat", json=payload)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.provider_id, self.timeout) from e
        except httpx.TransportError as e:
            raise ProviderUnavailableError(self.provider_id, reason=f"Connection failed (ECONNRESET): {e}") from e

        if response.status_code == 429:
            raise ProviderRateLimitError(self.provider_id)
        if response.status_code >= 500:
            raise ProviderUnavailableError(self.provider_id, status_code=response.status_code, reason=response.text)
        if response.status_code >= 400:
            raise ProviderResponseError(self.provider_id, response.text, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(self.provider_id, "response was not JSON") from e

        content = (data.get("message") or {}).get("content")
        if not content:
            raise ProviderResponseError(self.provider_id, "empty completion")
        return content

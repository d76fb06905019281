"""Abstract base class for model provider adapters.

An adapter wraps one backend's wire protocol. The orchestration core only
sees the contract defined here: a credential check, a reachability probe,
and a text-in/text-out call. Large prompts are routed through the
ContextChunker by complete() before they reach call().
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence

from switchyard.core.cancellation import CancellationToken
from switchyard.core.constants import CONTEXT_SAFETY_MARGIN, DEFAULT_MAX_OUTPUT_TOKENS
from switchyard.core.errors import MissingCredentialsError
from switchyard.services.context_chunker import ContextChunker, estimate_tokens

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """One message in a chat completion request."""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ProbeResult:
    """Outcome of a reachability probe."""

    reachable: bool
    response_time_ms: float = 0.0
    error: Optional[str] = None


class ProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses set provider_id, display_name, model_max_tokens and
    required_credential_names, and implement the abstract methods.
    Clients are created lazily by ensure_client() and released by close().
    """

    provider_id: str = ""
    display_name: str = ""
    model_max_tokens: int = 8_000
    required_credential_names: Sequence[str] = ()

    def __init__(
        self,
        safety_margin: float = CONTEXT_SAFETY_MARGIN,
        chunker: Optional[ContextChunker] = None,
    ):
        self.safety_margin = safety_margin
        self.chunker = chunker or ContextChunker()
        self._client: Any = None

    @property
    def effective_input_limit(self) -> int:
        """Input tokens a single call may carry: model_max_tokens less the safety margin."""
        return int(self.model_max_tokens * (1 - self.safety_margin))

    @property
    def has_client(self) -> bool:
        return self._client is not None

    @abstractmethod
    def check_configured(self) -> bool:
        """
        Check whether the required credentials are present.

        Returns:
            True if a client can be constructed
        """
        pass

    @abstractmethod
    def _create_client(self) -> Any:
        """Construct the backend client. Only called once credentials are present."""
        pass

    def ensure_client(self) -> Any:
        """
        Return the backend client, creating it on first use.

        Raises:
            MissingCredentialsError: If the adapter is not configured
        """
        if self._client is None:
            if not self.check_configured():
                raise MissingCredentialsError(self.provider_id, self.required_credential_names)
            self._client = self._create_client()
            logger.info(f"Created client for {self.provider_id}")
        return self._client

    @abstractmethod
    async def check_reachable(self) -> ProbeResult:
        """
        Probe backend connectivity.

        Returns:
            ProbeResult; failures are reported as reachable=False rather than raised
        """
        pass

    @abstractmethod
    async def call(self, messages: Sequence[ChatMessage], max_output_tokens: int) -> str:
        """
        Send one chat completion request.

        Args:
            messages: Prepared conversation
            max_output_tokens: Upper bound on generated tokens

        Returns:
            Generated text

        Raises:
            ProviderError: On backend failure (retryable markers in the message)
        """
        pass

    async def close(self) -> None:
        """Release the client, if one was created."""
        client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            await client.close()

    def estimate_input_tokens(self, messages: Sequence[ChatMessage]) -> int:
        return sum(estimate_tokens(m.content) for m in messages)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        max_output_tokens: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """
        Run a completion, chunking the prompt when it exceeds the input limit.

        Args:
            messages: Conversation to send
            max_output_tokens: Output budget for the whole request
            cancel: Optional cancellation token for inter-chunk delays

        Returns:
            Generated text (combined across chunks when chunked)

        Raises:
            ChunkingError: If an oversized prompt cannot be chunked
            ProviderError: On backend failure
        """
        max_output_tokens = max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS
        estimated = self.estimate_input_tokens(messages)
        if estimated <= self.effective_input_limit:
            return await self.call(list(messages), max_output_tokens)

        logger.info(
            f"{self.provider_id}: ~{estimated} input tokens exceed limit {self.effective_input_limit}; chunking"
        )
        return await self.chunker.process(
            messages,
            input_budget=self.effective_input_limit,
            total_output_budget=max_output_tokens,
            call=self.call,
            cancel=cancel,
        )

    def describe(self) -> Dict[str, Any]:
        """Static adapter facts for diagnostics."""
        return {
            "provider": self.provider_id,
            "name": self.display_name,
            "configured": self.check_configured(),
            "model_max_tokens": self.model_max_tokens,
            "effective_input_limit": self.effective_input_limit,
            "required_credentials": list(self.required_credential_names),
        }


async def timed_probe(adapter: ProviderAdapter, probe) -> ProbeResult:
    """Run an async probe callable and time it, mapping exceptions to unreachable."""
    start = time.perf_counter()
    try:
        adapter.ensure_client()
        await probe()
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        return ProbeResult(reachable=False, response_time_ms=elapsed, error=f"{type(e).__name__}: {e}")
    return ProbeResult(reachable=True, response_time_ms=(time.perf_counter() - start) * 1000)

"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from unittest.mock import AsyncMock

import pytest

from switchyard.config import EnvironmentConfig, RetrySettings
from switchyard.core.constants import (
    COMMUNITY_INFERENCE,
    ENTERPRISE_GATEWAY,
    LOCAL_INFERENCE,
    PRIMARY_LLM,
)
from switchyard.providers.base import ChatMessage, ProbeResult, ProviderAdapter
from switchyard.providers.registry import ProviderCatalog
from switchyard.services.context_chunker import ContextChunker
from switchyard.services.orchestrator import CallOrchestrator
from switchyard.services.retry import RetryExecutor

ALL_PROVIDERS = [PRIMARY_LLM, ENTERPRISE_GATEWAY, COMMUNITY_INFERENCE, LOCAL_INFERENCE]


class FakeAdapter(ProviderAdapter):
    """In-memory adapter with scripted call results and probe outcomes.

    `responses` items are consumed in order per call: a string is returned,
    an exception instance is raised. Once exhausted, calls return
    "<provider> ok".
    """

    def __init__(
        self,
        provider_id: str,
        configured: bool = True,
        reachable: bool = True,
        probe_ms: float = 5.0,
        responses: Optional[Iterable[Union[str, BaseException]]] = None,
        model_max_tokens: int = 8_000,
        **kwargs: Any,
    ):
        kwargs.setdefault("chunker", ContextChunker(sleep=AsyncMock()))
        super().__init__(**kwargs)
        self.provider_id = provider_id
        self.display_name = provider_id.replace("-", " ").title()
        self.model_max_tokens = model_max_tokens
        self.required_credential_names = (provider_id.upper().replace("-", "_") + "_KEY",)
        self.configured = configured
        self.reachable = reachable
        self.probe_ms = probe_ms
        self.responses: List[Union[str, BaseException]] = list(responses or [])
        self.calls: List[Sequence[ChatMessage]] = []
        self.max_tokens_seen: List[int] = []
        self.probes = 0
        self.closed = False

    def check_configured(self) -> bool:
        return self.configured

    def _create_client(self) -> Any:
        return {"provider": self.provider_id}

    async def check_reachable(self) -> ProbeResult:
        self.probes += 1
        await asyncio.sleep(0)
        if not self.reachable:
            return ProbeResult(reachable=False, response_time_ms=self.probe_ms, error="connection refused")
        return ProbeResult(reachable=True, response_time_ms=self.probe_ms)

    async def call(self, messages: Sequence[ChatMessage], max_output_tokens: int) -> str:
        self.calls.append(list(messages))
        self.max_tokens_seen.append(max_output_tokens)
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return f"{self.provider_id} ok"

    async def close(self) -> None:
        self.closed = True
        await super().close()


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fast_config(**overrides: Any) -> EnvironmentConfig:
    """Default provider order with instant, single-retry backoff."""
    data: Dict[str, Any] = {
        "primary_provider": PRIMARY_LLM,
        "fallback_providers": [ENTERPRISE_GATEWAY, COMMUNITY_INFERENCE, LOCAL_INFERENCE],
        "retry_config": RetrySettings(max_retries=1, base_delay_ms=0, max_delay_ms=0, jitter_ratio=0.0),
        "quotas": {},
    }
    data.update(overrides)
    return EnvironmentConfig(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def adapters() -> Dict[str, FakeAdapter]:
    """One healthy fake adapter per built-in provider id."""
    return {provider: FakeAdapter(provider) for provider in ALL_PROVIDERS}


@pytest.fixture
def catalog(adapters) -> ProviderCatalog:
    return ProviderCatalog(adapters.values())


@pytest.fixture
def retry_executor() -> RetryExecutor:
    return RetryExecutor(sleep=AsyncMock(), random_fn=lambda: 0.0)


@pytest.fixture
def make_orchestrator(catalog, retry_executor, clock):
    """Factory building a CallOrchestrator over the fake catalog."""

    def factory(config: Optional[EnvironmentConfig] = None, **kwargs: Any) -> CallOrchestrator:
        kwargs.setdefault("retry_executor", retry_executor)
        kwargs.setdefault("clock", clock)
        return CallOrchestrator(config or fast_config(), catalog, **kwargs)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator) -> CallOrchestrator:
    return make_orchestrator()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove Switchyard and provider variables that would leak into config loading."""
    import os

    for key in list(os.environ):
        if key.startswith("SWITCHYARD_"):
            monkeypatch.delenv(key, raising=False)
    for key in (
        "OPENAI_API_KEY",
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_USE_MANAGED_IDENTITY",
        "GITHUB_TOKEN",
        "OLLAMA_ENDPOINT",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch

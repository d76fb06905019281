"""Provider catalog: the registry of known providers keyed by identity.

The catalog is the only place that maps a provider id to an adapter.
Everything else in Switchyard works with provider ids and asks the
catalog for credentials checks, reachability probes and clients.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Type

from switchyard.core.constants import (
    COMMUNITY_INFERENCE,
    ENTERPRISE_GATEWAY,
    LOCAL_INFERENCE,
    PRIMARY_LLM,
)
from switchyard.core.errors import UnsupportedProviderError

from .azure_provider import AzureOpenAIAdapter
from .base import ProbeResult, ProviderAdapter
from .community_provider import GitHubModelsAdapter
from .local_provider import OllamaAdapter
from .openai_provider import OpenAIAdapter

logger = logging.getLogger(__name__)


@dataclass
class ProviderDefinition:
    """Static description of a built-in provider."""

    provider_id: str
    display_name: str
    backend: str
    adapter_class: Type[ProviderAdapter]
    description: str = ""


BUILTIN_PROVIDERS: Dict[str, ProviderDefinition] = {
    PRIMARY_LLM: ProviderDefinition(
        provider_id=PRIMARY_LLM,
        display_name="OpenAI",
        backend="openai",
        adapter_class=OpenAIAdapter,
        description="Commercial API (OpenAI chat completions)",
    ),
    ENTERPRISE_GATEWAY: ProviderDefinition(
        provider_id=ENTERPRISE_GATEWAY,
        display_name="Azure OpenAI",
        backend="azure",
        adapter_class=AzureOpenAIAdapter,
        description="Enterprise gateway (Azure OpenAI deployment, key or Entra ID)",
    ),
    COMMUNITY_INFERENCE: ProviderDefinition(
        provider_id=COMMUNITY_INFERENCE,
        display_name="GitHub Models",
        backend="github",
        adapter_class=GitHubModelsAdapter,
        description="Community inference endpoint (OpenAI-compatible)",
    ),
    LOCAL_INFERENCE: ProviderDefinition(
        provider_id=LOCAL_INFERENCE,
        display_name="Ollama",
        backend="ollama",
        adapter_class=OllamaAdapter,
        description="Local inference server",
    ),
}


def get_provider_definition(provider_id: str) -> Optional[ProviderDefinition]:
    return BUILTIN_PROVIDERS.get(provider_id)


def list_builtin_providers() -> List[str]:
    return list(BUILTIN_PROVIDERS)


class ProviderCatalog:
    """Registry of provider adapters keyed by provider id.

    Usage:
        catalog = ProviderCatalog.with_builtin_providers()
        adapter = catalog.get("primary-llm")
        probe = await catalog.check_reachable("local-inference")
    """

    def __init__(self, adapters: Optional[Iterable[ProviderAdapter]] = None):
        self._adapters: Dict[str, ProviderAdapter] = {}
        for adapter in adapters or ():
            self.register(adapter)

    @classmethod
    def with_builtin_providers(
        cls,
        factory_kwargs: Optional[Dict[str, Dict[str, Any]]] = None,
        safety_margin: Optional[float] = None,
    ) -> "ProviderCatalog":
        """Build a catalog holding one adapter per built-in provider.

        Args:
            factory_kwargs: Per-provider constructor overrides
            safety_margin: Context safety margin applied to every adapter
        """
        factory_kwargs = factory_kwargs or {}
        adapters = []
        for provider_id, definition in BUILTIN_PROVIDERS.items():
            kwargs = dict(factory_kwargs.get(provider_id, {}))
            if safety_margin is not None:
                kwargs.setdefault("safety_margin", safety_margin)
            adapters.append(definition.adapter_class(**kwargs))
        return cls(adapters)

    def register(self, adapter: ProviderAdapter) -> None:
        """Register an adapter. Provider ids are immutable once registered."""
        if adapter.provider_id in self._adapters:
            raise ValueError(f"Provider already registered: {adapter.provider_id}")
        self._adapters[adapter.provider_id] = adapter
        logger.debug(f"Registered provider {adapter.provider_id} ({type(adapter).__name__})")

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._adapters

    def ids(self) -> List[str]:
        return list(self._adapters)

    def get(self, provider_id: str) -> ProviderAdapter:
        """
        Look up an adapter.

        Raises:
            UnsupportedProviderError: If the id is not registered
        """
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise UnsupportedProviderError(provider_id)
        return adapter

    def is_configured(self, provider_id: str) -> bool:
        return self.get(provider_id).check_configured()

    def ensure_client(self, provider_id: str) -> Any:
        return self.get(provider_id).ensure_client()

    async def check_reachable(self, provider_id: str) -> ProbeResult:
        adapter = self.get(provider_id)
        if not adapter.check_configured():
            return ProbeResult(reachable=False, error="not configured")
        return await adapter.check_reachable()

    def set_safety_margin(self, margin: float) -> None:
        for adapter in self._adapters.values():
            adapter.safety_margin = margin

    def describe(self) -> Dict[str, Dict[str, Any]]:
        return {provider_id: adapter.describe() for provider_id, adapter in self._adapters.items()}

    async def close(self) -> None:
        """Close every adapter client that was created."""
        for adapter in self._adapters.values():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {adapter.provider_id} client: {e}")

"""Provider adapters for the orchestration core."""

from typing import Literal

from .azure_provider import AzureOpenAIAdapter
from .base import ChatMessage, ProbeResult, ProviderAdapter
from .community_provider import GitHubModelsAdapter
from .local_provider import OllamaAdapter
from .openai_provider import OpenAIAdapter
from .registry import BUILTIN_PROVIDERS, ProviderCatalog, ProviderDefinition

ProviderType = Literal["primary-llm", "enterprise-gateway", "community-inference", "local-inference"]


def create_provider(provider_type: ProviderType, **kwargs) -> ProviderAdapter:
    """
    Factory function to create the adapter for a built-in provider id.

    Args:
        provider_type: "primary-llm", "enterprise-gateway",
            "community-inference", or "local-inference"
        **kwargs: Adapter-specific configuration

    Returns:
        Adapter instance (no client is created until first use)

    Raises:
        UnsupportedProviderError: If provider_type is not a built-in provider
    """
    from switchyard.core.errors import UnsupportedProviderError

    definition = BUILTIN_PROVIDERS.get(provider_type)
    if definition is None:
        raise UnsupportedProviderError(provider_type)
    return definition.adapter_class(**kwargs)


__all__ = [
    "ChatMessage",
    "ProbeResult",
    "ProviderAdapter",
    "ProviderCatalog",
    "ProviderDefinition",
    "OpenAIAdapter",
    "AzureOpenAIAdapter",
    "GitHubModelsAdapter",
    "OllamaAdapter",
    "create_provider",
    "ProviderType",
]

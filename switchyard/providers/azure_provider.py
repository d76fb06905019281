"""Azure OpenAI adapter (provider id "enterprise-gateway")."""

import os
from typing import Any, Optional

from azure.identity.aio import DefaultAzureCredential
from openai import AsyncAzureOpenAI

from switchyard.core.constants import ENTERPRISE_GATEWAY

from .openai_provider import OpenAICompatibleAdapter

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"


class AzureOpenAIAdapter(OpenAICompatibleAdapter):
    """Azure OpenAI deployment, authenticated by API key or Entra ID."""

    provider_id = ENTERPRISE_GATEWAY
    display_name = "Azure OpenAI"
    model_max_tokens = 32_000
    required_credential_names = ("AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY or AZURE_USE_MANAGED_IDENTITY")

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        deployment: Optional[str] = None,
        api_version: Optional[str] = None,
        use_managed_identity: Optional[bool] = None,
        **kwargs: Any,
    ):
        """
        Initialize Azure OpenAI adapter.

        Args:
            api_key: Azure OpenAI API key (defaults to AZURE_OPENAI_API_KEY env var)
            endpoint: Resource endpoint (defaults to AZURE_OPENAI_ENDPOINT env var)
            deployment: Deployment name (defaults to AZURE_OPENAI_DEPLOYMENT env var)
            api_version: Azure OpenAI API version
            use_managed_identity: Use DefaultAzureCredential instead of an API key
        """
        super().__init__(**kwargs)
        self.api_key = api_key or os.getenv("AZURE_OPENAI_API_KEY")
        self.endpoint = endpoint or os.getenv("AZURE_OPENAI_ENDPOINT")
        self.model = deployment or os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o")
        self.api_version = api_version or os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-21")
        if use_managed_identity is None:
            use_managed_identity = os.getenv("AZURE_USE_MANAGED_IDENTITY", "false").lower() == "true"
        self.use_managed_identity = use_managed_identity
        self._credential: Optional[DefaultAzureCredential] = None

    def check_configured(self) -> bool:
        return bool(self.endpoint and (self.api_key or self.use_managed_identity))

    def _create_client(self) -> AsyncAzureOpenAI:
        if self.use_managed_identity:
            # Held on the instance so the credential outlives the client's token calls
            self._credential = DefaultAzureCredential()

            async def get_token():
                token = await self._credential.get_token(COGNITIVE_SERVICES_SCOPE)
                return token.token

            return AsyncAzureOpenAI(
                azure_endpoint=self.endpoint,
                api_version=self.api_version,
                azure_ad_token_provider=get_token,
            )

        return AsyncAzureOpenAI(api_key=self.api_key, azure_endpoint=self.endpoint, api_version=self.api_version)

    async def close(self) -> None:
        await super().close()
        credential, self._credential = self._credential, None
        if credential is not None:
            await credential.close()

"""GitHub Models adapter (provider id "community-inference").

GitHub Models speaks the OpenAI chat-completions protocol, so this adapter
is AsyncOpenAI pointed at the GitHub inference endpoint.
"""

import os
from typing import Any, Optional

from openai import AsyncOpenAI

from switchyard.core.constants import COMMUNITY_INFERENCE

from .openai_provider import OpenAICompatibleAdapter

GITHUB_MODELS_BASE_URL = "https://models.inference.ai.azure.com"


class GitHubModelsAdapter(OpenAICompatibleAdapter):
    provider_id = COMMUNITY_INFERENCE
    display_name = "GitHub Models"
    model_max_tokens = 128_000
    required_credential_names = ("GITHUB_TOKEN",)

    def __init__(
        self,
        token: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.token = token or os.getenv("GITHUB_TOKEN")
        self.model = model or os.getenv("GITHUB_MODELS_MODEL", "gpt-4o-mini")
        self.base_url = base_url or os.getenv("GITHUB_MODELS_ENDPOINT", GITHUB_MODELS_BASE_URL)

    def check_configured(self) -> bool:
        return bool(self.token)

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=self.token, base_url=self.base_url)

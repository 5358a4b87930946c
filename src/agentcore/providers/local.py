"""Models served by a local OpenAI-compatible server (llama.cpp server, LM Studio, vLLM)."""

from __future__ import annotations

from openai import AsyncOpenAI

from src.agentcore.providers.openai_provider import OpenAIProvider
from src.agentcore.providers.types import ProviderConfigValue, ProviderInfo, ProviderModel, ProviderType

DEFAULT_LOCAL_BASE_URL = "http://localhost:8080/v1"


class LocalProvider(OpenAIProvider):
    provider_type = ProviderType.LOCAL
    # llama.cpp and similar servers ignore the model name when only one is loaded
    default_model = "default"
    info = ProviderInfo(
        name="Local",
        description="Models running on this machine behind an OpenAI-compatible server.",
        config_values=[
            ProviderConfigValue(
                key="LOCAL_BASE_URL", caption="Base URL of the local server", default=DEFAULT_LOCAL_BASE_URL
            ),
            ProviderConfigValue(key="LOCAL_API_KEY", caption="API key, if the server requires one", secret=True),
        ],
    )

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.config.get("LOCAL_API_KEY") or "local",
            base_url=self.config.get("LOCAL_BASE_URL") or DEFAULT_LOCAL_BASE_URL,
        )

    async def get_models(self) -> list[ProviderModel]:
        # Local servers report whatever they loaded; no filtering
        return [
            ProviderModel(provider=self.provider_type, id=model.id, name=model.id)
            async for model in self._client.models.list()
        ]

"""
Ollama adapter.

Ollama exposes an OpenAI-compatible endpoint at /v1, so this reuses the
OpenAI adapter pointed at the Ollama host. No API key is needed.
"""

from __future__ import annotations

from openai import AsyncOpenAI

from src.agentcore.providers.openai_provider import OpenAIProvider
from src.agentcore.providers.types import ProviderConfigValue, ProviderInfo, ProviderType

DEFAULT_OLLAMA_HOST = "http://127.0.0.1:11434"


def openai_base_url(host: str) -> str:
    """Ollama host URL -> its OpenAI-compatible base URL."""
    host = host.rstrip("/")
    return host if host.endswith("/v1") else f"{host}/v1"


class OllamaProvider(OpenAIProvider):
    provider_type = ProviderType.OLLAMA
    default_model = "llama3.2"
    info = ProviderInfo(
        name="Ollama",
        description="Ollama runs open models locally.",
        website="https://ollama.com",
        config_values=[
            ProviderConfigValue(key="OLLAMA_HOST", caption="Ollama host", default=DEFAULT_OLLAMA_HOST),
        ],
    )

    def _create_client(self) -> AsyncOpenAI:
        host = self.config.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST
        return AsyncOpenAI(api_key="ollama", base_url=openai_base_url(host))

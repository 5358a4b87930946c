"""Provider registry: metadata, configuration resolution and adapter creation."""

from __future__ import annotations

import os
from typing import Optional, Type, Union

from src.agentcore.config_store import ConfigStore
from src.agentcore.errors import ProviderError
from src.agentcore.providers.base import Provider, ToolHost
from src.agentcore.providers.bedrock import BedrockProvider
from src.agentcore.providers.claude import ClaudeProvider
from src.agentcore.providers.gemini import GeminiProvider
from src.agentcore.providers.local import LocalProvider
from src.agentcore.providers.ollama import OllamaProvider
from src.agentcore.providers.openai_provider import OpenAIProvider
from src.agentcore.providers.test_provider import TestProvider
from src.agentcore.providers.types import ProviderInfo, ProviderModel, ProviderType
from src.agentcore.yaml_config import AgentConfig
from src.utils.logger import get_logger

ENV_PREFIX = "env://"

PROVIDER_CLASSES: dict[ProviderType, Type[Provider]] = {
    ProviderType.CLAUDE: ClaudeProvider,
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.GEMINI: GeminiProvider,
    ProviderType.OLLAMA: OllamaProvider,
    ProviderType.BEDROCK: BedrockProvider,
    ProviderType.TEST: TestProvider,
    ProviderType.LOCAL: LocalProvider,
}


def parse_provider_type(value: Union[str, ProviderType]) -> ProviderType:
    try:
        return ProviderType(value)
    except ValueError:
        raise ProviderError(f"Unknown provider type: {value}", str(value)) from None


def resolve_secret(value: str) -> str:
    """Resolve an `env://NAME` reference; other values pass through.

    Raises:
        ProviderError: The reference is empty or the variable is not set.
    """
    if not value.startswith(ENV_PREFIX):
        return value
    name = value[len(ENV_PREFIX):].strip()
    if not name:
        raise ProviderError(f"Environment variable name is empty in reference: {value}")
    resolved = os.environ.get(name)
    if resolved is None:
        raise ProviderError(f"Environment variable '{name}' not found")
    return resolved


def obfuscate(value: str) -> str:
    if len(value) > 8:
        return f"{value[:4]}{'*' * min(len(value) - 8, 20)}{value[-4:]}"
    return "***"


class ProviderFactory:
    """Creates provider adapters from the provider settings in the agent config."""

    def __init__(self, store: ConfigStore, host: ToolHost):
        self.store = store
        self.host = host
        self.logger = get_logger("ProviderFactory")

    def get_available_providers(self) -> list[ProviderType]:
        return list(PROVIDER_CLASSES)

    def get_provider_info(self, provider: Union[str, ProviderType]) -> ProviderInfo:
        return PROVIDER_CLASSES[parse_provider_type(provider)].get_info()

    def get_installed_providers(self) -> list[ProviderType]:
        """Providers that have a settings block in the agent config."""
        installed = []
        for key in self.store.get_config().providers:
            try:
                installed.append(ProviderType(key))
            except ValueError:
                self.logger.warning(f"⚠️ Ignoring config for unknown provider '{key}'")
        return installed

    def set_provider_config(self, provider: Union[str, ProviderType], values: dict[str, str]) -> None:
        provider_type = parse_provider_type(provider)

        def mutate(config: AgentConfig) -> None:
            config.providers[provider_type.value] = dict(values)

        self.store.update_config(mutate, "providers")
        self.logger.info(f"✅ Saved {provider_type.value} provider settings: {self.obfuscate_config(provider_type, values)}")

    def raw_config(self, provider_type: ProviderType) -> dict[str, str]:
        """Declared defaults overlaid with the values stored in the agent config."""
        values = {
            value.key: value.default
            for value in PROVIDER_CLASSES[provider_type].get_info().config_values
            if value.default is not None
        }
        values.update(self.store.get_config().providers.get(provider_type.value, {}))
        return values

    def resolve_config(self, provider_type: ProviderType) -> dict[str, str]:
        return {key: resolve_secret(value) for key, value in self.raw_config(provider_type).items()}

    def obfuscate_config(self, provider: Union[str, ProviderType], config: dict[str, str]) -> dict[str, str]:
        """Copy of `config` with secret values masked, safe for logging."""
        secret_keys = {value.key for value in self.get_provider_info(provider).config_values if value.secret}
        return {
            key: obfuscate(value) if key in secret_keys and value else value
            for key, value in config.items()
        }

    def create(self, provider: Union[str, ProviderType], model_id: Optional[str] = None) -> Provider:
        """Create an adapter for `model_id` (or the provider's default model).

        Raises:
            ProviderError: Unknown provider, unresolvable secret, missing
                required setting or no model.
        """
        provider_type = parse_provider_type(provider)
        provider_class = PROVIDER_CLASSES[provider_type]
        model_name = model_id or provider_class.default_model
        if not model_name:
            raise ProviderError(f"No model specified for provider {provider_type.value}", provider_type.value)

        config = self.resolve_config(provider_type)
        for value in provider_class.get_info().config_values:
            if value.required and not config.get(value.key):
                raise ProviderError(f"{value.key} is missing in the configuration", provider_type.value)

        self.logger.info(f"Creating {provider_type.value} provider for model {model_name}")
        self.logger.debug(f"Provider settings: {self.obfuscate_config(provider_type, config)}")
        return provider_class(model_name, self.host, config)

    async def validate_configuration(self, provider: Union[str, ProviderType]) -> tuple[bool, Optional[str]]:
        try:
            adapter = self.create(provider)
        except ProviderError as e:
            return False, str(e)
        return await adapter.validate_configuration()

    async def get_models(self, provider: Union[str, ProviderType]) -> list[ProviderModel]:
        return await self.create(provider).get_models()

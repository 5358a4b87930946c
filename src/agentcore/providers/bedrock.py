"""Claude models served through Amazon Bedrock."""

from __future__ import annotations

from typing import Optional

from anthropic import AsyncAnthropicBedrock

from src.agentcore.providers.base import required_config
from src.agentcore.providers.claude import ClaudeProvider
from src.agentcore.providers.types import ProviderConfigValue, ProviderInfo, ProviderModel, ProviderType

DEFAULT_AWS_REGION = "us-east-1"

# Bedrock has no model listing through the Anthropic client
BEDROCK_MODELS = (
    ("anthropic.claude-3-5-haiku-20241022-v1:0", "Claude 3.5 Haiku"),
    ("anthropic.claude-3-5-sonnet-20241022-v2:0", "Claude 3.5 Sonnet v2"),
    ("anthropic.claude-3-7-sonnet-20250219-v1:0", "Claude 3.7 Sonnet"),
    ("anthropic.claude-sonnet-4-20250514-v1:0", "Claude Sonnet 4"),
    ("anthropic.claude-opus-4-20250514-v1:0", "Claude Opus 4"),
)


class BedrockProvider(ClaudeProvider):
    provider_type = ProviderType.BEDROCK
    default_model = "anthropic.claude-3-7-sonnet-20250219-v1:0"
    info = ProviderInfo(
        name="Amazon Bedrock",
        description="Amazon Bedrock is a fully managed service that offers a choice of high-performing foundation models.",
        website="https://aws.amazon.com/bedrock/",
        config_values=[
            ProviderConfigValue(
                key="AWS_ACCESS_KEY_ID",
                caption="AWS access key ID to use for Bedrock",
                secret=True,
                required=True,
                default="env://AWS_ACCESS_KEY_ID",
            ),
            ProviderConfigValue(
                key="AWS_SECRET_ACCESS_KEY",
                caption="AWS secret access key to use for Bedrock",
                secret=True,
                required=True,
                default="env://AWS_SECRET_ACCESS_KEY",
            ),
            ProviderConfigValue(key="AWS_REGION", caption="AWS region", default=DEFAULT_AWS_REGION),
        ],
    )

    def _create_client(self):
        provider = self.provider_type.value
        return AsyncAnthropicBedrock(
            aws_access_key=required_config(self.config, "AWS_ACCESS_KEY_ID", provider),
            aws_secret_key=required_config(self.config, "AWS_SECRET_ACCESS_KEY", provider),
            aws_region=self.config.get("AWS_REGION") or DEFAULT_AWS_REGION,
        )

    async def get_models(self) -> list[ProviderModel]:
        return [ProviderModel(provider=self.provider_type, id=model_id, name=name) for model_id, name in BEDROCK_MODELS]

    async def validate_configuration(self) -> tuple[bool, Optional[str]]:
        # A static model list proves nothing about the credentials
        for key in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"):
            if not self.config.get(key):
                return False, f"{key} is missing or could not be resolved"
        return True, None

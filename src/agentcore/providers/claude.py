"""
Anthropic Claude adapter.

The system prompt travels as the top-level `system` parameter, tool calls
are `tool_use` content blocks on the assistant message and their results are
`tool_result` blocks on the following user message.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from anthropic import AsyncAnthropic
from mcp import types

from src.agentcore.providers.base import (
    BackendResponse,
    BackendToolCall,
    Conversation,
    Provider,
    SamplingParams,
    ToolHost,
    required_config,
)
from src.agentcore.providers.types import (
    ProviderConfigValue,
    ProviderInfo,
    ProviderModel,
    ProviderType,
    ToolCallRequest,
    ToolCallResult,
)


class ClaudeProvider(Provider):
    provider_type = ProviderType.CLAUDE
    default_model = "claude-sonnet-4-20250514"
    # Newer Claude models reject requests that set both temperature and top_p
    combined_sampling_allowed = False
    info = ProviderInfo(
        name="Anthropic Claude",
        description="Claude is a family of large language models developed by Anthropic.",
        website="https://www.anthropic.com",
        config_values=[
            ProviderConfigValue(key="ANTHROPIC_API_KEY", caption="Anthropic API key", secret=True, required=True),
        ],
    )

    def __init__(self, model_name: str, host: ToolHost, config: dict[str, str]):
        super().__init__(model_name, host, config)
        self._client = self._create_client()

    def _create_client(self):
        return AsyncAnthropic(api_key=required_config(self.config, "ANTHROPIC_API_KEY", self.provider_type.value))

    async def get_models(self) -> list[ProviderModel]:
        models = []
        async for model in self._client.models.list():
            models.append(
                ProviderModel(
                    provider=self.provider_type,
                    id=model.id,
                    name=getattr(model, "display_name", None) or model.id,
                )
            )
        return models

    # -- translation --------------------------------------------------------

    def _append_user(self, conversation: Conversation, text: str) -> None:
        conversation.messages.append({"role": "user", "content": text})

    def _append_assistant(
        self, conversation: Conversation, text: Optional[str], tool_calls: Sequence[ToolCallRequest]
    ) -> None:
        blocks: list[dict[str, Any]] = []
        if text:
            blocks.append({"type": "text", "text": text})
        for call in tool_calls:
            blocks.append({"type": "tool_use", "id": call.tool_call_id, "name": call.qualified_name, "input": call.args})
        if blocks:
            conversation.messages.append({"role": "assistant", "content": blocks})

    def _append_tool_results(self, conversation: Conversation, results: Sequence[ToolCallResult]) -> None:
        conversation.messages.append({
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": result.tool_call_id,
                    "content": result.output,
                    "is_error": result.error is not None,
                }
                for result in results
            ],
        })

    @staticmethod
    def _to_provider_tools(tools: list[types.Tool]) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description or "", "input_schema": tool.inputSchema}
            for tool in tools
        ]

    async def _send(
        self, conversation: Conversation, tools: list[types.Tool], params: SamplingParams
    ) -> BackendResponse:
        request: dict[str, Any] = {
            "model": params.model,
            "max_tokens": params.max_tokens,
            "messages": conversation.messages,
        }
        if conversation.system_prompt:
            request["system"] = conversation.system_prompt
        if tools:
            request["tools"] = self._to_provider_tools(tools)
        if params.temperature is not None:
            request["temperature"] = params.temperature
        if params.top_p is not None:
            request["top_p"] = params.top_p

        response = await self._client.messages.create(**request)

        result = BackendResponse(
            input_tokens=response.usage.input_tokens if response.usage else 0,
            output_tokens=response.usage.output_tokens if response.usage else 0,
            truncated=response.stop_reason == "max_tokens",
        )
        for block in response.content:
            if block.type == "text":
                result.texts.append(block.text)
            elif block.type == "tool_use":
                result.tool_calls.append(
                    BackendToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=block.input if isinstance(block.input, dict) else {},
                    )
                )
        return result

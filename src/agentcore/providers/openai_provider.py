"""
OpenAI chat-completions adapter.

Also the base for OpenAI-compatible endpoints (Ollama, local servers):
subclasses only change the client construction and model listing.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from mcp import types
from openai import AsyncOpenAI

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

# Model ids that are not chat models
_NON_CHAT_MODEL_WORDS = (
    "dall-e", "tts", "whisper", "embedding", "embed", "audio", "transcribe", "moderation", "babbage", "davinci",
)


class OpenAIProvider(Provider):
    provider_type = ProviderType.OPENAI
    default_model = "gpt-4o"
    info = ProviderInfo(
        name="OpenAI",
        description="OpenAI is an AI research and deployment company.",
        website="https://openai.com",
        config_values=[
            ProviderConfigValue(key="OPENAI_API_KEY", caption="OpenAI API key", secret=True, required=True),
        ],
    )

    def __init__(self, model_name: str, host: ToolHost, config: dict[str, str]):
        super().__init__(model_name, host, config)
        self._client = self._create_client()

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=required_config(self.config, "OPENAI_API_KEY", self.provider_type.value))

    async def get_models(self) -> list[ProviderModel]:
        models = []
        async for model in self._client.models.list():
            if any(word in model.id.lower() for word in _NON_CHAT_MODEL_WORDS):
                continue
            models.append(ProviderModel(provider=self.provider_type, id=model.id, name=model.id))
        return models

    # -- translation --------------------------------------------------------

    def _new_conversation(self, system_prompt: Optional[str]) -> Conversation:
        conversation = Conversation(system_prompt=system_prompt)
        if system_prompt:
            conversation.messages.append({"role": "system", "content": system_prompt})
        return conversation

    def _append_user(self, conversation: Conversation, text: str) -> None:
        conversation.messages.append({"role": "user", "content": text})

    def _append_assistant(
        self, conversation: Conversation, text: Optional[str], tool_calls: Sequence[ToolCallRequest]
    ) -> None:
        if not text and not tool_calls:
            return
        entry: dict[str, Any] = {"role": "assistant", "content": text}
        if tool_calls:
            entry["tool_calls"] = [
                {
                    "id": call.tool_call_id,
                    "type": "function",
                    "function": {"name": call.qualified_name, "arguments": json.dumps(call.args)},
                }
                for call in tool_calls
            ]
        conversation.messages.append(entry)

    def _append_tool_results(self, conversation: Conversation, results: Sequence[ToolCallResult]) -> None:
        for result in results:
            conversation.messages.append(
                {"role": "tool", "tool_call_id": result.tool_call_id, "content": result.output}
            )

    @staticmethod
    def _to_provider_tools(tools: list[types.Tool]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameters": tool.inputSchema,
                },
            }
            for tool in tools
        ]

    async def _send(
        self, conversation: Conversation, tools: list[types.Tool], params: SamplingParams
    ) -> BackendResponse:
        request: dict[str, Any] = {
            "model": params.model,
            "messages": conversation.messages,
            "max_tokens": params.max_tokens,
        }
        if tools:
            request["tools"] = self._to_provider_tools(tools)
            request["tool_choice"] = "auto"
        if params.temperature is not None:
            request["temperature"] = params.temperature
        if params.top_p is not None:
            request["top_p"] = params.top_p

        response = await self._client.chat.completions.create(**request)

        choice = response.choices[0]
        message = choice.message
        result = BackendResponse(
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            truncated=choice.finish_reason == "length",
        )
        if message.content:
            result.texts.append(message.content)
        for call in message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                self.logger.warning(f"⚠️ Unparseable arguments for tool call {call.function.name}")
                arguments = {}
            result.tool_calls.append(BackendToolCall(id=call.id, name=call.function.name, arguments=arguments))
        return result

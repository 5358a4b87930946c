"""
Google Gemini adapter (google-genai SDK).

History is a list of `Content` objects with roles "user" and "model". Gemini
does not issue tool call ids, so one is generated per call.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional, Sequence

from google import genai
from google.genai import types as genai_types
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

_TYPE_MAP = {
    "string": genai_types.Type.STRING,
    "integer": genai_types.Type.INTEGER,
    "number": genai_types.Type.NUMBER,
    "boolean": genai_types.Type.BOOLEAN,
    "array": genai_types.Type.ARRAY,
    "object": genai_types.Type.OBJECT,
}


def to_gemini_schema(schema: dict[str, Any]) -> genai_types.Schema:
    """Map a JSON schema onto the subset Gemini accepts."""
    raw_type = schema.get("type", "object")
    if isinstance(raw_type, list):
        # ["string", "null"] and the like
        raw_type = next((t for t in raw_type if t != "null"), "string")
    kwargs: dict[str, Any] = {"type": _TYPE_MAP.get(raw_type, genai_types.Type.STRING)}
    if schema.get("description"):
        kwargs["description"] = schema["description"]
    if schema.get("enum"):
        kwargs["enum"] = [str(value) for value in schema["enum"]]
    if raw_type == "array" and isinstance(schema.get("items"), dict):
        kwargs["items"] = to_gemini_schema(schema["items"])
    if raw_type == "object":
        properties = schema.get("properties") or {}
        if properties:
            kwargs["properties"] = {name: to_gemini_schema(prop) for name, prop in properties.items()}
        if schema.get("required"):
            kwargs["required"] = list(schema["required"])
    return genai_types.Schema(**kwargs)


class GeminiProvider(Provider):
    provider_type = ProviderType.GEMINI
    default_model = "gemini-2.5-flash"
    info = ProviderInfo(
        name="Google Gemini",
        description="Gemini is a family of multimodal models developed by Google.",
        website="https://ai.google.dev",
        config_values=[
            ProviderConfigValue(key="GOOGLE_API_KEY", caption="Google AI API key", secret=True, required=True),
        ],
    )

    def __init__(self, model_name: str, host: ToolHost, config: dict[str, str]):
        super().__init__(model_name, host, config)
        self._client = genai.Client(api_key=required_config(config, "GOOGLE_API_KEY", self.provider_type.value))

    async def get_models(self) -> list[ProviderModel]:
        models = []
        async for model in await self._client.aio.models.list():
            if "generateContent" not in (model.supported_actions or []):
                continue
            model_id = (model.name or "").removeprefix("models/")
            models.append(
                ProviderModel(
                    provider=self.provider_type,
                    id=model_id,
                    name=model.display_name or model_id,
                    description=model.description,
                )
            )
        return models

    # -- translation --------------------------------------------------------

    def _append_user(self, conversation: Conversation, text: str) -> None:
        conversation.messages.append(genai_types.Content(role="user", parts=[genai_types.Part(text=text)]))

    def _append_assistant(
        self, conversation: Conversation, text: Optional[str], tool_calls: Sequence[ToolCallRequest]
    ) -> None:
        parts = []
        if text:
            parts.append(genai_types.Part(text=text))
        for call in tool_calls:
            parts.append(
                genai_types.Part(function_call=genai_types.FunctionCall(name=call.qualified_name, args=call.args))
            )
        if parts:
            conversation.messages.append(genai_types.Content(role="model", parts=parts))

    def _append_tool_results(self, conversation: Conversation, results: Sequence[ToolCallResult]) -> None:
        conversation.messages.append(
            genai_types.Content(
                role="user",
                parts=[
                    genai_types.Part(
                        function_response=genai_types.FunctionResponse(
                            name=result.qualified_name,
                            response={"error": result.error} if result.error else {"result": result.output},
                        )
                    )
                    for result in results
                ],
            )
        )

    @staticmethod
    def _to_provider_tools(tools: list[types.Tool]) -> list[genai_types.Tool]:
        declarations = [
            genai_types.FunctionDeclaration(
                name=tool.name,
                description=tool.description or "",
                parameters=to_gemini_schema(tool.inputSchema or {"type": "object"}),
            )
            for tool in tools
        ]
        return [genai_types.Tool(function_declarations=declarations)]

    async def _send(
        self, conversation: Conversation, tools: list[types.Tool], params: SamplingParams
    ) -> BackendResponse:
        config = genai_types.GenerateContentConfig(
            system_instruction=conversation.system_prompt,
            max_output_tokens=params.max_tokens,
            temperature=params.temperature,
            top_p=params.top_p,
            tools=self._to_provider_tools(tools) if tools else None,
        )
        response = await self._client.aio.models.generate_content(
            model=params.model,
            contents=conversation.messages,
            config=config,
        )

        result = BackendResponse()
        usage = response.usage_metadata
        if usage is not None:
            result.input_tokens = usage.prompt_token_count or 0
            result.output_tokens = usage.candidates_token_count or 0
        if not response.candidates:
            return result

        candidate = response.candidates[0]
        if candidate.finish_reason and "MAX_TOKENS" in str(candidate.finish_reason).upper():
            result.truncated = True
        parts = candidate.content.parts if candidate.content and candidate.content.parts else []
        for part in parts:
            if part.function_call:
                result.tool_calls.append(
                    BackendToolCall(
                        id=str(uuid.uuid4()),
                        name=part.function_call.name,
                        arguments=dict(part.function_call.args) if part.function_call.args else {},
                    )
                )
            elif part.text:
                result.texts.append(part.text)
        return result

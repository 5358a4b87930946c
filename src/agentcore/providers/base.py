"""
Shared generation loop for model providers.

Every adapter speaks a different wire format, but the turn engine is the
same: replay the conversation history into the backend's native form,
execute any approvals at the tail of the history, then alternate backend
calls with tool execution until the model stops, a call needs approval, or
the turn limit is reached. Adapters only implement the translation hooks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Optional, Protocol, Sequence

from mcp import types

from src.agentcore.errors import ProviderError, ToolNameError
from src.agentcore.mcp_client import split_tool_name
from src.agentcore.providers.types import (
    MAX_TOKENS_ERROR,
    MAX_TURNS_ERROR,
    TOOL_CALL_DECISION_ALLOW_ONCE,
    TOOL_CALL_DECISION_ALLOW_SESSION,
    TOOL_CALL_DENIED,
    ApprovalMessage,
    AssistantMessage,
    ChatMessage,
    Message,
    ModelReply,
    ProviderInfo,
    ProviderModel,
    ProviderType,
    ToolCallRequest,
    ToolCallResult,
    Turn,
    TurnResult,
)
from src.agentcore.transports import CallToolOutcome
from src.agentcore.yaml_config import AgentSettings
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.agentcore.chat_session import ChatSession

MIN_TOP_P = 0.01


class ToolHost(Protocol):
    """What a provider needs from its agent: the tool list and tool dispatch."""

    async def get_included_tools(self, session: "ChatSession") -> list[types.Tool]:
        ...

    async def call_tool(
        self, qualified_name: str, arguments: Optional[dict[str, Any]], session: Optional["ChatSession"]
    ) -> CallToolOutcome:
        ...


@dataclass
class SamplingParams:
    model: str
    max_tokens: int
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    settings: Optional[AgentSettings] = None


@dataclass
class BackendToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class BackendResponse:
    """One backend reply, normalised."""
    texts: list[str] = field(default_factory=list)
    tool_calls: list[BackendToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    truncated: bool = False


@dataclass
class Conversation:
    """Native message history for one generate_response call."""
    system_prompt: Optional[str] = None
    messages: list[Any] = field(default_factory=list)


def select_sampling(settings: AgentSettings, combined_allowed: bool) -> tuple[Optional[float], Optional[float]]:
    """Return (temperature, top_p) to send.

    Backends that reject both get temperature when it is positive, otherwise
    top_p (never below MIN_TOP_P).
    """
    top_p = max(settings.top_p, MIN_TOP_P)
    if combined_allowed:
        return settings.temperature, top_p
    if settings.temperature > 0:
        return settings.temperature, None
    return None, top_p


def required_config(config: dict[str, str], key: str, provider: str) -> str:
    value = config.get(key)
    if not value:
        raise ProviderError(f"{key} is missing in the configuration for provider {provider}", provider)
    return value


class Provider(ABC):
    """A model backend bound to one model id."""

    provider_type: ClassVar[ProviderType]
    info: ClassVar[ProviderInfo]
    default_model: ClassVar[Optional[str]] = None
    # Some backends reject requests carrying both temperature and top_p
    combined_sampling_allowed: ClassVar[bool] = True

    def __init__(self, model_name: str, host: ToolHost, config: dict[str, str]):
        self.model_name = model_name
        self.host = host
        self.config = config
        self.logger = get_logger(f"Provider.{self.provider_type.value}")

    @property
    def display_name(self) -> str:
        return self.info.name

    @classmethod
    def get_info(cls) -> ProviderInfo:
        return cls.info

    @abstractmethod
    async def get_models(self) -> list[ProviderModel]:
        ...

    async def validate_configuration(self) -> tuple[bool, Optional[str]]:
        """Check credentials and connectivity by listing models."""
        try:
            await self.get_models()
        except Exception as e:
            return False, f"Failed to validate {self.display_name} configuration: {e}"
        return True, None

    # -- translation hooks ----------------------------------------------------

    def _new_conversation(self, system_prompt: Optional[str]) -> Conversation:
        return Conversation(system_prompt=system_prompt)

    @abstractmethod
    def _append_user(self, conversation: Conversation, text: str) -> None:
        ...

    @abstractmethod
    def _append_assistant(
        self, conversation: Conversation, text: Optional[str], tool_calls: Sequence[ToolCallRequest]
    ) -> None:
        """Append one assistant message: optional text plus the tool calls it made."""

    @abstractmethod
    def _append_tool_results(self, conversation: Conversation, results: Sequence[ToolCallResult]) -> None:
        ...

    @abstractmethod
    async def _send(
        self, conversation: Conversation, tools: list[types.Tool], params: SamplingParams
    ) -> BackendResponse:
        ...

    # -- turn engine ----------------------------------------------------------

    def sampling_params(self, settings: AgentSettings) -> SamplingParams:
        temperature, top_p = select_sampling(settings, self.combined_sampling_allowed)
        return SamplingParams(
            model=self.model_name,
            max_tokens=settings.max_output_tokens,
            temperature=temperature,
            top_p=top_p,
            settings=settings,
        )

    async def generate_response(self, session: "ChatSession", messages: list[Message]) -> ModelReply:
        reply = ModelReply()
        try:
            await self._run(session, messages, reply)
        except Exception as e:
            self.logger.error(f"❌ Failed to generate response from {self.display_name}: {e}")
            reply.turns.append(Turn(error=f"Error: Failed to generate response from {self.display_name} - {e}"))
        return reply

    async def _run(self, session: "ChatSession", messages: list[Message], reply: ModelReply) -> None:
        history = list(messages)
        system_prompt = None
        if history and isinstance(history[0], ChatMessage) and history[0].role == "system":
            system_prompt = history.pop(0).content

        conversation = self._new_conversation(system_prompt)
        self._replay(conversation, history)

        if history and isinstance(history[-1], ApprovalMessage):
            reply.turns.append(await self._process_approvals(session, conversation, history[-1]))

        tools = await self.host.get_included_tools(session)
        settings = session.settings
        params = self.sampling_params(settings)

        stopped = False
        for _ in range(settings.max_chat_turns):
            response = await self._send(conversation, tools, params)
            turn = Turn(input_tokens=response.input_tokens, output_tokens=response.output_tokens)
            reply.turns.append(turn)
            if response.truncated:
                self.logger.warning("⚠️ Maximum number of tokens reached for this response")
                turn.error = MAX_TOKENS_ERROR

            text = "\n".join(response.texts) if response.texts else None
            turn.results.extend(TurnResult.of_text(t) for t in response.texts)

            if not response.tool_calls:
                self._append_assistant(conversation, text, [])
                stopped = True
                break

            fed_back: list[ToolCallResult] = []
            for call in response.tool_calls:
                result = await self._handle_tool_call(session, call, reply)
                if result is not None:
                    fed_back.append(result)
                    turn.results.append(TurnResult.of_tool_call(result))

            self._append_assistant(conversation, text, fed_back)
            if fed_back:
                self._append_tool_results(conversation, fed_back)

            if reply.pending_tool_calls:
                stopped = True
                break

        if not stopped:
            self.logger.warning(f"⚠️ Maximum number of tool uses reached ({settings.max_chat_turns})")
            reply.turns.append(Turn(error=MAX_TURNS_ERROR))

    async def _handle_tool_call(
        self, session: "ChatSession", call: BackendToolCall, reply: ModelReply
    ) -> Optional[ToolCallResult]:
        """Gate one model tool call. Returns the result to feed back, or None if it is pending."""
        try:
            server_name, tool_name = split_tool_name(call.name)
        except ToolNameError as e:
            self.logger.error(f"❌ {e}")
            return ToolCallResult(
                server_name="", tool_name=call.name, args=call.arguments, tool_call_id=call.id,
                output=f"Error: {e}", error=str(e),
            )
        request = ToolCallRequest(server_name, tool_name, call.arguments, call.id)

        decision = session.check_tool_call(server_name, tool_name, call.arguments)
        if decision == "approve":
            self.logger.info(f"Tool call {call.name} requires approval")
            reply.pending_tool_calls.append(request)
            return None
        if decision == "deny":
            return self._denied(request)
        return await self._execute(session, request)

    async def _process_approvals(
        self, session: "ChatSession", conversation: Conversation, message: ApprovalMessage
    ) -> Turn:
        turn = Turn()
        results: list[ToolCallResult] = []
        for approval in message.tool_call_approvals:
            request = ToolCallRequest(approval.server_name, approval.tool_name, approval.args, approval.tool_call_id)
            if approval.decision == TOOL_CALL_DECISION_ALLOW_SESSION:
                session.tool_is_approved_for_session(approval.server_name, approval.tool_name)
            if approval.decision in (TOOL_CALL_DECISION_ALLOW_SESSION, TOOL_CALL_DECISION_ALLOW_ONCE):
                result = await self._execute(session, request)
            else:
                result = self._denied(request)
            results.append(result)
            turn.results.append(TurnResult.of_tool_call(result))
        if results:
            self._append_assistant(conversation, None, results)
            self._append_tool_results(conversation, results)
        return turn

    async def _execute(self, session: "ChatSession", request: ToolCallRequest) -> ToolCallResult:
        try:
            outcome = await self.host.call_tool(request.qualified_name, request.args, session)
        except Exception as e:
            self.logger.warning(f"⚠️ Tool call {request.qualified_name} failed: {e}")
            return ToolCallResult(
                request.server_name, request.tool_name, request.args, request.tool_call_id,
                output=f"Error: {e}", error=str(e),
            )
        output = outcome.text()
        return ToolCallResult(
            request.server_name, request.tool_name, request.args, request.tool_call_id,
            output=output, elapsed_ms=outcome.elapsed_ms, error=output if outcome.is_error else None,
        )

    @staticmethod
    def _denied(request: ToolCallRequest) -> ToolCallResult:
        return ToolCallResult(
            request.server_name, request.tool_name, request.args, request.tool_call_id,
            output=TOOL_CALL_DENIED, error=TOOL_CALL_DENIED,
        )

    def _replay(self, conversation: Conversation, history: list[Message]) -> None:
        """Translate prior messages into the backend's native history."""
        for message in history:
            if isinstance(message, AssistantMessage):
                for turn in message.model_reply.turns:
                    texts = [r.text for r in turn.results if r.type == "text" and r.text]
                    calls = [r.tool_call for r in turn.results if r.type == "tool_call" and r.tool_call]
                    text = "\n".join(texts) if texts else None
                    if text or calls:
                        self._append_assistant(conversation, text, calls)
                    if calls:
                        self._append_tool_results(conversation, calls)
                    if turn.error and not turn.results:
                        self._append_assistant(conversation, turn.error, [])
            elif isinstance(message, ApprovalMessage):
                continue
            elif message.role == "error":
                self._append_assistant(conversation, message.content, [])
            else:
                self._append_user(conversation, message.content)

"""Provider-neutral message, turn and reply types shared by sessions and adapters."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional, Union

from src.agentcore.selection.models import RequestContext

TOOL_CALL_DECISION_ALLOW_SESSION = "allow-session"
TOOL_CALL_DECISION_ALLOW_ONCE = "allow-once"
TOOL_CALL_DECISION_DENY = "deny"

ToolCallDecision = Literal["allow-session", "allow-once", "deny"]

TOOL_CALL_DENIED = "Tool call denied"
MAX_TURNS_ERROR = "Maximum number of tool uses reached"
MAX_TOKENS_ERROR = (
    "Maximum number of tokens reached for this response.  "
    "Increase the Maximum Output Tokens setting if desired."
)


class ProviderType(str, Enum):
    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    BEDROCK = "bedrock"
    TEST = "test"
    LOCAL = "local"


@dataclass
class ToolCallRequest:
    server_name: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    tool_call_id: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        # Unparseable model tool names are echoed back unchanged
        if not self.server_name:
            return self.tool_name
        return f"{self.server_name}_{self.tool_name}"


@dataclass
class ToolCallResult(ToolCallRequest):
    output: str = ""
    elapsed_ms: float = 0.0
    error: Optional[str] = None


@dataclass
class ToolCallApproval(ToolCallRequest):
    decision: ToolCallDecision = TOOL_CALL_DECISION_DENY


@dataclass
class TurnResult:
    type: Literal["text", "tool_call"]
    text: Optional[str] = None
    tool_call: Optional[ToolCallResult] = None

    @classmethod
    def of_text(cls, text: str) -> "TurnResult":
        return cls(type="text", text=text)

    @classmethod
    def of_tool_call(cls, result: ToolCallResult) -> "TurnResult":
        return cls(type="tool_call", tool_call=result)


@dataclass
class Turn:
    results: list[TurnResult] = field(default_factory=list)
    error: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


@dataclass
class ModelReply:
    timestamp: float = field(default_factory=time.time)
    turns: list[Turn] = field(default_factory=list)
    pending_tool_calls: list[ToolCallRequest] = field(default_factory=list)


@dataclass
class ChatMessage:
    role: Literal["user", "system", "error"]
    content: str


@dataclass
class ApprovalMessage:
    tool_call_approvals: list[ToolCallApproval]
    role: Literal["approval"] = field(default="approval", init=False)


@dataclass
class AssistantMessage:
    model_reply: ModelReply
    request_context: Optional[RequestContext] = None
    role: Literal["assistant"] = field(default="assistant", init=False)


Message = Union[ChatMessage, ApprovalMessage, AssistantMessage]


@dataclass
class MessageUpdate:
    updates: list[Message]
    last_sync_id: int


@dataclass
class ProviderConfigValue:
    key: str
    caption: str
    secret: bool = False
    required: bool = False
    default: Optional[str] = None


@dataclass
class ProviderInfo:
    name: str
    description: str
    website: Optional[str] = None
    config_values: list[ProviderConfigValue] = field(default_factory=list)


@dataclass
class ProviderModel:
    provider: ProviderType
    id: str
    name: str
    description: Optional[str] = None

"""Model provider adapters and the shared generation loop."""

from .base import Provider, ToolHost
from .factory import PROVIDER_CLASSES, ProviderFactory
from .types import (
    ApprovalMessage,
    AssistantMessage,
    ChatMessage,
    Message,
    MessageUpdate,
    ModelReply,
    ProviderType,
    ToolCallApproval,
    ToolCallRequest,
    ToolCallResult,
    Turn,
    TurnResult,
)

__all__ = [
    "PROVIDER_CLASSES",
    "ApprovalMessage",
    "AssistantMessage",
    "ChatMessage",
    "Message",
    "MessageUpdate",
    "ModelReply",
    "Provider",
    "ProviderFactory",
    "ProviderType",
    "ToolCallApproval",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolHost",
    "Turn",
    "TurnResult",
]

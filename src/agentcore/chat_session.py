"""
One conversation with an agent.

A session owns its message history, the rules/references/tools the user (or
an internal tool) put into its context, per-session settings and the set of
tools approved for the rest of the session. Each user message gets a fresh
RequestContext: the live items plus whatever semantic selection picks from
the agent-mode items. Approval messages continue that same RequestContext.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Optional, Union

from src.agentcore.errors import EmbedderError, ProviderError, UnknownServerError
from src.agentcore.providers.base import Provider
from src.agentcore.providers.types import (
    ApprovalMessage,
    AssistantMessage,
    ChatMessage,
    Message,
    MessageUpdate,
    ProviderType,
)
from src.agentcore.selection.models import ContextItem, RequestContext, RequestContextItem, item_key
from src.agentcore.yaml_config import AgentSettings, IncludeMode
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.agentcore.agent import Agent

REFERENCE_MENTION = re.compile(r"@ref:([\w-]+)")
RULE_MENTION = re.compile(r"@rule:([\w-]+)")

ToolCallCheck = Literal["allow", "approve", "deny"]


@dataclass
class ChatState:
    messages: list[Message]
    last_sync_id: int
    current_provider: Optional[ProviderType]
    current_model_id: Optional[str]
    context_items: list[ContextItem]
    settings: AgentSettings
    approved_tools: list[tuple[str, str]] = field(default_factory=list)


class ChatSession:
    def __init__(
        self,
        agent: "Agent",
        session_id: str,
        provider_type: Optional[Union[str, ProviderType]] = None,
        model_id: Optional[str] = None,
        settings: Optional[AgentSettings] = None,
    ):
        self.id = session_id
        self.agent = agent
        self.settings = (settings or agent.config.settings).model_copy(deep=True)
        self.messages: list[Message] = []
        self.last_sync_id = 0
        self.provider: Optional[Provider] = None
        self.current_provider: Optional[ProviderType] = None
        self.current_model_id: Optional[str] = None
        self._items: dict[tuple[str, ...], ContextItem] = {}
        self._approved_tools: set[tuple[str, str]] = set()
        self._last_request_context: Optional[RequestContext] = None
        self.logger = get_logger(f"ChatSession.{session_id}")

        if provider_type is not None:
            self.provider = agent.create_provider(provider_type, model_id)
            self.current_provider = self.provider.provider_type
            self.current_model_id = self.provider.model_name
            model_description = (
                f"You are using the {self.current_provider.value} provider and the {self.current_model_id} model"
            )
        else:
            model_description = "No model selected"
        self.messages.append(ChatMessage(role="system", content=f"Welcome to {agent.name}! {model_description}"))

        self._initialize_always_included()
        self.logger.info(
            f"Created chat session for agent '{agent.name}' with model "
            f"{self.current_provider.value if self.current_provider else None} ({self.current_model_id})"
        )

    # -- context items --------------------------------------------------------

    @property
    def context_items(self) -> list[ContextItem]:
        return list(self._items.values())

    def _initialize_always_included(self) -> None:
        for rule in self.agent.rules.get_all():
            if rule.include == "always":
                self._add_item(ContextItem("rule", rule.name, "always"))
        for reference in self.agent.references.get_all():
            if reference.include == "always":
                self._add_item(ContextItem("reference", reference.name, "always"))
        config = self.agent.config
        for server_name, connection in self.agent.clients.get_loaded().items():
            server = config.mcp_servers.get(server_name)
            if server is None:
                continue
            for tool in connection.list_tools():
                if server.is_tool_enabled(tool.name) and server.tool_include_mode(tool.name) == "always":
                    self._add_item(ContextItem("tool", tool.name, "always", server_name))

    def _add_item(self, item: ContextItem) -> bool:
        if item.key in self._items:
            return False
        self._items[item.key] = item
        self.last_sync_id += 1
        self.logger.info(f"Added {item.type} '{item.name}' to chat session ({item.include_mode})")
        return True

    def _remove_item(self, key: tuple[str, ...]) -> bool:
        item = self._items.pop(key, None)
        if item is None:
            return False
        self.last_sync_id += 1
        self.logger.info(f"Removed {item.type} '{item.name}' from chat session")
        return True

    def add_context_document(self, item_type: str, name: str, include_mode: IncludeMode = "manual") -> bool:
        """Add a rule or reference by name. False if already present or unknown."""
        if item_key(item_type, name) in self._items:
            return False
        library = self.agent.rules if item_type == "rule" else self.agent.references
        if not library.exists(name):
            self.logger.warning(f"⚠️ Attempted to add non-existent {item_type}: {name}")
            return False
        return self._add_item(ContextItem(item_type, name, include_mode))

    def remove_context_document(self, item_type: str, name: str) -> bool:
        return self._remove_item(item_key(item_type, name))

    def add_rule(self, name: str) -> bool:
        return self.add_context_document("rule", name)

    def remove_rule(self, name: str) -> bool:
        return self.remove_context_document("rule", name)

    def add_reference(self, name: str) -> bool:
        return self.add_context_document("reference", name)

    def remove_reference(self, name: str) -> bool:
        return self.remove_context_document("reference", name)

    async def add_tool(self, server_name: str, tool_name: str) -> bool:
        """Add a tool of a configured server. False if already present, or the server or tool is unknown."""
        if item_key("tool", tool_name, server_name) in self._items:
            return False
        try:
            connection = await self.agent.clients.get_client(server_name)
        except UnknownServerError:
            self.logger.warning(f"⚠️ Attempted to add tool from non-existent server: {server_name}")
            return False
        if connection.get_tool(tool_name) is None:
            self.logger.warning(f"⚠️ Attempted to add non-existent tool: {server_name}:{tool_name}")
            return False
        return self._add_item(ContextItem("tool", tool_name, "manual", server_name))

    def remove_tool(self, server_name: str, tool_name: str) -> bool:
        return self._remove_item(item_key("tool", tool_name, server_name))

    def get_last_request_context(self) -> Optional[RequestContext]:
        return self._last_request_context

    # -- model ----------------------------------------------------------------

    def _system_update(self, content: str) -> MessageUpdate:
        message = ChatMessage(role="system", content=content)
        self.messages.append(message)
        self.last_sync_id += 1
        return MessageUpdate(updates=[message], last_sync_id=self.last_sync_id)

    def switch_model(self, provider_type: Union[str, ProviderType], model_id: str) -> MessageUpdate:
        try:
            provider = self.agent.create_provider(provider_type, model_id)
        except ProviderError as e:
            self.logger.error(f"❌ Error switching model: {e}")
            self.last_sync_id += 1
            message = ChatMessage(
                role="system",
                content=f"Failed to create provider {provider_type} ({model_id}), error: {e}",
            )
            return MessageUpdate(updates=[message], last_sync_id=self.last_sync_id)

        self.provider = provider
        self.current_provider = provider.provider_type
        self.current_model_id = model_id
        self.logger.info(f"Switched model to {provider.provider_type.value} ({model_id})")
        return self._system_update(
            f"Switched to the {provider.provider_type.value} provider and the {model_id} model"
        )

    def clear_model(self) -> MessageUpdate:
        self.provider = None
        self.current_provider = None
        self.current_model_id = None
        return self._system_update("Cleared model, no model currently active")

    # -- settings and approvals ----------------------------------------------

    def update_settings(self, settings: AgentSettings) -> bool:
        self.settings = settings.model_copy(deep=True)
        self.logger.info(f"Updated chat session settings: {settings.model_dump()}")
        return True

    def get_state(self) -> ChatState:
        return ChatState(
            messages=list(self.messages),
            last_sync_id=self.last_sync_id,
            current_provider=self.current_provider,
            current_model_id=self.current_model_id,
            context_items=self.context_items,
            settings=self.settings.model_copy(),
            approved_tools=sorted(self._approved_tools),
        )

    def tool_is_approved_for_session(self, server_name: str, tool_name: str) -> None:
        self._approved_tools.add((server_name, tool_name))

    def is_tool_approval_required(self, server_name: str, tool_name: str) -> bool:
        if (server_name, tool_name) in self._approved_tools:
            return False

        policy = self.settings.tool_permission
        if policy == "always":
            return True
        if policy == "never":
            return False
        if policy == "tool":
            server = self.agent.config.mcp_servers.get(server_name)
            if server is None:
                self.logger.warning(f"⚠️ Permission check for non-existent server: {server_name}")
                return True
            return server.is_tool_permission_required(tool_name)

        self.logger.warning(f"⚠️ Unknown tool permission policy '{policy}', requiring approval")
        return True

    def check_tool_call(self, server_name: str, tool_name: str, arguments: Optional[dict] = None) -> ToolCallCheck:
        """Decide what happens to a tool call the model made.

        Autonomous agents have nobody to ask, so a call that needs approval is
        a safety fault there: it is denied, logged and audited.
        """
        if not self.is_tool_approval_required(server_name, tool_name):
            return "allow"
        if not self.agent.autonomous:
            return "approve"
        self.logger.error(
            f"❌ Safety violation: autonomous session called {server_name}_{tool_name}, "
            f"which requires approval; call denied"
        )
        if self.agent.audit_logger is not None:
            self.agent.audit_logger.log_tool_denied(
                server_name, tool_name, arguments, "approval required in autonomous mode", self.id
            )
        return "deny"

    # -- turns ----------------------------------------------------------------

    @staticmethod
    def _strip_mentions(content: str) -> tuple[str, list[str], list[str]]:
        references = REFERENCE_MENTION.findall(content)
        rules = RULE_MENTION.findall(content)
        cleaned = RULE_MENTION.sub("", REFERENCE_MENTION.sub("", content))
        return " ".join(cleaned.split()), references, rules

    async def _build_request_context(self, query: str) -> RequestContext:
        live = [
            RequestContextItem(item.type, item.name, item.include_mode, item.server_name)
            for item in self._items.values()
        ]
        try:
            selected = await self.agent.select_context(query, {item.key for item in live}, self.settings)
        except EmbedderError as e:
            self.logger.error(f"❌ Context selection failed, continuing without agent items: {e}")
            selected = []
        return RequestContext(items=tuple(live + selected))

    def _build_messages(self, request_context: RequestContext) -> list[Message]:
        messages: list[Message] = [ChatMessage(role="system", content=self.agent.get_system_prompt())]
        messages.extend(m for m in self.messages if not (isinstance(m, ChatMessage) and m.role == "system"))
        for item in request_context.references:
            reference = self.agent.references.get(item.name)
            if reference is not None:
                messages.append(ChatMessage(role="user", content=f"Reference: {reference.text}"))
        for item in request_context.rules:
            rule = self.agent.rules.get(item.name)
            if rule is not None:
                messages.append(ChatMessage(role="user", content=f"Rule: {rule.text}"))
        return messages

    async def handle_message(self, message: Union[str, ChatMessage, ApprovalMessage]) -> MessageUpdate:
        """Run one user turn (or continue one after tool approvals).

        Raises:
            ProviderError: No model is active for this session.
        """
        if self.provider is None:
            raise ProviderError("No model is active for this session")

        if isinstance(message, str):
            message = ChatMessage(role="user", content=message)

        if isinstance(message, ApprovalMessage):
            request_context = self._last_request_context or RequestContext()
        else:
            if message.role == "user":
                content, references, rules = self._strip_mentions(message.content)
                for name in references:
                    self.add_reference(name)
                for name in rules:
                    self.add_rule(name)
                message = ChatMessage(role="user", content=content)
            request_context = await self._build_request_context(message.content)
            self._last_request_context = request_context

        messages = self._build_messages(request_context)
        messages.append(message)

        try:
            verdict = await self.agent.supervision.process_request(self, messages)
        except Exception as e:
            self.logger.error(f"❌ Error in request supervision, continuing with original message: {e}")
            verdict = None
        if verdict is not None:
            if verdict.action == "block":
                reason = "; ".join(verdict.reasons) or "No reason provided"
                self.logger.warning(f"⚠️ Message blocked by supervisor: {reason}")
                return MessageUpdate(
                    updates=[ChatMessage(role="error", content=f"Message blocked: {reason}")],
                    last_sync_id=self.last_sync_id,
                )
            if verdict.final_message is not None:
                if verdict.action == "modify":
                    self.logger.info(f"Message modified by supervisor: {'; '.join(verdict.reasons)}")
                message = verdict.final_message
                messages[-1] = message

        self.messages.append(message)
        self.logger.info(
            f"Generating response using {self.current_provider.value if self.current_provider else None} "
            f"({self.current_model_id})"
        )
        reply = await self.provider.generate_response(self, messages)
        reply_message = AssistantMessage(model_reply=reply, request_context=request_context)
        self.messages.append(reply_message)
        self.last_sync_id += 1
        update = MessageUpdate(updates=[message, reply_message], last_sync_id=self.last_sync_id)

        try:
            verdict = await self.agent.supervision.process_response(self, update)
        except Exception as e:
            self.logger.error(f"❌ Error in response supervision, returning original response: {e}")
            return update
        if verdict.action == "block":
            reason = "; ".join(verdict.reasons) or "Response blocked by supervisor"
            self.logger.warning(f"⚠️ Response blocked by supervisor: {reason}")
            return MessageUpdate(
                updates=[ChatMessage(role="error", content=f"Response blocked: {reason}")],
                last_sync_id=self.last_sync_id,
            )
        if verdict.final_response is not None:
            if verdict.action == "modify":
                self.logger.info(f"Response modified by supervisor: {'; '.join(verdict.reasons)}")
            update = verdict.final_response
        return update

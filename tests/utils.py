"""Shared fakes for the test suite: a deterministic embedder, scriptable
tool-server connections and a scripted provider backend."""

import hashlib
import re
from typing import Any, Optional

from mcp import types

from src.agentcore.agent import Agent
from src.agentcore.providers.base import BackendResponse, BackendToolCall, Conversation, Provider
from src.agentcore.providers.types import ProviderInfo, ProviderModel, ProviderType
from src.agentcore.selection.embedder import Embedder
from src.agentcore.transports import ToolServerConnection
from src.agentcore.utils.config import AgentCoreSettings
from src.agentcore.yaml_config import AgentConfig

DIMENSIONS = 512
_WORD = re.compile(r"[a-z0-9]+")


class BagOfWordsEmbedder(Embedder):
    """Hashes lowercase words into a fixed-size count vector."""

    def __init__(self):
        self.calls: list[list[str]] = []

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]

    @staticmethod
    def vector(text: str) -> list[float]:
        vec = [0.0] * DIMENSIONS
        for word in _WORD.findall(text.lower()):
            index = int(hashlib.md5(word.encode()).hexdigest(), 16) % DIMENSIONS
            vec[index] += 1.0
        return vec

    @property
    def embedded_texts(self) -> list[str]:
        return [text for batch in self.calls for text in batch]


def make_tool(name: str, description: str = "") -> types.Tool:
    return types.Tool(name=name, description=description, inputSchema={"type": "object", "properties": {}})


class FakeConnection(ToolServerConnection):
    """In-memory connection. Tool calls echo their arguments."""

    transport_name = "fake"

    def __init__(self, name: str, tools: Optional[list[types.Tool]] = None, fail: bool = False):
        super().__init__(name)
        self._tools = tools or []
        self.fail = fail
        self.open_count = 0
        self.close_count = 0
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def _open(self) -> list[types.Tool]:
        self.open_count += 1
        if self.fail:
            raise ConnectionError("server unavailable")
        return list(self._tools)

    async def _close(self) -> None:
        self.close_count += 1

    async def _call(self, tool_name, arguments, session) -> types.CallToolResult:
        self.calls.append((tool_name, arguments))
        if tool_name == "explode":
            raise RuntimeError("tool crashed")
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=f"{tool_name} ok {sorted(arguments.items())}")]
        )


class ScriptedProvider(Provider):
    """Provider whose backend replies come from a list; the last reply repeats."""

    provider_type = ProviderType.TEST
    default_model = "scripted"
    info = ProviderInfo(name="Scripted", description="Scripted test backend")

    def __init__(self, host, responses: list[BackendResponse]):
        super().__init__("scripted", host, {})
        self.responses = list(responses)
        self.sent: list[Conversation] = []
        self.sent_params = []
        self.sent_tools = []

    async def get_models(self) -> list[ProviderModel]:
        return [ProviderModel(provider=self.provider_type, id="scripted", name="Scripted")]

    def _append_user(self, conversation, text):
        conversation.messages.append(("user", text))

    def _append_assistant(self, conversation, text, tool_calls):
        conversation.messages.append(("assistant", text, [c.qualified_name for c in tool_calls]))

    def _append_tool_results(self, conversation, results):
        conversation.messages.append(("tool", [r.output for r in results]))

    async def _send(self, conversation, tools, params):
        self.sent.append(Conversation(conversation.system_prompt, list(conversation.messages)))
        self.sent_params.append(params)
        self.sent_tools.append(tools)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def tool_call_response(*names: str, **arguments) -> BackendResponse:
    return BackendResponse(
        tool_calls=[BackendToolCall(id=f"call-{i}", name=name, arguments=dict(arguments)) for i, name in enumerate(names)],
        input_tokens=10,
        output_tokens=5,
    )


def text_response(text: str) -> BackendResponse:
    return BackendResponse(texts=[text], input_tokens=10, output_tokens=5)


def make_agent(tmp_path, config: Optional[AgentConfig] = None, connections: Optional[dict] = None) -> Agent:
    """Agent persisted under tmp_path, with fake connections standing in for configured servers."""
    agent = Agent(
        config or AgentConfig(),
        agent_dir=tmp_path,
        settings=AgentCoreSettings(audit_enabled=False, connection_timeout=2.0),
        embedder=BagOfWordsEmbedder(),
    )
    if connections is not None:
        real_factory = agent.clients.connection_factory

        def factory(name, server):
            if name in connections:
                return connections[name]
            return real_factory(name, server)

        agent.clients.connection_factory = factory
    return agent

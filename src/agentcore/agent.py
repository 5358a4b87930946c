"""
The agent: one config directory wired to its tool servers, context
libraries, semantic selector, model providers and chat sessions.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Callable, Optional, Union

from mcp import types

from src.agentcore.cache_manager import get_enabled_tools, store_tool_embedding
from src.agentcore.chat_session import ChatSession
from src.agentcore.config_store import ConfigChange, ConfigStore
from src.agentcore.context_library import ReferencesLibrary, RulesLibrary
from src.agentcore.errors import AgentConfigError, ProviderError
from src.agentcore.internal_tools import ContextLibraryToolServer
from src.agentcore.mcp_client import ToolClientManager, qualify_tool_name
from src.agentcore.providers.base import Provider
from src.agentcore.providers.factory import ProviderFactory
from src.agentcore.providers.types import ProviderType
from src.agentcore.selection.cache import EmbeddingCache
from src.agentcore.selection.chunking import document_index_text, tool_index_text
from src.agentcore.selection.embedder import Embedder, SentenceTransformerEmbedder
from src.agentcore.selection.models import (
    ContextItem,
    ItemKey,
    RequestContextItem,
    SelectionCandidate,
    SelectionConfig,
    item_key,
)
from src.agentcore.selection.selector import SemanticSelector
from src.agentcore.supervision import SupervisionManager
from src.agentcore.transports import (
    InternalConnection,
    SseConnection,
    StdioConnection,
    StreamableHttpConnection,
    ToolServerConnection,
)
from src.agentcore.utils.audit import AuditLogger
from src.agentcore.utils.config import AgentCoreSettings, AuditConfig
from src.agentcore.yaml_config import (
    AGENT_YAML,
    AgentConfig,
    AgentSettings,
    ToolServerConfig,
    load_config,
    migrate_json_config,
)
from src.utils.logger import configure_logging, get_logger


class Agent:
    def __init__(
        self,
        config: AgentConfig,
        agent_dir: Optional[Path] = None,
        settings: Optional[AgentCoreSettings] = None,
        embedder: Optional[Embedder] = None,
    ):
        self.settings = settings or AgentCoreSettings()
        configure_logging(level=self.settings.log_level)
        self.logger = get_logger("Agent")
        self.agent_dir = agent_dir

        path = agent_dir / AGENT_YAML if agent_dir is not None else None
        self.store = ConfigStore(config, path=path, read_only=self.settings.read_only)
        self.rules = RulesLibrary(self.store)
        self.references = ReferencesLibrary(self.store)

        self.embedding_cache = EmbeddingCache()
        self._seed_document_embeddings()
        self.rules.on_change(self._on_library_change)
        self.references.on_change(self._on_library_change)
        self.selector = SemanticSelector(
            embedder or SentenceTransformerEmbedder(self.settings.embedding_model), self.embedding_cache
        )

        self.audit_logger: Optional[AuditLogger] = None
        if self.settings.audit_enabled and agent_dir is not None:
            log_dir = self.settings.audit_log_dir or str(agent_dir / "logs")
            self.audit_logger = AuditLogger(AuditConfig(log_dir=log_dir))

        self._connection_factories: dict[str, Callable[[str, Any], ToolServerConnection]] = {
            "stdio": lambda name, cfg: StdioConnection(name, cfg, system_path=self.config.settings.system_path),
            "sse": SseConnection,
            "streamable": StreamableHttpConnection,
            "internal": self._create_internal_connection,
        }
        self.clients = ToolClientManager(
            self.store,
            self._create_connection,
            embedding_cache=self.embedding_cache,
            audit_logger=self.audit_logger,
            max_concurrent_connections=self.settings.max_concurrent_connections,
            connection_timeout=self.settings.connection_timeout,
        )
        self.provider_factory = ProviderFactory(self.store, self)
        self.supervision = SupervisionManager()
        self.sessions: dict[str, ChatSession] = {}

    @classmethod
    def load(
        cls,
        agent_dir: Union[str, Path],
        settings: Optional[AgentCoreSettings] = None,
        embedder: Optional[Embedder] = None,
    ) -> "Agent":
        """Load the agent in `agent_dir`, upgrading a legacy JSON config first.

        Raises:
            AgentConfigError: The config exists but cannot be read or migrated.
        """
        agent_dir = Path(agent_dir)
        settings = settings or AgentCoreSettings()
        configure_logging(level=settings.log_level)
        if not agent_dir.is_dir():
            raise AgentConfigError(f"Agent directory not found: {agent_dir}")
        if not settings.read_only:
            migrate_json_config(agent_dir)
        config = load_config(agent_dir / AGENT_YAML)
        return cls(config, agent_dir=agent_dir, settings=settings, embedder=embedder)

    # -- config ---------------------------------------------------------------

    @property
    def config(self) -> AgentConfig:
        return self.store.get_config()

    @property
    def name(self) -> str:
        return self.config.metadata.name

    @property
    def autonomous(self) -> bool:
        return self.config.metadata.autonomous

    def get_system_prompt(self) -> str:
        return self.config.system_prompt

    def update_settings(self, settings: AgentSettings) -> None:
        def mutate(config: AgentConfig) -> None:
            config.settings = settings.model_copy(deep=True)

        self.store.update_config(mutate, "settings")

    def set_system_prompt(self, prompt: str) -> None:
        def mutate(config: AgentConfig) -> None:
            config.system_prompt = prompt

        self.store.update_config(mutate, "system_prompt")

    async def put_server(self, name: str, server: ToolServerConfig) -> bool:
        """Add or replace a tool server config. Returns True if the live connection was rebuilt."""
        previous = self.config.mcp_servers.get(name)

        def mutate(config: AgentConfig) -> None:
            updated = server
            if previous is not None:
                # Keep discovered tool embeddings across config edits
                updated = server.model_copy(update={"tools": {**previous.tools, **server.tools}})
            config.mcp_servers[name] = updated

        self.store.update_config(mutate, "mcp_servers")
        if previous is None:
            return False
        return await self.clients.update(name, previous)

    async def remove_server(self, name: str) -> bool:
        if name not in self.config.mcp_servers:
            return False
        self.store.update_config(lambda config: config.mcp_servers.pop(name, None), "mcp_servers")
        await self.clients.unload(name)
        return True

    # -- connections ----------------------------------------------------------

    def _create_connection(self, name: str, server: ToolServerConfig) -> ToolServerConnection:
        return self._connection_factories[server.type](name, server)

    def _create_internal_connection(self, name: str, server) -> InternalConnection:
        library = self.rules if server.tool == "rules" else self.references
        return InternalConnection(name, server, ContextLibraryToolServer(library, self.search_context_items))

    async def get_included_tools(self, session: ChatSession) -> list[types.Tool]:
        """Tools offered to the model for this session, with qualified names."""
        session_keys = {item.key for item in session.context_items if item.type == "tool"}
        request_context = session.get_last_request_context()
        request_keys = {item.key for item in request_context.tools} if request_context else set()
        policy = session.settings.tool_permission

        included: list[types.Tool] = []
        for server_name, connection in (await self.clients.get_all()).items():
            if not connection.is_connected():
                continue
            server = self.config.mcp_servers.get(server_name)
            if server is None:
                continue
            tools = [
                tool
                for tool in get_enabled_tools(self.config, server_name, connection.list_tools())
                if server.tool_include_mode(tool.name) == "always"
                or item_key("tool", tool.name, server_name) in session_keys
                or item_key("tool", tool.name, server_name) in request_keys
            ]
            if self.autonomous:
                # Nobody can approve a call, so only offer tools that need no approval
                if policy == "always":
                    tools = []
                elif policy == "tool":
                    tools = [tool for tool in tools if not server.is_tool_permission_required(tool.name)]
            included.extend(
                tool.model_copy(update={"name": qualify_tool_name(server_name, tool.name)}) for tool in tools
            )
        return included

    async def call_tool(
        self, qualified_name: str, arguments: Optional[dict[str, Any]], session: Optional[ChatSession]
    ):
        return await self.clients.call_tool(qualified_name, arguments, session)

    # -- context selection ----------------------------------------------------

    def _seed_document_embeddings(self) -> None:
        for item_type, library in (("rule", self.rules), ("reference", self.references)):
            for document in library.get_all():
                entry = document.cache_entry()
                if entry is not None:
                    self.embedding_cache.seed(item_key(item_type, document.name), entry)

    def _on_library_change(self, change: ConfigChange) -> None:
        item_type = "rule" if change.section == "rules" else "reference"
        documents = change.config.rules if change.section == "rules" else change.config.references
        dropped = self.embedding_cache.retain(item_type, {document.name for document in documents})
        if dropped:
            self.logger.debug(f"Dropped {dropped} cached {item_type} embedding(s)")

    def _document_candidate(self, item_type: str, name: str) -> Optional[SelectionCandidate]:
        library = self.rules if item_type == "rule" else self.references
        document = library.get(name)
        if document is None:
            return None
        return SelectionCandidate(
            item=ContextItem(item_type, name, document.include),
            text=document_index_text(document.name, document.description, document.text),
        )

    def _agent_candidates(self, exclude: set[ItemKey]) -> list[SelectionCandidate]:
        candidates: list[SelectionCandidate] = []
        for item_type, library in (("rule", self.rules), ("reference", self.references)):
            for document in library.get_all():
                if document.include == "agent" and item_key(item_type, document.name) not in exclude:
                    candidates.append(self._document_candidate(item_type, document.name))

        config = self.config
        for server_name, connection in self.clients.get_loaded().items():
            server = config.mcp_servers.get(server_name)
            if server is None or not connection.is_connected():
                continue
            for tool in get_enabled_tools(config, server_name, connection.list_tools()):
                if server.tool_include_mode(tool.name) != "agent":
                    continue
                item = ContextItem("tool", tool.name, "agent", server_name)
                if item.key not in exclude:
                    candidates.append(
                        SelectionCandidate(item=item, text=tool_index_text(tool.name, tool.description))
                    )
        return candidates

    async def select_context(
        self, query: str, exclude: set[ItemKey], settings: Optional[AgentSettings] = None
    ) -> list[RequestContextItem]:
        """Semantic selection over the agent-mode items not in `exclude`."""
        settings = settings or self.config.settings
        candidates = self._agent_candidates(exclude)
        if not candidates:
            return []
        selection = SelectionConfig(
            top_k=settings.context_top_k,
            top_n=settings.context_top_n,
            include_score=settings.context_include_score,
        )
        result = await self.selector.select(query, candidates, selection)
        self._persist_embeddings(result.computed_keys)
        return result.items

    async def search_context_items(
        self, query: str, items: list[ContextItem], config: SelectionConfig
    ) -> list[RequestContextItem]:
        """Rank the given rules/references against `query` (used by the search tools)."""
        candidates = [
            candidate
            for candidate in (self._document_candidate(item.type, item.name) for item in items)
            if candidate is not None
        ]
        result = await self.selector.select(query, candidates, config)
        self._persist_embeddings(result.computed_keys)
        return result.items

    def _persist_embeddings(self, keys: list[ItemKey]) -> None:
        """Write freshly computed embeddings back to the agent config."""
        for key in keys:
            entry = self.embedding_cache.get_entry(key)
            if entry is None:
                continue
            if key[0] == "rule":
                self.rules.store_embeddings(key[1], entry.embeddings, entry.hash)
            elif key[0] == "reference":
                self.references.store_embeddings(key[1], entry.embeddings, entry.hash)
            elif key[0] == "tool":
                server_name, tool_name = key[1], key[2]
                self.store.update_config(
                    lambda config: store_tool_embedding(config, server_name, tool_name, entry), "mcp_servers"
                )

    # -- providers and sessions -----------------------------------------------

    def create_provider(self, provider: Union[str, ProviderType], model_id: Optional[str] = None) -> Provider:
        return self.provider_factory.create(provider, model_id)

    def create_session(
        self,
        session_id: Optional[str] = None,
        provider: Optional[Union[str, ProviderType]] = None,
        model_id: Optional[str] = None,
    ) -> ChatSession:
        """Create a session, on the given model or the agent's default `provider:model` setting."""
        if provider is None and self.config.settings.model:
            provider, _, default_model = self.config.settings.model.partition(":")
            model_id = model_id or default_model or None
        session_id = session_id or str(uuid.uuid4())
        try:
            session = ChatSession(self, session_id, provider, model_id)
        except ProviderError as e:
            self.logger.warning(f"⚠️ Could not start model {provider}:{model_id}: {e}; session has no model")
            session = ChatSession(self, session_id)
        self.sessions[session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    async def close(self) -> None:
        await self.clients.close()
        if self.audit_logger is not None:
            self.audit_logger.close()
        self.logger.info(f"Closed agent '{self.name}'")

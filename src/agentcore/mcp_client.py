from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from src.agentcore.cache_manager import drop_tool_embeddings, validate_tool_embeddings
from src.agentcore.config_store import ConfigStore
from src.agentcore.errors import ToolNameError, UnknownServerError
from src.agentcore.selection.cache import EmbeddingCache
from src.agentcore.selection.models import item_key
from src.agentcore.transports import CallToolOutcome, ToolServerConnection
from src.agentcore.utils.audit import AuditLogger
from src.agentcore.yaml_config import ToolServerConfig
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.agentcore.chat_session import ChatSession

TOOL_NAME_SEPARATOR = "_"

ConnectionFactory = Callable[[str, ToolServerConfig], ToolServerConnection]


def qualify_tool_name(server_name: str, tool_name: str) -> str:
    return f"{server_name}{TOOL_NAME_SEPARATOR}{tool_name}"


def split_tool_name(qualified_name: str) -> Tuple[str, str]:
    """Split "<server>_<tool>" at the first underscore.

    Raises:
        ToolNameError: The name has no separator or an empty part.
    """
    server_name, sep, tool_name = qualified_name.partition(TOOL_NAME_SEPARATOR)
    if not sep or not server_name or not tool_name:
        raise ToolNameError(
            f"Invalid tool name format: {qualified_name}. Expected format: serverName_toolName"
        )
    return server_name, tool_name


class ToolClientManager:
    """
    Owns the named tool-server connections of one agent.

    Connections are created lazily from the agent config. Connect-or-fetch is
    atomic per server name (per-server lock) so concurrent sessions never open
    two connections to the same server. A failed connection stays registered
    with its diagnostic log; fetching it by name again retries the connect.
    """

    def __init__(
        self,
        store: ConfigStore,
        connection_factory: ConnectionFactory,
        embedding_cache: Optional[EmbeddingCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        max_concurrent_connections: int = 10,
        connection_timeout: float = 30.0,
    ):
        self.store = store
        self.connection_factory = connection_factory
        self.embedding_cache = embedding_cache
        self.audit_logger = audit_logger
        self.connections: Dict[str, ToolServerConnection] = {}
        self._creation_locks: Dict[str, asyncio.Lock] = {}
        self._connection_semaphore = asyncio.Semaphore(max_concurrent_connections)
        self._connection_timeout = connection_timeout
        self.logger = get_logger("ToolClientManager")

    def _get_creation_lock(self, name: str) -> asyncio.Lock:
        """Get or create a per-server creation lock (lazily initialized)."""
        if name not in self._creation_locks:
            self._creation_locks[name] = asyncio.Lock()
        return self._creation_locks[name]

    async def get_client(self, name: str) -> ToolServerConnection:
        """
        Return the connection for `name`, connecting (or reconnecting) it if needed.

        Raises:
            UnknownServerError: No server with this name is configured.
        """
        # Fast path: already connected (no lock needed)
        connection = self.connections.get(name)
        if connection is not None and connection.is_connected():
            return connection

        async with self._get_creation_lock(name):
            # Re-check after acquiring lock (another coroutine may have connected)
            connection = self.connections.get(name)
            if connection is not None and connection.is_connected():
                return connection

            config = self.store.get_config().mcp_servers.get(name)
            if config is None:
                raise UnknownServerError(name)

            if connection is None:
                connection = self.connection_factory(name, config)
                self.connections[name] = connection
                self.logger.info(f"📋 Registered {config.type} server: {name}")

            if await self._connect(connection):
                self._restore_embeddings(name, connection)
            return connection

    async def get_all(self) -> Dict[str, ToolServerConnection]:
        """Load every configured server that has no connection yet; return all connections."""
        configured = list(self.store.get_config().mcp_servers)
        unloaded = [name for name in configured if name not in self.connections]
        if unloaded:
            await asyncio.gather(*(self.get_client(name) for name in unloaded))
        return {name: self.connections[name] for name in configured if name in self.connections}

    def get_loaded(self) -> Dict[str, ToolServerConnection]:
        """Connections created so far, without triggering any connects."""
        return dict(self.connections)

    async def unload(self, name: str) -> bool:
        """Disconnect and forget a connection. Returns False if it was not loaded."""
        async with self._get_creation_lock(name):
            connection = self.connections.pop(name, None)
            if connection is None:
                return False
            await connection.disconnect()
            if self.embedding_cache is not None:
                self.embedding_cache.invalidate_server(name)
        self._creation_locks.pop(name, None)
        self.logger.info(f"🗑️ Unloaded server: {name}")
        return True

    async def update(self, name: str, previous: ToolServerConfig) -> bool:
        """React to a config change for `name` (the store already holds the new config).

        Only connection-relevant changes tear the connection down and reconnect;
        tool flags, permission overrides and cached embeddings do not.
        Returns True if a reconnect happened.
        """
        current = self.store.get_config().mcp_servers.get(name)
        if current is None:
            await self.unload(name)
            return False
        if name not in self.connections:
            return False
        if current.connection_settings() == previous.connection_settings():
            self.logger.debug(f"Metadata-only change for '{name}', keeping connection")
            return False

        self.logger.info(f"🔌 Connection settings changed for '{name}', reconnecting")
        await self.unload(name)
        await self.get_client(name)
        return True

    async def call_tool(
        self,
        qualified_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        session: Optional["ChatSession"] = None,
    ) -> CallToolOutcome:
        """Dispatch a `<server>_<tool>` call to the owning connection."""
        server_name, tool_name = split_tool_name(qualified_name)
        connection = await self.get_client(server_name)
        session_id = session.id if session is not None else None
        try:
            if connection.get_tool(tool_name) is None:
                raise ToolNameError(f"Tool not found: {tool_name} on server {server_name}")
            outcome = await connection.call_tool(tool_name, arguments, session)
        except Exception as e:
            self.logger.error(f"❌ Tool call '{qualified_name}' failed: {e}")
            if self.audit_logger:
                self.audit_logger.log_tool_failure(server_name, tool_name, arguments, str(e), session_id)
            raise
        if self.audit_logger:
            self.audit_logger.log_tool_call(
                server_name, tool_name, arguments, outcome.elapsed_ms, outcome.text(), session_id
            )
        return outcome

    async def close(self) -> None:
        """Disconnect every connection."""
        for name in list(self.connections):
            await self.unload(name)

    async def _connect(self, connection: ToolServerConnection) -> bool:
        async with self._connection_semaphore:
            try:
                return await asyncio.wait_for(connection.connect(), timeout=self._connection_timeout)
            except asyncio.TimeoutError:
                connection.log_error(f"Connection timed out after {self._connection_timeout}s")
                self.logger.error(f"❌ Connection timeout for {connection.name}")
                await connection.disconnect()
                return False

    def _restore_embeddings(self, name: str, connection: ToolServerConnection) -> None:
        """Seed the embedding cache from persisted tool embeddings, pruning stale entries."""
        config = self.store.get_config()
        valid, dropped = validate_tool_embeddings(config, name, connection.list_tools())
        if self.embedding_cache is not None:
            for tool_name, entry in valid.items():
                self.embedding_cache.seed(item_key("tool", tool_name, name), entry)
        if dropped:
            self.logger.warning(f"⚠️ Dropping {len(dropped)} stale tool embedding(s) for '{name}'")
            self.store.update_config(lambda c: drop_tool_embeddings(c, name, dropped), "mcp_servers")

"""
Connections to individual MCP tool servers.

One connection owns exactly one channel (subprocess, SSE stream, streamable
HTTP session, or an in-process handler table). Connect failures are written to
a bounded diagnostic log and reported as False rather than raised.
"""

from __future__ import annotations

import os
import time
from abc import ABC, abstractmethod
from collections import deque
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

import httpx
from mcp import types
from mcp.client.session import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamable_http_client

from src.agentcore.errors import NotConnectedError
from src.agentcore.yaml_config import (
    InternalServerConfig,
    SseServerConfig,
    StdioServerConfig,
    StreamableServerConfig,
)
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.agentcore.chat_session import ChatSession

MAX_LOG_ENTRIES = 100


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class CallToolOutcome:
    """Content blocks returned by a tool plus wall-clock time spent in the call."""
    content: list[Any] = field(default_factory=list)
    elapsed_ms: float = 0.0
    is_error: bool = False

    def text(self) -> str:
        return "\n".join(block.text for block in self.content if getattr(block, "type", None) == "text")


def build_stdio_env(env: dict[str, str], system_path: Optional[str] = None) -> dict[str, str]:
    """Server env with PATH guaranteed.

    Launcher shims (npx, uvx, ...) spawn their own children and fail silently
    without PATH, so one is injected when the config doesn't set it: the
    agent-level system path if configured, else the host's.
    """
    merged = dict(env)
    if "PATH" not in merged:
        merged["PATH"] = system_path or os.environ.get("PATH", os.defpath)
    return merged


class ToolServerConnection(ABC):
    """Lifecycle and tool access for one tool server."""

    transport_name = "unknown"

    def __init__(self, name: str):
        self.name = name
        self.state = ConnectionState.DISCONNECTED
        self.tools: list[types.Tool] = []
        self._log: deque[str] = deque(maxlen=MAX_LOG_ENTRIES)
        self.logger = get_logger(f"Connection.{name}")

    async def connect(self) -> bool:
        """Open the channel and discover tools. Returns False on failure."""
        # Release any channel left behind by a failed or desynchronized connection
        await self._safe_close()
        self.state = ConnectionState.CONNECTING
        self.logger.info(f"🔌 Connecting to '{self.name}' via {self.transport_name}")
        try:
            self.tools = await self._open()
        except Exception as e:
            self.log_error(f"Connection failed: {e}")
            self.logger.error(f"❌ Failed to connect to '{self.name}': {e}")
            await self._safe_close()
            self.state = ConnectionState.ERROR
            return False
        self.state = ConnectionState.CONNECTED
        self.logger.info(f"✅ Connected to '{self.name}' ({len(self.tools)} tools)")
        return True

    async def disconnect(self) -> None:
        await self._safe_close()
        self.tools = []
        self.state = ConnectionState.DISCONNECTED

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def list_tools(self) -> list[types.Tool]:
        return list(self.tools)

    def get_tool(self, tool_name: str) -> Optional[types.Tool]:
        for tool in self.tools:
            if tool.name == tool_name:
                return tool
        return None

    async def call_tool(
        self,
        tool_name: str,
        arguments: Optional[dict[str, Any]] = None,
        session: Optional["ChatSession"] = None,
    ) -> CallToolOutcome:
        """Invoke a tool.

        Raises:
            NotConnectedError: The connection is not in the connected state.
        """
        if not self.is_connected():
            raise NotConnectedError(self.name)
        start = time.perf_counter()
        try:
            result = await self._call(tool_name, arguments or {}, session)
        except Exception as e:
            self.log_error(f"Tool '{tool_name}' failed: {e}")
            raise
        return CallToolOutcome(
            content=list(result.content),
            elapsed_ms=(time.perf_counter() - start) * 1000,
            is_error=bool(result.isError),
        )

    def error_log(self) -> list[str]:
        return list(self._log)

    def log_error(self, message: str) -> None:
        self._log.append(f"{datetime.now(timezone.utc).isoformat()} {message}")

    async def _safe_close(self) -> None:
        try:
            await self._close()
        except Exception as e:
            self.log_error(f"Error while closing: {e}")
            self.logger.warning(f"⚠️ Error closing connection '{self.name}': {e}")

    @abstractmethod
    async def _open(self) -> list[types.Tool]:
        """Establish the channel and return the discovered tools."""

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    async def _call(
        self, tool_name: str, arguments: dict[str, Any], session: Optional["ChatSession"]
    ) -> types.CallToolResult:
        ...


class _ClientSessionConnection(ToolServerConnection):
    """Shared plumbing for transports that speak MCP through a ClientSession."""

    def __init__(self, name: str):
        super().__init__(name)
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None

    @abstractmethod
    async def _open_streams(self, stack: AsyncExitStack) -> tuple[Any, Any]:
        """Enter the transport context on `stack` and return (read, write)."""

    async def _open(self) -> list[types.Tool]:
        self._stack = AsyncExitStack()
        await self._stack.__aenter__()
        read, write = await self._open_streams(self._stack)
        self._session = await self._stack.enter_async_context(ClientSession(read, write))
        init_result = await self._session.initialize()
        if not init_result.capabilities.tools:
            return []
        tools_result = await self._session.list_tools()
        return list(tools_result.tools)

    async def _close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await stack.aclose()

    async def _call(self, tool_name, arguments, session) -> types.CallToolResult:
        return await self._session.call_tool(tool_name, arguments)


class StdioConnection(_ClientSessionConnection):
    transport_name = "stdio"

    def __init__(self, name: str, config: StdioServerConfig, system_path: Optional[str] = None):
        super().__init__(name)
        self.config = config
        self.system_path = system_path

    async def _open_streams(self, stack):
        params = StdioServerParameters(
            command=self.config.command,
            args=self.config.args,
            env=build_stdio_env(self.config.env, self.system_path),
            cwd=self.config.cwd,
        )
        return await stack.enter_async_context(stdio_client(params))


class SseDesyncError(httpx.RequestError):
    """A second connection-initiating request was attempted on one SSE connection."""


class SseConnection(_ClientSessionConnection):
    """
    SSE transport with a guard against a reconnect defect: when the event
    stream is re-opened on the same connection, the SSE session no longer
    matches the protocol handshake. The second stream-opening GET is refused
    and the connection reports itself disconnected so the owner reconnects.
    """

    transport_name = "sse"

    def __init__(self, name: str, config: SseServerConfig):
        super().__init__(name)
        self.config = config
        self.stream_requests = 0

    def _client_factory(
        self,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[httpx.Timeout] = None,
        auth: Optional[httpx.Auth] = None,
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=headers,
            timeout=timeout if timeout is not None else httpx.Timeout(30.0),
            auth=auth,
            follow_redirects=True,
            event_hooks={"request": [self._on_request]},
        )

    async def _on_request(self, request: httpx.Request) -> None:
        if request.method != "GET":
            return
        self.stream_requests += 1
        if self.stream_requests > 1:
            self.state = ConnectionState.DISCONNECTED
            self.log_error("SSE stream re-opened on a live connection; marked disconnected")
            self.logger.warning(f"⚠️ SSE connection '{self.name}' desynchronized, reconnect required")
            raise SseDesyncError("SSE stream re-open refused", request=request)

    async def _open_streams(self, stack):
        self.stream_requests = 0
        return await stack.enter_async_context(
            sse_client(
                url=self.config.url,
                headers=self.config.headers or None,
                httpx_client_factory=self._client_factory,
            )
        )


class StreamableHttpConnection(_ClientSessionConnection):
    transport_name = "streamable-http"

    def __init__(self, name: str, config: StreamableServerConfig):
        super().__init__(name)
        self.config = config

    async def _open_streams(self, stack):
        http_client = await stack.enter_async_context(
            httpx.AsyncClient(headers=self.config.headers or None, follow_redirects=True)
        )
        read, write, _ = await stack.enter_async_context(
            streamable_http_client(self.config.url, http_client=http_client)
        )
        return read, write


class InternalToolServer(Protocol):
    """In-process tool provider backing an internal connection."""

    def list_tools(self) -> list[types.Tool]:
        ...

    async def call_tool(
        self, tool_name: str, arguments: dict[str, Any], session: Optional["ChatSession"]
    ) -> types.CallToolResult:
        ...


class InternalConnection(ToolServerConnection):
    """Connection to an in-process tool server; there is no channel to open or close."""

    transport_name = "internal"

    def __init__(self, name: str, config: InternalServerConfig, server: InternalToolServer):
        super().__init__(name)
        self.config = config
        self.server = server

    async def _open(self) -> list[types.Tool]:
        return self.server.list_tools()

    async def _close(self) -> None:
        return None

    async def _call(self, tool_name, arguments, session) -> types.CallToolResult:
        return await self.server.call_tool(tool_name, arguments, session)

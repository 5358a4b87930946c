from __future__ import annotations
from typing import Iterable, List, Tuple
from mcp import types
from src.agentcore.selection.chunking import compute_text_hash, tool_index_text
from src.agentcore.yaml_config import AgentConfig, EmbeddingCacheEntry


def validate_tool_embeddings(
    config: AgentConfig,
    server_name: str,
    discovered: List[types.Tool],
) -> Tuple[dict[str, EmbeddingCacheEntry], List[str]]:
    """Check persisted tool embeddings against the tools a server reports now.

    Rules:
    - Tool no longer offered by the server: drop the entry
    - Hash differs from hash("name: description") of the live tool: drop the entry
    - Otherwise: keep

    Returns (valid entries by tool name, names of dropped entries).
    """
    server = config.mcp_servers.get(server_name)
    if server is None:
        return {}, []
    live = {tool.name: tool for tool in discovered}

    valid: dict[str, EmbeddingCacheEntry] = {}
    dropped: List[str] = []
    for tool_name, entry in server.tools.items():
        tool = live.get(tool_name)
        if tool is None or entry.hash != compute_text_hash(tool_index_text(tool.name, tool.description)):
            dropped.append(tool_name)
        else:
            valid[tool_name] = entry
    return valid, dropped


def drop_tool_embeddings(config: AgentConfig, server_name: str, tool_names: Iterable[str]) -> int:
    """Remove cached embeddings for the given tools. Returns count removed."""
    server = config.mcp_servers.get(server_name)
    if not server:
        return 0
    removed = 0
    for name in tool_names:
        if server.tools.pop(name, None) is not None:
            removed += 1
    return removed


def store_tool_embedding(
    config: AgentConfig, server_name: str, tool_name: str, entry: EmbeddingCacheEntry
) -> bool:
    """Record freshly computed embeddings for a tool. Returns False if the server is gone."""
    server = config.mcp_servers.get(server_name)
    if server is None:
        return False
    server.tools[tool_name] = entry
    return True


def get_enabled_tools(config: AgentConfig, server_name: str, discovered: List[types.Tool]) -> List[types.Tool]:
    """Return the discovered tools that are enabled for a server."""
    server = config.mcp_servers.get(server_name)
    if not server:
        return []
    return [tool for tool in discovered if server.is_tool_enabled(tool.name)]

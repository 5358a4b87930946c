from __future__ import annotations
from pathlib import Path
from typing import Optional
from src.agentcore.agent import Agent
from src.agentcore.mcp_client import qualify_tool_name
from src.agentcore.providers.types import AssistantMessage, ChatMessage, TurnResult
from src.agentcore.selection.embedder import Embedder
from src.agentcore.utils.config import AgentCoreSettings
from src.agentcore.yaml_config import AGENT_YAML, load_config, migrate_json_config
from src.utils.logger import get_logger

logger = get_logger("cli")


def cmd_status(agent_dir: Path) -> str:
    config = load_config(agent_dir / AGENT_YAML)
    lines = [f"Agent: {config.metadata.name}", "=" * 40]
    if config.metadata.description:
        lines.append(config.metadata.description)
    lines.append(f"  Autonomous:  {'yes' if config.metadata.autonomous else 'no'}")
    lines.append(f"  Model:       {config.settings.model or '(none)'}")
    lines.append(f"  Rules:       {len(config.rules)}")
    lines.append(f"  References:  {len(config.references)}")
    lines.append(f"  Providers:   {', '.join(config.providers) or '(none)'}")
    for server_name, server in config.mcp_servers.items():
        lines.append(f"\n{server_name}")
        lines.append(f"  Type:     {server.type}")
        if server.type == "stdio":
            lines.append(f"  Command:  {server.command} {' '.join(server.args)}".rstrip())
        elif server.type in ("sse", "streamable"):
            lines.append(f"  URL:      {server.url}")
        else:
            lines.append(f"  Library:  {server.tool}")
    return "\n".join(lines)


def _documents(agent_dir: Path, section: str) -> str:
    config = load_config(agent_dir / AGENT_YAML)
    documents = sorted(getattr(config, section), key=lambda d: (d.priority_level, d.name))
    if not documents:
        return f"No {section} defined."
    lines = []
    for document in documents:
        embedded = " [indexed]" if document.embeddings else ""
        lines.append(f"  {document.priority_level:03d} {document.name} ({document.include}){embedded}")
        if document.description:
            lines.append(f"      {document.description}")
    return "\n".join(lines)


def cmd_rules(agent_dir: Path) -> str:
    return _documents(agent_dir, "rules")


def cmd_references(agent_dir: Path) -> str:
    return _documents(agent_dir, "references")


def cmd_migrate(agent_dir: Path) -> str:
    if migrate_json_config(agent_dir):
        logger.info(f"Migrated legacy config in {agent_dir}")
        return f"✅ Migrated legacy config to {agent_dir / AGENT_YAML}"
    return "Nothing to migrate."


async def cmd_tools(
    agent_dir: Path,
    server_filter: Optional[str] = None,
    settings: Optional[AgentCoreSettings] = None,
) -> str:
    """Connect to the configured servers and list their tools."""
    agent = Agent.load(agent_dir, settings)
    try:
        connections = await agent.clients.get_all()
        lines = []
        for server_name, connection in connections.items():
            if server_filter and server_name != server_filter:
                continue
            server = agent.config.mcp_servers[server_name]
            if lines:
                lines.append("")
            if not connection.is_connected():
                lines.append(f"[{server_name}] ❌ not connected")
                lines.extend(f"  {line}" for line in connection.error_log()[-5:])
                continue
            tools = connection.list_tools()
            enabled = sum(1 for t in tools if server.is_tool_enabled(t.name))
            lines.append(f"[{server_name}] ({enabled}/{len(tools)} tools enabled)")
            for tool in sorted(tools, key=lambda t: t.name):
                status = "✓" if server.is_tool_enabled(tool.name) else "✗"
                approval = " [approval]" if server.is_tool_permission_required(tool.name) else ""
                lines.append(
                    f"  {status} {qualify_tool_name(server_name, tool.name)}"
                    f" ({server.tool_include_mode(tool.name)}){approval}"
                )
        return "\n".join(lines) or "No servers configured."
    finally:
        await agent.close()


def _render(message) -> list[str]:
    if isinstance(message, ChatMessage):
        prefix = "⚠️ " if message.role == "error" else ""
        return [f"{prefix}{message.content}"]
    if isinstance(message, AssistantMessage):
        lines = []
        for turn in message.model_reply.turns:
            for result in turn.results:
                lines.append(_render_result(result))
            if turn.error:
                lines.append(f"⚠️ {turn.error}")
        for call in message.model_reply.pending_tool_calls:
            lines.append(f"⏸ awaiting approval: {call.qualified_name}")
        return lines
    return []


def _render_result(result: TurnResult) -> str:
    if result.type == "text":
        return result.text or ""
    call = result.tool_call
    return f"🔧 {call.qualified_name} -> {call.error or call.output}"


async def cmd_chat(
    agent_dir: Path,
    message: str,
    provider: Optional[str] = None,
    model_id: Optional[str] = None,
    settings: Optional[AgentCoreSettings] = None,
    embedder: Optional[Embedder] = None,
) -> str:
    """Send one message to a fresh session and return the rendered reply."""
    agent = Agent.load(agent_dir, settings, embedder)
    try:
        session = agent.create_session(provider=provider, model_id=model_id)
        if session.provider is None:
            return "No model selected. Pass --provider or set settings.model in agent.yaml."
        update = await session.handle_message(message)
        lines = []
        for item in update.updates:
            lines.extend(_render(item))
        return "\n".join(lines)
    finally:
        await agent.close()

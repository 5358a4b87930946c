import json
import pytest
from pathlib import Path

from src.agentcore.cli import cmd_chat, cmd_migrate, cmd_references, cmd_rules, cmd_status, cmd_tools
from src.agentcore.utils.config import AgentCoreSettings
from src.agentcore.yaml_config import (
    AGENT_JSON,
    AGENT_YAML,
    AgentConfig,
    AgentMetadata,
    AgentSettings,
    InternalServerConfig,
    Reference,
    Rule,
    SseServerConfig,
    StdioServerConfig,
    save_config,
)
from tests.utils import BagOfWordsEmbedder

SETTINGS = AgentCoreSettings(audit_enabled=False, connection_timeout=2.0)


def _write(tmp_path: Path, config: AgentConfig) -> Path:
    save_config(config, tmp_path / AGENT_YAML)
    return tmp_path


def test_cmd_status_shows_agent_and_servers(tmp_path):
    config = AgentConfig(
        metadata=AgentMetadata(name="Helper", autonomous=True),
        settings=AgentSettings(model="test:frosty1.0"),
        rules=[Rule(name="tone", text="Be warm.")],
        mcp_servers={
            "files": StdioServerConfig(command="npx", args=["server-files"]),
            "web": SseServerConfig(url="http://localhost:9000/sse"),
        },
    )
    output = cmd_status(_write(tmp_path, config))
    assert "Agent: Helper" in output
    assert "Autonomous:  yes" in output
    assert "test:frosty1.0" in output
    assert "Rules:       1" in output
    assert "npx server-files" in output
    assert "http://localhost:9000/sse" in output


def test_cmd_rules_sorted_by_priority(tmp_path):
    config = AgentConfig(rules=[
        Rule(name="later", text="x", priority_level=900),
        Rule(name="first", text="y", priority_level=10, description="Goes first", include="always"),
    ])
    output = cmd_rules(_write(tmp_path, config))
    lines = output.splitlines()
    assert lines[0] == "  010 first (always)"
    assert lines[1] == "      Goes first"
    assert "900 later (manual)" in lines[2]


def test_cmd_references_empty(tmp_path):
    assert cmd_references(_write(tmp_path, AgentConfig(references=[]))) == "No references defined."


def test_cmd_references_lists_documents(tmp_path):
    output = cmd_references(_write(tmp_path, AgentConfig(references=[Reference(name="guide", text="g")])))
    assert "guide" in output


def test_cmd_migrate(tmp_path):
    (tmp_path / AGENT_JSON).write_text(json.dumps({"metadata": {"name": "Legacy"}}))
    assert "Migrated" in cmd_migrate(tmp_path)
    assert (tmp_path / AGENT_YAML).exists()
    assert cmd_migrate(tmp_path) == "Nothing to migrate."


@pytest.mark.asyncio
async def test_cmd_tools_internal_server(tmp_path):
    config = AgentConfig(mcp_servers={"rules": InternalServerConfig(tool="rules")})
    output = await cmd_tools(_write(tmp_path, config), settings=SETTINGS)
    assert output.startswith("[rules] (9/9 tools enabled)")
    assert "✓ rules_createRule (manual) [approval]" in output


@pytest.mark.asyncio
async def test_cmd_tools_no_servers(tmp_path):
    assert await cmd_tools(_write(tmp_path, AgentConfig()), settings=SETTINGS) == "No servers configured."


@pytest.mark.asyncio
async def test_cmd_chat_with_test_provider(tmp_path):
    output = await cmd_chat(
        _write(tmp_path, AgentConfig()), "Hello there", provider="test", settings=SETTINGS, embedder=BagOfWordsEmbedder()
    )
    lines = output.splitlines()
    assert lines[0] == "Hello there"
    assert lines[1].startswith("Happy Birthday!")


@pytest.mark.asyncio
async def test_cmd_chat_without_model(tmp_path):
    output = await cmd_chat(_write(tmp_path, AgentConfig()), "Hello", settings=SETTINGS, embedder=BagOfWordsEmbedder())
    assert output.startswith("No model selected")

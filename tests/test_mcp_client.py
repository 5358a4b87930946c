"""
Tests for ToolClientManager:
- Concurrent get_client calls for one server create exactly one connection.
- Failed connections stay registered and are retried on the next fetch.
- Config updates only reconnect when connection settings change.
- Persisted tool embeddings are validated against discovered tools.
"""

import asyncio
import pytest
from unittest.mock import MagicMock

from src.agentcore.config_store import ConfigStore
from src.agentcore.errors import ToolNameError, UnknownServerError
from src.agentcore.mcp_client import ToolClientManager, qualify_tool_name, split_tool_name
from src.agentcore.selection.cache import EmbeddingCache
from src.agentcore.selection.chunking import compute_text_hash, tool_index_text
from src.agentcore.selection.models import item_key
from src.agentcore.yaml_config import AgentConfig, EmbeddingCacheEntry, StdioServerConfig, ToolOverrides
from tests.utils import FakeConnection, make_tool


def _store(**servers) -> ConfigStore:
    return ConfigStore(AgentConfig(mcp_servers=servers))


class _Factory:
    """Connection factory that counts constructions and optionally delays connects."""

    def __init__(self, tools=None, delay: float = 0.0, fail: bool = False):
        self.tools = tools or [make_tool("ls", "List files")]
        self.delay = delay
        self.fail = fail
        self.created: list[FakeConnection] = []

    def __call__(self, name, config):
        factory = self

        class _Slow(FakeConnection):
            async def _open(self):
                await asyncio.sleep(factory.delay)
                return await super()._open()

        conn = _Slow(name, self.tools, fail=self.fail)
        self.created.append(conn)
        return conn


class TestToolNames:
    def test_qualify_and_split(self):
        assert qualify_tool_name("files", "read_file") == "files_read_file"
        assert split_tool_name("files_read_file") == ("files", "read_file")

    @pytest.mark.parametrize("bad", ["nounderscore", "_tool", "server_"])
    def test_invalid_names(self, bad):
        with pytest.raises(ToolNameError):
            split_tool_name(bad)


class TestConcurrentClientCreation:
    @pytest.mark.asyncio
    async def test_five_concurrent_gets_create_one_connection(self):
        factory = _Factory(delay=0.01)
        manager = ToolClientManager(_store(files=StdioServerConfig(command="x")), factory)

        results = await asyncio.gather(*[manager.get_client("files") for _ in range(5)])

        assert len(factory.created) == 1
        assert factory.created[0].open_count == 1
        assert all(r is factory.created[0] for r in results)

    @pytest.mark.asyncio
    async def test_unknown_server_raises(self):
        manager = ToolClientManager(_store(), _Factory())
        with pytest.raises(UnknownServerError):
            await manager.get_client("missing")

    @pytest.mark.asyncio
    async def test_get_all_loads_every_configured_server(self):
        factory = _Factory()
        manager = ToolClientManager(
            _store(a=StdioServerConfig(command="x"), b=StdioServerConfig(command="y")), factory
        )
        connections = await manager.get_all()
        assert set(connections) == {"a", "b"}
        assert set(manager.get_loaded()) == {"a", "b"}


class TestFailedConnections:
    @pytest.mark.asyncio
    async def test_failed_connection_stays_registered_and_retries(self):
        factory = _Factory(fail=True)
        manager = ToolClientManager(_store(files=StdioServerConfig(command="x")), factory)

        conn = await manager.get_client("files")
        assert conn.is_connected() is False
        assert "files" in manager.get_loaded()
        assert conn.error_log()

        conn.fail = False
        again = await manager.get_client("files")
        assert again is conn
        assert again.is_connected() is True
        assert len(factory.created) == 1
        assert conn.open_count == 2

    @pytest.mark.asyncio
    async def test_connect_timeout(self):
        factory = _Factory(delay=1.0)
        manager = ToolClientManager(
            _store(files=StdioServerConfig(command="x")), factory, connection_timeout=0.05
        )
        conn = await manager.get_client("files")
        assert conn.is_connected() is False
        assert any("timed out" in line for line in conn.error_log())


class TestConfigUpdates:
    @pytest.mark.asyncio
    async def test_metadata_only_change_keeps_connection(self):
        store = _store(files=StdioServerConfig(command="node", args=["a.js"]))
        factory = _Factory()
        manager = ToolClientManager(store, factory)
        conn = await manager.get_client("files")

        previous = store.get_config().mcp_servers["files"]
        store.update_config(
            lambda c: setattr(c.mcp_servers["files"], "tool_enabled", ToolOverrides(server_default=False)),
            "mcp_servers",
        )
        assert await manager.update("files", previous) is False
        assert await manager.get_client("files") is conn
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_embedding_only_change_keeps_connection(self):
        store = _store(files=StdioServerConfig(command="node", args=["a.js"]))
        factory = _Factory()
        manager = ToolClientManager(store, factory)
        conn = await manager.get_client("files")

        previous = store.get_config().mcp_servers["files"]
        entry = EmbeddingCacheEntry(embeddings=[[1.0, 0.0]], hash="abc")
        store.update_config(lambda c: setattr(c.mcp_servers["files"], "tools", {"ls": entry}), "mcp_servers")

        assert await manager.update("files", previous) is False
        assert await manager.get_client("files") is conn
        assert conn.open_count == 1

    @pytest.mark.asyncio
    async def test_connection_change_reconnects_once(self):
        store = _store(files=StdioServerConfig(command="node", args=["a.js"]))
        factory = _Factory()
        manager = ToolClientManager(store, factory)
        old = await manager.get_client("files")

        previous = store.get_config().mcp_servers["files"]
        store.update_config(lambda c: setattr(c.mcp_servers["files"], "args", ["b.js"]), "mcp_servers")

        assert await manager.update("files", previous) is True
        assert len(factory.created) == 2
        assert old.is_connected() is False
        assert manager.get_loaded()["files"] is factory.created[1]
        assert factory.created[1].is_connected() is True

    @pytest.mark.asyncio
    async def test_removed_server_is_unloaded(self):
        store = _store(files=StdioServerConfig(command="node"))
        manager = ToolClientManager(store, _Factory())
        await manager.get_client("files")
        previous = store.get_config().mcp_servers["files"]
        store.update_config(lambda c: c.mcp_servers.pop("files"), "mcp_servers")
        await manager.update("files", previous)
        assert manager.get_loaded() == {}


class TestEmbeddingRestore:
    @pytest.mark.asyncio
    async def test_valid_embeddings_seeded_and_stale_pruned(self):
        ls = make_tool("ls", "List files")
        valid_hash = compute_text_hash(tool_index_text(ls.name, ls.description))
        store = _store(files=StdioServerConfig(
            command="x",
            tools={
                "ls": EmbeddingCacheEntry(embeddings=[[1.0]], hash=valid_hash),
                "rm": EmbeddingCacheEntry(embeddings=[[1.0]], hash="gone"),
            },
        ))
        cache = EmbeddingCache()
        manager = ToolClientManager(store, _Factory(tools=[ls]), embedding_cache=cache)

        await manager.get_client("files")

        assert item_key("tool", "ls", "files") in cache
        assert set(store.get_config().mcp_servers["files"].tools) == {"ls"}

    @pytest.mark.asyncio
    async def test_changed_description_invalidates(self):
        store = _store(files=StdioServerConfig(
            command="x",
            tools={"ls": EmbeddingCacheEntry(embeddings=[[1.0]], hash=compute_text_hash("ls: old text"))},
        ))
        manager = ToolClientManager(store, _Factory(tools=[make_tool("ls", "new text")]), embedding_cache=EmbeddingCache())
        await manager.get_client("files")
        assert store.get_config().mcp_servers["files"].tools == {}

    @pytest.mark.asyncio
    async def test_unload_invalidates_server_cache(self):
        cache = EmbeddingCache()
        manager = ToolClientManager(_store(files=StdioServerConfig(command="x")), _Factory(), embedding_cache=cache)
        await manager.get_client("files")
        cache.put(item_key("tool", "ls", "files"), "ls: List files", [[1.0]])
        await manager.unload("files")
        assert len(cache) == 0


class TestCallTool:
    @pytest.mark.asyncio
    async def test_dispatches_to_owning_server_and_audits(self):
        audit = MagicMock()
        factory = _Factory()
        manager = ToolClientManager(_store(files=StdioServerConfig(command="x")), factory, audit_logger=audit)
        session = MagicMock(id="s1")

        outcome = await manager.call_tool("files_ls", {"path": "/"}, session)

        assert outcome.text() == "ls ok [('path', '/')]"
        assert factory.created[0].calls == [("ls", {"path": "/"})]
        audit.log_tool_call.assert_called_once()
        assert audit.log_tool_call.call_args.args[:3] == ("files", "ls", {"path": "/"})
        assert audit.log_tool_call.call_args.args[-1] == "s1"

    @pytest.mark.asyncio
    async def test_unknown_tool_raises_and_audits_failure(self):
        audit = MagicMock()
        manager = ToolClientManager(_store(files=StdioServerConfig(command="x")), _Factory(), audit_logger=audit)
        with pytest.raises(ToolNameError):
            await manager.call_tool("files_rm", {})
        audit.log_tool_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_disconnects_everything(self):
        factory = _Factory()
        manager = ToolClientManager(
            _store(a=StdioServerConfig(command="x"), b=StdioServerConfig(command="y")), factory
        )
        await manager.get_all()
        await manager.close()
        assert manager.get_loaded() == {}
        assert all(not conn.is_connected() for conn in factory.created)

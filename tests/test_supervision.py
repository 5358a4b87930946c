"""Tests for SupervisionManager chaining and registration."""

import pytest
from types import SimpleNamespace

from src.agentcore.providers.types import ChatMessage, MessageUpdate
from src.agentcore.supervision import (
    RequestSupervisionResult,
    ResponseSupervisionResult,
    SupervisionManager,
    Supervisor,
)


class _Suffix(Supervisor):
    """Appends its id to the user message."""

    async def process_request(self, session, messages):
        last = messages[-1]
        return RequestSupervisionResult(
            action="modify",
            reasons=[f"{self.id} edited"],
            final_message=ChatMessage(role="user", content=f"{last.content} [{self.id}]"),
        )


class _Block(Supervisor):
    async def process_request(self, session, messages):
        return RequestSupervisionResult(action="block", reasons=[f"{self.id} said no"])

    async def process_response(self, session, response):
        return ResponseSupervisionResult(action="block", reasons=[f"{self.id} said no"])


class _Broken(Supervisor):
    async def process_request(self, session, messages):
        raise RuntimeError("boom")

    async def process_response(self, session, response):
        raise RuntimeError("boom")


class _Redact(Supervisor):
    async def process_response(self, session, response):
        return ResponseSupervisionResult(
            action="modify",
            reasons=["redacted"],
            final_response=MessageUpdate(updates=[ChatMessage(role="error", content="[redacted]")], last_sync_id=0),
        )


SESSION = SimpleNamespace(id="s1")


def _manager(*supervisors) -> SupervisionManager:
    manager = SupervisionManager()
    for supervisor in supervisors:
        manager.add_supervisor(supervisor)
        manager.register_supervisor(SESSION.id, supervisor.id)
    return manager


def _messages(text="hello"):
    return [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content=text)]


class TestRequestSupervision:
    @pytest.mark.asyncio
    async def test_no_supervisors_allows(self):
        result = await SupervisionManager().process_request(SESSION, _messages())
        assert result.action == "allow"
        assert result.final_message.content == "hello"

    @pytest.mark.asyncio
    async def test_modifications_chain_in_registration_order(self):
        manager = _manager(_Suffix("a", "A"), _Suffix("b", "B"))
        result = await manager.process_request(SESSION, _messages())
        assert result.action == "modify"
        assert result.final_message.content == "hello [a] [b]"
        assert result.reasons == ["a edited", "b edited"]

    @pytest.mark.asyncio
    async def test_first_block_wins(self):
        manager = _manager(_Suffix("a", "A"), _Block("stop", "Stop"), _Block("later", "Later"))
        result = await manager.process_request(SESSION, _messages())
        assert result.action == "block"
        assert result.reasons == ["stop said no"]

    @pytest.mark.asyncio
    async def test_request_supervisor_errors_propagate(self):
        with pytest.raises(RuntimeError):
            await _manager(_Broken("x", "X")).process_request(SESSION, _messages())

    @pytest.mark.asyncio
    async def test_other_sessions_unaffected(self):
        manager = _manager(_Block("stop", "Stop"))
        result = await manager.process_request(SimpleNamespace(id="s2"), _messages())
        assert result.action == "allow"


class TestResponseSupervision:
    @pytest.mark.asyncio
    async def test_failing_supervisor_skipped(self):
        manager = _manager(_Broken("x", "X"), _Redact("r", "Redact"))
        result = await manager.process_response(SESSION, MessageUpdate(updates=[], last_sync_id=0))
        assert result.action == "modify"
        assert result.final_response.updates[0].content == "[redacted]"

    @pytest.mark.asyncio
    async def test_block(self):
        result = await _manager(_Block("stop", "Stop")).process_response(SESSION, MessageUpdate(updates=[], last_sync_id=0))
        assert result.action == "block"
        assert result.final_response is None


class TestRegistration:
    def test_register_unknown_supervisor(self):
        with pytest.raises(KeyError):
            SupervisionManager().register_supervisor("s1", "ghost")

    def test_register_is_idempotent(self):
        manager = _manager(_Block("stop", "Stop"))
        manager.register_supervisor("s1", "stop")
        assert [s.id for s in manager.get_session_supervisors("s1")] == ["stop"]

    def test_remove_supervisor_unregisters_everywhere(self):
        manager = _manager(_Block("stop", "Stop"))
        manager.register_supervisor("s2", "stop")
        assert manager.remove_supervisor("stop") is True
        assert manager.get_session_supervisors("s1") == []
        assert manager.get_session_supervisors("s2") == []
        assert manager.remove_supervisor("stop") is False

    def test_unregister(self):
        manager = _manager(_Block("stop", "Stop"))
        manager.unregister_supervisor("s1", "stop")
        assert manager.session_supervisors == {}
        assert manager.get_supervisor("stop") is not None

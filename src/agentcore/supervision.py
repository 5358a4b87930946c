"""
Request/response supervision for chat sessions.

Supervisors registered for a session see the outbound message list before
each model call and the MessageUpdate after it. Each one can allow, modify
or block; modifications chain from one supervisor to the next and the first
block wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Optional

from src.agentcore.providers.types import Message, MessageUpdate
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.agentcore.chat_session import ChatSession

SupervisionAction = Literal["allow", "modify", "block"]


@dataclass
class RequestSupervisionResult:
    action: SupervisionAction = "allow"
    reasons: list[str] = field(default_factory=list)
    # Replacement for the last (user) message of the outbound list
    final_message: Optional[Message] = None


@dataclass
class ResponseSupervisionResult:
    action: SupervisionAction = "allow"
    reasons: list[str] = field(default_factory=list)
    final_response: Optional[MessageUpdate] = None


class Supervisor:
    """Base supervisor; allows everything unless a hook is overridden."""

    def __init__(self, supervisor_id: str, name: str):
        self.id = supervisor_id
        self.name = name
        self.logger = get_logger(f"Supervisor.{supervisor_id}")

    async def process_request(self, session: "ChatSession", messages: list[Message]) -> RequestSupervisionResult:
        return RequestSupervisionResult(action="allow", final_message=messages[-1] if messages else None)

    async def process_response(self, session: "ChatSession", response: MessageUpdate) -> ResponseSupervisionResult:
        return ResponseSupervisionResult(action="allow")


class SupervisionManager:
    """Holds supervisors and the per-session registrations that activate them."""

    def __init__(self) -> None:
        self.supervisors: dict[str, Supervisor] = {}
        self.session_supervisors: dict[str, list[str]] = {}
        self.logger = get_logger("SupervisionManager")

    def add_supervisor(self, supervisor: Supervisor) -> None:
        self.supervisors[supervisor.id] = supervisor
        self.logger.info(f"✅ Added supervisor '{supervisor.name}' ({supervisor.id})")

    def remove_supervisor(self, supervisor_id: str) -> bool:
        if self.supervisors.pop(supervisor_id, None) is None:
            return False
        for ids in self.session_supervisors.values():
            if supervisor_id in ids:
                ids.remove(supervisor_id)
        self.logger.info(f"🗑️ Removed supervisor {supervisor_id}")
        return True

    def get_supervisor(self, supervisor_id: str) -> Optional[Supervisor]:
        return self.supervisors.get(supervisor_id)

    def get_all_supervisors(self) -> list[Supervisor]:
        return list(self.supervisors.values())

    def register_supervisor(self, session_id: str, supervisor_id: str) -> None:
        if supervisor_id not in self.supervisors:
            raise KeyError(f"Unknown supervisor: {supervisor_id}")
        ids = self.session_supervisors.setdefault(session_id, [])
        if supervisor_id not in ids:
            ids.append(supervisor_id)
        self.logger.info(f"Registered supervisor {supervisor_id} for session {session_id}")

    def unregister_supervisor(self, session_id: str, supervisor_id: str) -> None:
        ids = self.session_supervisors.get(session_id, [])
        if supervisor_id in ids:
            ids.remove(supervisor_id)
        if not ids:
            self.session_supervisors.pop(session_id, None)

    def get_session_supervisors(self, session_id: str) -> list[Supervisor]:
        return [
            self.supervisors[supervisor_id]
            for supervisor_id in self.session_supervisors.get(session_id, [])
            if supervisor_id in self.supervisors
        ]

    async def process_request(self, session: "ChatSession", messages: list[Message]) -> RequestSupervisionResult:
        """Run the session's supervisors over the outbound messages.

        Exceptions from a supervisor propagate; the session decides how to
        proceed.
        """
        current = list(messages)
        reasons: list[str] = []
        for supervisor in self.get_session_supervisors(session.id):
            result = await supervisor.process_request(session, current)
            if result.action == "block":
                return result
            if result.action == "modify" and result.final_message is not None:
                current[-1] = result.final_message
                reasons.extend(result.reasons)
        return RequestSupervisionResult(
            action="modify" if reasons else "allow",
            reasons=reasons,
            final_message=current[-1] if current else None,
        )

    async def process_response(self, session: "ChatSession", response: MessageUpdate) -> ResponseSupervisionResult:
        """Run the session's supervisors over a response. A failing supervisor is skipped."""
        current = response
        reasons: list[str] = []
        for supervisor in self.get_session_supervisors(session.id):
            try:
                result = await supervisor.process_response(session, current)
            except Exception as e:
                self.logger.error(f"❌ Supervisor {supervisor.id} failed on response: {e}")
                continue
            if result.action == "block":
                return ResponseSupervisionResult(action="block", reasons=result.reasons)
            if result.action == "modify" and result.final_response is not None:
                current = result.final_response
                reasons.extend(result.reasons)
        return ResponseSupervisionResult(
            action="modify" if reasons else "allow",
            reasons=reasons,
            final_response=current,
        )

"""
Audit trail for tool dispatch.

Every tool call routed through the client registry, and every call denied at
the approval gate, is written as one JSON line to a rotating loguru sink.
"""

from typing import Any, Dict, Optional
from pathlib import Path
from datetime import datetime, timezone
import json
import re

from loguru import logger

from .config import AuditConfig, DEFAULT_AUDIT_CONFIG

_SENSITIVE_KEYS = re.compile(
    r"(api[_-]?key|token|password|passwd|secret|credential|auth|bearer)",
    re.IGNORECASE,
)
_REDACTED = "***REDACTED***"
_MAX_RESULT_CHARS = 2000


def redact_arguments(args: Any) -> Any:
    """Recursively redact values stored under sensitive-looking keys."""
    if isinstance(args, dict):
        return {
            key: _REDACTED if _SENSITIVE_KEYS.search(str(key)) else redact_arguments(value)
            for key, value in args.items()
        }
    if isinstance(args, list):
        return [redact_arguments(value) for value in args]
    return args


class AuditLogger:
    """
    Writes tool_call / tool_failure / tool_denied records to a JSONL file.

    The sink only accepts records bound with audit=True, so regular log
    output never lands in the audit file and vice versa.
    """

    def __init__(self, config: Optional[AuditConfig] = None, session_id: Optional[str] = None):
        self.config = config or DEFAULT_AUDIT_CONFIG
        self.session_id = session_id

        self.log_path = Path(self.config.log_dir)
        self.log_path.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_path / self.config.file_name

        self._sink_id = logger.add(
            str(self.log_file),
            format="{message}",
            rotation=self.config.rotation,
            retention=self.config.retention,
            compression=self.config.compression,
            enqueue=True,
            filter=lambda record: record["extra"].get("audit") is True,
        )

    def log_tool_call(
        self,
        server_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        elapsed_ms: float,
        result: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        entry = self._base_entry("tool_call", server_name, tool_name, arguments, session_id)
        entry["status"] = "success"
        entry["elapsed_ms"] = round(elapsed_ms, 2)
        if result is not None:
            entry["result"] = result[:_MAX_RESULT_CHARS]
        self._write_entry(entry)

    def log_tool_failure(
        self,
        server_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        error: str,
        session_id: Optional[str] = None,
    ) -> None:
        entry = self._base_entry("tool_failure", server_name, tool_name, arguments, session_id)
        entry["status"] = "error"
        entry["error"] = error
        self._write_entry(entry)

    def log_tool_denied(
        self,
        server_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        reason: str,
        session_id: Optional[str] = None,
    ) -> None:
        entry = self._base_entry("tool_denied", server_name, tool_name, arguments, session_id)
        entry["status"] = "denied"
        entry["reason"] = reason
        self._write_entry(entry)

    def _base_entry(
        self,
        event_type: str,
        server_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        session_id: Optional[str],
    ) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "session_id": session_id or self.session_id,
            "server_name": server_name,
            "tool_name": tool_name,
            "arguments": redact_arguments(arguments or {}),
        }

    def _write_entry(self, entry: Dict[str, Any]) -> None:
        json_line = json.dumps(entry, separators=(",", ":"), default=str)
        logger.bind(audit=True).info(json_line)

    def close(self) -> None:
        """Remove the audit sink from loguru and flush pending records."""
        if self._sink_id is not None:
            logger.remove(self._sink_id)
            self._sink_id = None

"""
Runtime settings and audit logging configuration.
"""

from dataclasses import dataclass
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentCoreSettings(BaseSettings):
    """Process-level settings (env prefix AGENT_CORE_)."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    agent_dir: str = "."
    read_only: bool = False
    connection_timeout: float = 30.0
    max_concurrent_connections: int = 10
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    audit_enabled: bool = True
    audit_log_dir: Optional[str] = None  # defaults to <agent_dir>/logs

    model_config = SettingsConfigDict(env_prefix="AGENT_CORE_")


@dataclass
class AuditConfig:
    """Where and how tool-dispatch audit records are written."""

    log_dir: str = "./logs"
    file_name: str = "tool_audit.jsonl"
    rotation: str = "10 MB"
    retention: str = "30 days"
    compression: str = "gz"


# Default configuration instance
DEFAULT_AUDIT_CONFIG = AuditConfig()

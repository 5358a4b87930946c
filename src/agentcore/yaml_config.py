from __future__ import annotations
import json
from pathlib import Path
from typing import Annotated, Any, ClassVar, Literal, Optional, Union
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from src.agentcore.errors import AgentConfigError
from src.utils.logger import get_logger

logger = get_logger("Config")

AGENT_YAML = "agent.yaml"
AGENT_JSON = "agent.json"
LEGACY_PROMPT_FILE = "prompt.md"

IncludeMode = Literal["always", "manual", "agent"]
ToolPermission = Literal["always", "never", "tool"]

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI agent."


class _ConfigModel(BaseModel):
    # Legacy JSON configs used camelCase keys; YAML is written in snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmbeddingCacheEntry(_ConfigModel):
    embeddings: list[list[float]]
    hash: str


class ToolOverrides(_ConfigModel):
    """Three-state per-tool flag: explicit per-tool value, else server default, else built-in default."""
    server_default: Optional[bool] = None
    tools: dict[str, bool] = Field(default_factory=dict)

    def resolve(self, tool_name: str, default: bool) -> bool:
        if tool_name in self.tools:
            return self.tools[tool_name]
        if self.server_default is not None:
            return self.server_default
        return default


class ToolIncludeOverrides(_ConfigModel):
    server_default: IncludeMode = "manual"
    tools: dict[str, IncludeMode] = Field(default_factory=dict)

    def resolve(self, tool_name: str) -> IncludeMode:
        return self.tools.get(tool_name, self.server_default)


class _ToolServerBase(_ConfigModel):
    tool_enabled: Optional[ToolOverrides] = None
    tool_permission_required: Optional[ToolOverrides] = None
    tool_include: Optional[ToolIncludeOverrides] = None
    tools: dict[str, EmbeddingCacheEntry] = Field(default_factory=dict)

    # Fields whose change requires tearing down the live connection
    connection_fields: ClassVar[tuple[str, ...]] = ()

    def connection_settings(self) -> dict[str, Any]:
        settings = self.model_dump(include=set(self.connection_fields))
        settings["type"] = self.type
        return settings

    def is_tool_enabled(self, tool_name: str) -> bool:
        if self.tool_enabled is None:
            return True
        return self.tool_enabled.resolve(tool_name, True)

    def is_tool_permission_required(self, tool_name: str) -> bool:
        if self.tool_permission_required is None:
            return True
        return self.tool_permission_required.resolve(tool_name, True)

    def tool_include_mode(self, tool_name: str) -> IncludeMode:
        if self.tool_include is None:
            return "manual"
        return self.tool_include.resolve(tool_name)


class StdioServerConfig(_ToolServerBase):
    type: Literal["stdio"] = "stdio"
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: Optional[str] = None

    connection_fields: ClassVar[tuple[str, ...]] = ("command", "args", "env", "cwd")


class SseServerConfig(_ToolServerBase):
    type: Literal["sse"] = "sse"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)

    connection_fields: ClassVar[tuple[str, ...]] = ("url", "headers")


class StreamableServerConfig(_ToolServerBase):
    type: Literal["streamable"] = "streamable"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)

    connection_fields: ClassVar[tuple[str, ...]] = ("url", "headers")


class InternalServerConfig(_ToolServerBase):
    type: Literal["internal"] = "internal"
    tool: Literal["rules", "references"]

    connection_fields: ClassVar[tuple[str, ...]] = ("tool",)


ToolServerConfig = Annotated[
    Union[StdioServerConfig, SseServerConfig, StreamableServerConfig, InternalServerConfig],
    Field(discriminator="type"),
]


def _infer_server_type(raw: Any) -> Any:
    """Fill in a missing `type` tag from the keys present."""
    if not isinstance(raw, dict) or "type" in raw:
        return raw
    if "command" in raw:
        return {**raw, "type": "stdio"}
    if "url" in raw:
        return {**raw, "type": "sse"}
    if "tool" in raw:
        return {**raw, "type": "internal"}
    return raw


class ContextDocument(_ConfigModel):
    name: str = Field(min_length=1)
    description: str = ""
    priority_level: int = Field(default=500, ge=0, le=999)
    text: str = Field(min_length=1)
    include: IncludeMode = "manual"
    embeddings: Optional[list[list[float]]] = None
    hash: Optional[str] = None

    def cache_entry(self) -> Optional[EmbeddingCacheEntry]:
        if self.embeddings is None or self.hash is None:
            return None
        return EmbeddingCacheEntry(embeddings=self.embeddings, hash=self.hash)


class Rule(ContextDocument):
    """An instruction injected into the model context as "Rule: <text>"."""


class Reference(ContextDocument):
    """A body of knowledge injected into the model context as "Reference: <text>"."""


class AgentMetadata(_ConfigModel):
    name: str = "New Agent"
    description: str = ""
    version: Optional[str] = None
    autonomous: bool = False
    created: Optional[str] = None
    last_accessed: Optional[str] = None


class AgentSettings(_ConfigModel):
    max_chat_turns: int = Field(default=20, ge=1)
    max_output_tokens: int = Field(default=1000, ge=1)
    temperature: float = Field(default=0.5, ge=0.0)
    top_p: float = Field(default=0.5, ge=0.0, le=1.0)
    tool_permission: ToolPermission = "tool"
    context_top_k: int = Field(default=20, ge=1)
    context_top_n: int = Field(default=5, ge=0)
    context_include_score: float = Field(default=0.7, ge=0.0, le=1.0)
    system_path: Optional[str] = None
    model: Optional[str] = None  # "<provider>:<model id>"


class AgentConfig(_ConfigModel):
    metadata: AgentMetadata = Field(default_factory=AgentMetadata)
    settings: AgentSettings = Field(default_factory=AgentSettings)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    rules: list[Rule] = Field(default_factory=list)
    references: list[Reference] = Field(default_factory=list)
    providers: dict[str, dict[str, str]] = Field(default_factory=dict)
    mcp_servers: dict[str, ToolServerConfig] = Field(default_factory=dict)

    @field_validator("mcp_servers", mode="before")
    @classmethod
    def _infer_server_types(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {name: _infer_server_type(raw) for name, raw in value.items()}
        return value


def load_config(path: Path) -> AgentConfig:
    """Load an agent config from YAML. Returns the default config if the file doesn't exist.

    Raises:
        AgentConfigError: The file exists but is not valid YAML or does not match the schema.
    """
    if not path.exists():
        return AgentConfig()
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AgentConfig.model_validate(raw)
    except yaml.YAMLError as e:
        logger.error(f"❌ Invalid YAML in {path}: {e}")
        raise AgentConfigError(f"Invalid YAML in {path}: {e}") from e
    except (ValidationError, TypeError, ValueError) as e:
        logger.error(f"❌ Invalid config schema at {path}: {e}")
        raise AgentConfigError(f"Invalid config schema at {path}: {e}") from e


def save_config(config: AgentConfig, path: Path) -> None:
    """Save config to YAML file, creating parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(
            config.model_dump(mode="json", exclude_none=True),
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )


def migrate_json_config(agent_dir: Path) -> bool:
    """One-time upgrade of a legacy `agent.json` (+ `prompt.md`) into `agent.yaml`.

    Does nothing when `agent.yaml` already exists or there is no JSON config.
    The JSON file is kept as `agent.json.bak`. Returns True if a migration ran.
    """
    yaml_path = agent_dir / AGENT_YAML
    json_path = agent_dir / AGENT_JSON
    if yaml_path.exists() or not json_path.exists():
        return False

    try:
        raw = json.loads(json_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.error(f"❌ Invalid JSON in {json_path}: {e}")
        raise AgentConfigError(f"Invalid JSON in {json_path}: {e}") from e

    prompt_path = agent_dir / LEGACY_PROMPT_FILE
    if prompt_path.exists() and not raw.get("systemPrompt"):
        raw["systemPrompt"] = prompt_path.read_text(encoding="utf-8")

    try:
        config = AgentConfig.model_validate(raw)
    except ValidationError as e:
        logger.error(f"❌ Legacy config at {json_path} does not match the schema: {e}")
        raise AgentConfigError(f"Cannot migrate {json_path}: {e}") from e

    save_config(config, yaml_path)
    json_path.rename(json_path.with_name(AGENT_JSON + ".bak"))
    logger.info(f"✅ Migrated {json_path} to {yaml_path}")
    return True

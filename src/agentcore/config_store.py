"""Single mutation and persistence point for an agent's configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal, Optional

from src.agentcore.yaml_config import AgentConfig, save_config
from src.utils.logger import get_logger

ConfigSection = Literal["metadata", "settings", "system_prompt", "rules", "references", "providers", "mcp_servers"]


@dataclass(frozen=True)
class ConfigChange:
    """Payload delivered to observers after a persisted config change."""
    section: ConfigSection
    config: AgentConfig


ConfigObserver = Callable[[ConfigChange], None]


class ConfigStore:
    """
    Owns the agent config. Sub-managers read through get_config() and mutate
    only through update_config(), which applies the mutator to a copy,
    persists it, and only then swaps it in and notifies observers.
    """

    def __init__(self, config: AgentConfig, path: Optional[Path] = None, read_only: bool = False):
        self._config = config
        self.path = path
        self.read_only = read_only
        self._observers: dict[str, list[ConfigObserver]] = {}
        self.logger = get_logger("ConfigStore")

    def get_config(self) -> AgentConfig:
        """Current committed config. Treat as read-only; mutate via update_config()."""
        return self._config

    def update_config(self, mutator: Callable[[AgentConfig], None], section: ConfigSection) -> AgentConfig:
        """Apply `mutator` to a copy of the config, persist it, then commit.

        If persistence fails the exception propagates and the committed config
        is unchanged. Read-only stores and stores without a path skip the write.
        """
        candidate = self._config.model_copy(deep=True)
        mutator(candidate)
        if self.path is not None and not self.read_only:
            save_config(candidate, self.path)
            self.logger.debug(f"Persisted '{section}' change to {self.path}")
        self._config = candidate
        self._notify(ConfigChange(section=section, config=candidate))
        return candidate

    def subscribe(self, section: ConfigSection, observer: ConfigObserver) -> None:
        self._observers.setdefault(section, []).append(observer)

    def unsubscribe(self, section: ConfigSection, observer: ConfigObserver) -> None:
        observers = self._observers.get(section, [])
        if observer in observers:
            observers.remove(observer)

    def _notify(self, change: ConfigChange) -> None:
        for observer in list(self._observers.get(change.section, [])):
            try:
                observer(change)
            except Exception as e:
                self.logger.warning(f"⚠️ Config observer for '{change.section}' failed: {e}")

"""Core data models for context selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

ContextItemType = Literal["rule", "reference", "tool"]
IncludeMode = Literal["always", "manual", "agent"]

# (type, name) for rules/references, (type, server, name) for tools
ItemKey = tuple[str, ...]


def item_key(item_type: str, name: str, server_name: Optional[str] = None) -> ItemKey:
    if item_type == "tool":
        return (item_type, server_name or "", name)
    return (item_type, name)


@dataclass(frozen=True)
class ContextItem:
    """A rule, reference or tool tracked by a session, tagged with how it got there."""
    type: ContextItemType
    name: str
    include_mode: IncludeMode
    server_name: Optional[str] = None

    @property
    def key(self) -> ItemKey:
        return item_key(self.type, self.name, self.server_name)


@dataclass(frozen=True)
class RequestContextItem(ContextItem):
    """A context item as used for one model request; agent-selected items carry a score."""
    similarity_score: Optional[float] = None


@dataclass(frozen=True)
class RequestContext:
    """The frozen set of context items used to build one user turn's model requests."""
    items: tuple[RequestContextItem, ...] = ()

    def of_type(self, item_type: ContextItemType) -> list[RequestContextItem]:
        return [item for item in self.items if item.type == item_type]

    @property
    def rules(self) -> list[RequestContextItem]:
        return self.of_type("rule")

    @property
    def references(self) -> list[RequestContextItem]:
        return self.of_type("reference")

    @property
    def tools(self) -> list[RequestContextItem]:
        return self.of_type("tool")

    def contains(self, key: ItemKey) -> bool:
        return any(item.key == key for item in self.items)


@dataclass
class SelectionCandidate:
    """An agent-mode item offered to the selector, with the text it is indexed by."""
    item: ContextItem
    text: str

    @property
    def key(self) -> ItemKey:
        return self.item.key


@dataclass
class SelectionConfig:
    """Selection thresholds with the agent-level defaults."""
    top_k: int = 20
    top_n: int = 5
    include_score: float = 0.7


@dataclass
class ScoredItem:
    """A candidate with its best chunk similarity."""
    key: ItemKey
    item: ContextItem
    score: float


@dataclass
class SelectionResult:
    """Selected items plus the cache keys whose embeddings were computed during selection."""
    items: list[RequestContextItem] = field(default_factory=list)
    computed_keys: list[ItemKey] = field(default_factory=list)

"""Rules and references libraries stored in the agent config."""

from __future__ import annotations

import re
from typing import Generic, Optional, Type, TypeVar

from src.agentcore.config_store import ConfigObserver, ConfigStore
from src.agentcore.errors import ContextItemError
from src.agentcore.yaml_config import AgentConfig, ContextDocument, Reference, Rule
from src.utils.logger import get_logger

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

DocT = TypeVar("DocT", bound=ContextDocument)


def validate_document_name(name: str) -> None:
    if not name or not NAME_PATTERN.match(name):
        raise ContextItemError(
            f"Invalid name '{name}': only letters, digits, underscores and hyphens are allowed"
        )


class ContextLibrary(Generic[DocT]):
    """
    CRUD over one list of documents (rules or references) in the agent config.

    Every write goes through ConfigStore.update_config, so observers registered
    with on_change() only fire after the change was persisted.
    """

    section: str = ""
    document_type: Type[DocT]

    def __init__(self, store: ConfigStore):
        self.store = store
        self.logger = get_logger(type(self).__name__)

    def _documents(self, config: AgentConfig) -> list[DocT]:
        return getattr(config, self.section)

    def get_all(self) -> list[DocT]:
        """Documents ordered by priority level, then name."""
        return sorted(self._documents(self.store.get_config()), key=lambda d: (d.priority_level, d.name))

    def get(self, name: str) -> Optional[DocT]:
        for document in self._documents(self.store.get_config()):
            if document.name == name:
                return document
        return None

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def save(self, document: DocT) -> DocT:
        """Create or replace the document with the same name."""
        validate_document_name(document.name)

        def mutate(config: AgentConfig) -> None:
            documents = self._documents(config)
            for index, existing in enumerate(documents):
                if existing.name == document.name:
                    documents[index] = document
                    return
            documents.append(document)

        self.store.update_config(mutate, self.section)
        self.logger.info(f"✅ Saved {self.document_type.__name__.lower()} '{document.name}'")
        return document

    def delete(self, name: str) -> bool:
        validate_document_name(name)
        if not self.exists(name):
            return False

        def mutate(config: AgentConfig) -> None:
            setattr(config, self.section, [d for d in self._documents(config) if d.name != name])

        self.store.update_config(mutate, self.section)
        self.logger.info(f"🗑️ Deleted {self.document_type.__name__.lower()} '{name}'")
        return True

    def store_embeddings(self, name: str, embeddings: list[list[float]], content_hash: str) -> None:
        """Persist computed embeddings on a document."""

        def mutate(config: AgentConfig) -> None:
            for document in self._documents(config):
                if document.name == name:
                    document.embeddings = embeddings
                    document.hash = content_hash

        self.store.update_config(mutate, self.section)

    def on_change(self, observer: ConfigObserver) -> None:
        self.store.subscribe(self.section, observer)


class RulesLibrary(ContextLibrary[Rule]):
    section = "rules"
    document_type = Rule


class ReferencesLibrary(ContextLibrary[Reference]):
    section = "references"
    document_type = Reference



"""In-memory embedding cache keyed by context item, validated by content hash."""

from __future__ import annotations

from typing import Optional

from src.agentcore.selection.chunking import compute_text_hash
from src.agentcore.selection.models import ItemKey
from src.agentcore.yaml_config import EmbeddingCacheEntry
from src.utils.logger import get_logger

logger = get_logger("EmbeddingCache")


class EmbeddingCache:
    """
    Holds chunk embeddings per context item.

    An entry is only served while its hash equals the hash of the text it is
    looked up with; a mismatching entry is evicted on lookup.
    """

    def __init__(self) -> None:
        self._entries: dict[ItemKey, EmbeddingCacheEntry] = {}

    def get(self, key: ItemKey, text: str) -> Optional[list[list[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.hash != compute_text_hash(text):
            logger.debug(f"Evicting stale embeddings for {':'.join(key)}")
            del self._entries[key]
            return None
        return entry.embeddings

    def get_entry(self, key: ItemKey) -> Optional[EmbeddingCacheEntry]:
        return self._entries.get(key)

    def put(self, key: ItemKey, text: str, embeddings: list[list[float]]) -> EmbeddingCacheEntry:
        entry = EmbeddingCacheEntry(embeddings=embeddings, hash=compute_text_hash(text))
        self._entries[key] = entry
        return entry

    def seed(self, key: ItemKey, entry: EmbeddingCacheEntry) -> None:
        """Load a persisted entry. Validation happens on the next get()."""
        self._entries[key] = entry

    def invalidate(self, key: ItemKey) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_server(self, server_name: str) -> int:
        """Drop every tool entry owned by a server. Returns the number removed."""
        doomed = [k for k in self._entries if k[0] == "tool" and k[1] == server_name]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def retain(self, item_type: str, names: set[str]) -> int:
        """Drop rule/reference entries of `item_type` whose name is not in `names`."""
        doomed = [k for k in self._entries if k[0] == item_type and k[1] not in names]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def __contains__(self, key: ItemKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

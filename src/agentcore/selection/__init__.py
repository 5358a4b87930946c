"""Semantic context selection: chunking, embedding cache and relevance ranking."""

from .cache import EmbeddingCache
from .chunking import compute_text_hash, document_index_text, tool_index_text
from .embedder import Embedder, SentenceTransformerEmbedder
from .models import (
    ContextItem,
    RequestContext,
    RequestContextItem,
    SelectionCandidate,
    SelectionConfig,
    SelectionResult,
    item_key,
)
from .ranker import RelevanceRanker
from .selector import SemanticSelector

__all__ = [
    "ContextItem",
    "Embedder",
    "EmbeddingCache",
    "RelevanceRanker",
    "RequestContext",
    "RequestContextItem",
    "SelectionCandidate",
    "SelectionConfig",
    "SelectionResult",
    "SemanticSelector",
    "SentenceTransformerEmbedder",
    "compute_text_hash",
    "document_index_text",
    "item_key",
    "tool_index_text",
]

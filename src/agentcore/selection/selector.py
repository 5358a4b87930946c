"""Semantic selection of agent-mode context items for a query."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from src.agentcore.errors import EmbedderError
from src.utils.logger import get_logger

from .cache import EmbeddingCache
from .chunking import chunk_context_text, chunk_query_text
from .embedder import Embedder
from .models import (
    ContextItem,
    RequestContextItem,
    SelectionCandidate,
    SelectionConfig,
    SelectionResult,
)
from .ranker import RelevanceRanker

logger = get_logger("SemanticSelector")


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class SemanticSelector:
    """
    Ranks candidates against a query by cosine similarity of chunk embeddings.

    Embeddings come from the shared EmbeddingCache when its hash still matches
    the candidate text, and are computed (and cached) otherwise. No lock is
    held while the embedder runs.
    """

    def __init__(
        self,
        embedder: Embedder,
        cache: EmbeddingCache,
        ranker: Optional[RelevanceRanker] = None,
    ):
        self.embedder = embedder
        self.cache = cache
        self.ranker = ranker or RelevanceRanker()

    async def embed_candidate(self, candidate: SelectionCandidate) -> list[list[float]]:
        """Compute, cache and return chunk embeddings for one candidate."""
        chunks = chunk_context_text(candidate.text)
        vectors = await self.embedder.embed_batch(chunks)
        self.cache.put(candidate.key, candidate.text, vectors)
        return vectors

    async def select(
        self,
        query: str,
        candidates: Sequence[SelectionCandidate],
        config: SelectionConfig,
    ) -> SelectionResult:
        result = SelectionResult()
        if not candidates:
            return result

        query_chunks = chunk_query_text(query)
        if not query_chunks:
            return result

        indexed: list[tuple[SelectionCandidate, list[list[float]]]] = []
        for candidate in candidates:
            vectors = self.cache.get(candidate.key, candidate.text)
            if vectors is None:
                try:
                    vectors = await self.embed_candidate(candidate)
                except EmbedderError as e:
                    logger.error(f"❌ Failed to embed {':'.join(candidate.key)}: {e}")
                    continue
                result.computed_keys.append(candidate.key)
            if vectors:
                indexed.append((candidate, vectors))

        if not indexed:
            return result

        try:
            query_vectors = await self.embedder.embed_batch(query_chunks)
        except EmbedderError as e:
            logger.error(f"❌ Failed to embed query: {e}")
            return result
        query_matrix = _normalize_rows(np.asarray(query_vectors, dtype=float))

        chunk_scores: list[tuple[ContextItem, float]] = []
        for candidate, vectors in indexed:
            matrix = np.asarray(vectors, dtype=float)
            if matrix.ndim != 2 or matrix.shape[1] != query_matrix.shape[1]:
                # Persisted by a different embedding model
                logger.warning(f"⚠️ Embedding dimension mismatch for {':'.join(candidate.key)}, recomputing")
                try:
                    matrix = np.asarray(await self.embed_candidate(candidate), dtype=float)
                except EmbedderError as e:
                    logger.error(f"❌ Failed to embed {':'.join(candidate.key)}: {e}")
                    continue
                if candidate.key not in result.computed_keys:
                    result.computed_keys.append(candidate.key)
            # M query chunks x N item chunks; each item chunk keeps its best query match
            scores = (query_matrix @ _normalize_rows(matrix).T).max(axis=0)
            chunk_scores.extend((candidate.item, float(score)) for score in scores)

        selected = self.ranker.rank(chunk_scores, config)
        result.items = [
            RequestContextItem(
                type=scored.item.type,
                name=scored.item.name,
                include_mode="agent",
                server_name=scored.item.server_name,
                similarity_score=scored.score,
            )
            for scored in selected
        ]
        above = sum(1 for item in result.items if item.similarity_score >= config.include_score)
        logger.debug(
            f"Selected {len(result.items)} of {len(candidates)} candidates "
            f"({above} above threshold {config.include_score})"
        )
        return result

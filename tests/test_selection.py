"""Tests for chunking, ranking, the embedding cache and the semantic selector."""

import pytest
from unittest.mock import MagicMock

from src.agentcore.errors import EmbedderError
from src.agentcore.selection.cache import EmbeddingCache
from src.agentcore.selection.chunking import (
    MAX_CHUNK_SIZE,
    chunk_context_text,
    chunk_query_text,
    compute_text_hash,
    document_index_text,
    tool_index_text,
)
from src.agentcore.selection.embedder import SentenceTransformerEmbedder
from src.agentcore.selection.models import ContextItem, RequestContext, RequestContextItem, SelectionCandidate, SelectionConfig, item_key
from src.agentcore.selection.ranker import RelevanceRanker
from src.agentcore.selection.selector import SemanticSelector
from tests.utils import BagOfWordsEmbedder


def _rule(name: str) -> ContextItem:
    return ContextItem("rule", name, "agent")


def _candidate(name: str, text: str) -> SelectionCandidate:
    return SelectionCandidate(item=_rule(name), text=text)


class TestChunking:
    def test_index_text_formats(self):
        assert document_index_text("greet", "Greeting policy", "Say hi.") == "greet: Greeting policy\n\nSay hi."
        assert document_index_text("greet", "", "Say hi.") == "greet\n\nSay hi."
        assert tool_index_text("search", "Search the web") == "search: Search the web"
        assert tool_index_text("search", None) == "search"

    def test_hash_is_stable_sha256(self):
        assert compute_text_hash("abc") == compute_text_hash("abc")
        assert len(compute_text_hash("abc")) == 64
        assert compute_text_hash("abc") != compute_text_hash("abd")

    def test_query_split_by_sentence(self):
        assert chunk_query_text("Find the file. Then open it!  ") == ["Find the file", "Then open it"]

    def test_short_paragraphs_are_chunks(self):
        assert chunk_context_text("First para.\n\nSecond para.") == ["First para.", "Second para."]

    def test_long_paragraph_is_packed_by_sentence(self):
        sentence = "word " * 40  # ~200 chars
        text = ". ".join(sentence.strip() for _ in range(6)) + "."
        chunks = chunk_context_text(text)
        assert len(chunks) > 1
        assert all(len(chunk) <= MAX_CHUNK_SIZE for chunk in chunks)

    def test_oversized_sentence_is_its_own_chunk(self):
        long_sentence = "x" * (MAX_CHUNK_SIZE + 50)
        chunks = chunk_context_text(f"Short one. {long_sentence}. Tail.")
        assert long_sentence in [c.rstrip(".") for c in chunks]

    def test_never_empty(self):
        assert chunk_context_text("   ") == ["   "]


class TestRelevanceRanker:
    def setup_method(self):
        self.ranker = RelevanceRanker()

    def test_items_above_threshold_always_included(self):
        scores = [(_rule(f"r{i}"), 0.9 - i * 0.01) for i in range(8)]
        ranked = self.ranker.rank(scores, SelectionConfig(top_k=20, top_n=2, include_score=0.5))
        assert len(ranked) == 8

    def test_tops_up_to_top_n_below_threshold(self):
        scores = [(_rule("high"), 0.9), (_rule("mid"), 0.4), (_rule("low"), 0.2)]
        ranked = self.ranker.rank(scores, SelectionConfig(top_k=20, top_n=2, include_score=0.7))
        assert [s.item.name for s in ranked] == ["high", "mid"]

    def test_multi_chunk_item_counted_once_with_best_score(self):
        scores = [(_rule("a"), 0.3), (_rule("a"), 0.8), (_rule("b"), 0.5)]
        ranked = self.ranker.rank(scores, SelectionConfig(top_k=20, top_n=5, include_score=0.9))
        assert [(s.item.name, s.score) for s in ranked] == [("a", 0.8), ("b", 0.5)]

    def test_only_top_k_chunks_considered(self):
        scores = [(_rule("a"), 0.9), (_rule("b"), 0.8), (_rule("c"), 0.7)]
        ranked = self.ranker.rank(scores, SelectionConfig(top_k=2, top_n=5, include_score=1.0))
        assert {s.item.name for s in ranked} == {"a", "b"}

    def test_non_positive_scores_dropped(self):
        ranked = self.ranker.rank([(_rule("a"), 0.0), (_rule("b"), -0.3)], SelectionConfig())
        assert ranked == []


class TestEmbeddingCache:
    def test_hit_requires_matching_hash(self):
        cache = EmbeddingCache()
        key = item_key("rule", "r1")
        cache.put(key, "text", [[1.0]])
        assert cache.get(key, "text") == [[1.0]]
        assert cache.get(key, "changed text") is None
        assert key not in cache

    def test_invalidate_server_drops_only_that_servers_tools(self):
        cache = EmbeddingCache()
        cache.put(item_key("tool", "ls", "files"), "ls", [[1.0]])
        cache.put(item_key("tool", "get", "web"), "get", [[1.0]])
        cache.put(item_key("rule", "files"), "r", [[1.0]])
        assert cache.invalidate_server("files") == 1
        assert len(cache) == 2

    def test_retain_drops_deleted_documents(self):
        cache = EmbeddingCache()
        cache.put(item_key("rule", "keep"), "k", [[1.0]])
        cache.put(item_key("rule", "gone"), "g", [[1.0]])
        cache.put(item_key("reference", "gone"), "g", [[1.0]])
        assert cache.retain("rule", {"keep"}) == 1
        assert item_key("rule", "keep") in cache
        assert item_key("reference", "gone") in cache


class TestRequestContext:
    def test_partitions_by_type(self):
        ctx = RequestContext(items=(
            RequestContextItem("rule", "r", "manual"),
            RequestContextItem("reference", "f", "agent", similarity_score=0.8),
            RequestContextItem("tool", "ls", "always", "files"),
        ))
        assert [i.name for i in ctx.rules] == ["r"]
        assert [i.name for i in ctx.references] == ["f"]
        assert ctx.contains(item_key("tool", "ls", "files"))
        assert not ctx.contains(item_key("tool", "ls", "other"))


class TestSemanticSelector:
    def setup_method(self):
        self.embedder = BagOfWordsEmbedder()
        self.cache = EmbeddingCache()
        self.selector = SemanticSelector(self.embedder, self.cache)
        self.candidates = [
            _candidate("weather", "weather: forecast rain sun temperature"),
            _candidate("cooking", "cooking: recipe pasta sauce oven"),
        ]

    @pytest.mark.asyncio
    async def test_selects_most_similar_item(self):
        result = await self.selector.select(
            "what is the weather forecast", self.candidates, SelectionConfig(top_n=1, include_score=1.0)
        )
        assert [item.name for item in result.items] == ["weather"]
        assert result.items[0].include_mode == "agent"
        assert 0 < result.items[0].similarity_score <= 1.0

    @pytest.mark.asyncio
    async def test_computed_keys_then_cache_hits(self):
        first = await self.selector.select("rain", self.candidates, SelectionConfig())
        assert set(first.computed_keys) == {c.key for c in self.candidates}

        embedded_before = len(self.embedder.embedded_texts)
        second = await self.selector.select("rain", self.candidates, SelectionConfig())
        assert second.computed_keys == []
        # Only the query was embedded the second time
        assert len(self.embedder.embedded_texts) == embedded_before + 1

    @pytest.mark.asyncio
    async def test_stale_cache_entry_recomputed(self):
        self.cache.put(self.candidates[0].key, "old text", [[0.0] * 512])
        result = await self.selector.select("rain", self.candidates, SelectionConfig())
        assert self.candidates[0].key in result.computed_keys

    @pytest.mark.asyncio
    async def test_dimension_mismatch_recomputed(self):
        candidate = self.candidates[0]
        self.cache.put(candidate.key, candidate.text, [[1.0, 0.0, 0.0]])
        result = await self.selector.select("rain forecast", [candidate], SelectionConfig())
        assert candidate.key in result.computed_keys
        assert [item.name for item in result.items] == ["weather"]

    @pytest.mark.asyncio
    async def test_empty_query_or_candidates(self):
        assert (await self.selector.select("   ", self.candidates, SelectionConfig())).items == []
        assert (await self.selector.select("rain", [], SelectionConfig())).items == []

    @pytest.mark.asyncio
    async def test_embedder_failure_skips_candidate(self):
        class FlakyEmbedder(BagOfWordsEmbedder):
            async def embed_batch(self, texts):
                if any("cooking" in t for t in texts):
                    raise EmbedderError("model unavailable")
                return await super().embed_batch(texts)

        selector = SemanticSelector(FlakyEmbedder(), EmbeddingCache())
        result = await selector.select("recipe rain", self.candidates, SelectionConfig(include_score=0.0))
        assert [item.name for item in result.items] == ["weather"]

    @pytest.mark.asyncio
    async def test_query_embedding_failure_selects_nothing(self):
        class QueryFailingEmbedder(BagOfWordsEmbedder):
            async def embed_batch(self, texts):
                if texts == ["recipe rain"]:
                    raise EmbedderError("model unavailable")
                return await super().embed_batch(texts)

        selector = SemanticSelector(QueryFailingEmbedder(), EmbeddingCache())
        result = await selector.select("recipe rain", self.candidates, SelectionConfig(include_score=0.0))
        assert result.items == []
        # Candidate embeddings computed before the failure are still reported
        assert set(result.computed_keys) == {c.key for c in self.candidates}


class TestSentenceTransformerEmbedder:
    @pytest.mark.asyncio
    async def test_encode_failure_raised_as_embedder_error(self):
        embedder = SentenceTransformerEmbedder()
        embedder._model = MagicMock()
        embedder._model.encode.side_effect = RuntimeError("CUDA out of memory")
        try:
            with pytest.raises(EmbedderError, match="CUDA out of memory"):
                await embedder.embed_batch(["hello"])
        finally:
            embedder.close()

    @pytest.mark.asyncio
    async def test_empty_batch_skips_model(self):
        embedder = SentenceTransformerEmbedder()
        try:
            assert await embedder.embed_batch([]) == []
            assert embedder._model is None
        finally:
            embedder.close()

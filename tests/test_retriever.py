"""Tests for knowledge retrieval, the similarity gate and context packing."""

import pytest

from btrix_bot.retrieval.retriever import CHUNK_SEPARATOR, KnowledgeRetriever, build_context, format_chunk
from btrix_bot.schemas.knowledge_schema import ScoredChunk
from btrix_bot.tools.knowledge_base import InMemoryVectorBackend, cosine_similarity
from tests.conftest import (
    PRICING_VECTOR,
    SUPPORT_VECTOR,
    UNRELATED_VECTOR,
    FakeLLM,
    default_chunks,
    make_chunk,
    retrieval_config,
)


def scored(chunk_id: str, content: str, similarity: float = 0.9) -> ScoredChunk:
    return ScoredChunk(chunk=make_chunk(chunk_id, content, PRICING_VECTOR), similarity=similarity)


class FailingBackend:
    async def nearest(self, embedding, k, tag_filter=None):
        raise ConnectionError("vector store offline")


class TestBuildContext:
    def test_packs_in_rank_order(self):
        items = [scored("a", "first"), scored("b", "second")]
        used, context = build_context(items, 10_000)
        assert [item.chunk.id for item in used] == ["a", "b"]
        assert context == format_chunk(items[0].chunk) + CHUNK_SEPARATOR + format_chunk(items[1].chunk)

    def test_separator_counts_towards_budget(self):
        items = [scored("a", "x" * 20), scored("b", "y" * 20)]
        one = len(format_chunk(items[0].chunk))
        two = len(format_chunk(items[1].chunk))
        used, _ = build_context(items, one + two)
        assert len(used) == 1
        used, context = build_context(items, one + two + len(CHUNK_SEPARATOR))
        assert len(used) == 2
        assert len(context) == one + two + len(CHUNK_SEPARATOR)

    def test_stops_at_first_chunk_that_does_not_fit(self):
        items = [scored("a", "short"), scored("b", "z" * 500), scored("c", "tiny")]
        used, _ = build_context(items, 200)
        assert [item.chunk.id for item in used] == ["a"]

    def test_chunks_are_never_cut(self):
        used, context = build_context([scored("a", "w" * 100)], 50)
        assert used == []
        assert context == ""

    def test_format_chunk_header(self):
        chunk = make_chunk("a", "body", PRICING_VECTOR, source="faq.md", title="Limits")
        assert format_chunk(chunk) == "[Source: faq.md - Limits]\nbody\n"


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity(PRICING_VECTOR, SUPPORT_VECTOR) == 0.0

    def test_mismatched_lengths(self):
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0

    def test_negative_is_clamped(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_above_threshold_returns_context(self, retriever, metrics):
        result = await retriever.retrieve("What is the price of the Pro pack?", session_id="s1")
        assert result.below_threshold is False
        assert result.top_similarity == pytest.approx(1.0)
        assert "€2,200" in result.context
        assert result.sources == {"pricing.md"}
        assert result.intent_tags == {"pricing", "packs"}
        assert result.total_chars == len(result.context)
        [record] = metrics.requests
        assert record.chunk_ids == ["packs"]
        assert record.session_id == "s1"

    @pytest.mark.asyncio
    async def test_below_threshold_returns_no_context(self, backend, metrics):
        retriever = KnowledgeRetriever(
            FakeLLM(embedding=UNRELATED_VECTOR), backend, metrics=metrics, config=retrieval_config()
        )
        result = await retriever.retrieve("Do you do payroll?")
        assert result.below_threshold is True
        assert result.context == ""
        assert result.chunks_used == []
        assert metrics.fallback_count == 1
        assert metrics.fallback_rate == 100.0

    @pytest.mark.asyncio
    async def test_threshold_is_strict(self, backend, metrics):
        retriever = KnowledgeRetriever(
            FakeLLM(embedding=PRICING_VECTOR), backend, metrics=metrics,
            config=retrieval_config(similarity_threshold=1.0),
        )
        result = await retriever.retrieve("price")
        assert result.top_similarity == pytest.approx(1.0)
        assert result.below_threshold is False

    @pytest.mark.asyncio
    async def test_empty_knowledge_base(self, metrics):
        retriever = KnowledgeRetriever(
            FakeLLM(), InMemoryVectorBackend(), metrics=metrics, config=retrieval_config()
        )
        result = await retriever.retrieve("price")
        assert result.top_similarity == 0.0
        assert result.below_threshold is True

    @pytest.mark.asyncio
    async def test_tag_filter_restricts_candidates(self, backend, metrics):
        # The query embeds close to the support chunk but asks about pricing.
        retriever = KnowledgeRetriever(
            FakeLLM(embedding=SUPPORT_VECTOR), backend, metrics=metrics, config=retrieval_config()
        )
        result = await retriever.retrieve("what does setup cost?")
        assert result.below_threshold is True
        assert result.top_similarity == 0.0

    @pytest.mark.asyncio
    async def test_falls_back_to_unfiltered_search(self, metrics):
        backend = InMemoryVectorBackend([make_chunk("hours", "Open 9-18", SUPPORT_VECTOR)])
        retriever = KnowledgeRetriever(
            FakeLLM(embedding=SUPPORT_VECTOR), backend, metrics=metrics, config=retrieval_config()
        )
        result = await retriever.retrieve("what is the price?")
        assert result.below_threshold is False
        assert [item.chunk.id for item in result.chunks_used] == ["hours"]

    @pytest.mark.asyncio
    async def test_top_k_limits_chunks(self, metrics):
        chunks = [make_chunk(f"c{i}", f"chunk {i}", PRICING_VECTOR) for i in range(5)]
        retriever = KnowledgeRetriever(
            FakeLLM(), InMemoryVectorBackend(chunks), metrics=metrics, config=retrieval_config()
        )
        result = await retriever.retrieve("anything", top_k=2)
        assert len(result.chunks_used) == 2

    @pytest.mark.asyncio
    async def test_context_budget_override(self, retriever):
        result = await retriever.retrieve("price", max_context_chars=10)
        assert result.below_threshold is False
        assert result.context == ""
        assert result.chunks_used == []

    @pytest.mark.asyncio
    async def test_embedding_error_is_contained(self, backend, metrics):
        retriever = KnowledgeRetriever(
            FakeLLM(fail_embed=True), backend, metrics=metrics, config=retrieval_config()
        )
        result = await retriever.retrieve("price")
        assert result.error is not None
        assert "embedding service down" in result.error
        assert result.context == ""
        assert metrics.total_requests == 0

    @pytest.mark.asyncio
    async def test_backend_error_is_contained(self, metrics):
        retriever = KnowledgeRetriever(
            FakeLLM(), FailingBackend(), metrics=metrics, config=retrieval_config()
        )
        result = await retriever.retrieve("price")
        assert result.error.startswith("ConnectionError")
        assert len(metrics.requests) == 0

    @pytest.mark.asyncio
    async def test_similarity_recorded_per_intent(self, retriever, metrics):
        await retriever.retrieve("pricing for the pro pack")
        summary = metrics.get_metrics()
        assert summary["avg_similarity_by_intent"]["pricing"] == 100.0
        assert summary["avg_similarity_by_intent"]["packs"] == 100.0


class TestInMemoryBackend:
    def test_rejects_chunk_without_embedding(self):
        backend = InMemoryVectorBackend()
        with pytest.raises(ValueError):
            backend.add(make_chunk("a", "x", []))

    @pytest.mark.asyncio
    async def test_nearest_sorted_and_limited(self):
        backend = InMemoryVectorBackend(default_chunks())
        results = await backend.nearest([0.9, 0.1, 0.0], k=1)
        assert [r.chunk.id for r in results] == ["packs"]

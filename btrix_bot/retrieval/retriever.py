"""
Knowledge retrieval with an anti-hallucination similarity gate.

Steps per query:
1. Classify intent families by keyword.
2. Embed the query.
3. Fetch the top-K nearest chunks, filtered by the intent tags.
4. If the best similarity is below the threshold, return an empty context
   flagged ``below_threshold`` so the caller asks a clarifying question
   instead of letting the model guess.
5. Otherwise pack whole chunks into the character budget.

Backend and embedding failures never propagate: they produce an empty
result with ``error`` set.
"""

import logging
import time
from typing import Optional

from btrix_bot.config import RetrievalConfig, settings
from btrix_bot.evaluation.metrics import MetricsCollector, RAGRequestRecord, log_rag_request
from btrix_bot.retrieval.intent import classify_intent
from btrix_bot.schemas.knowledge_schema import KnowledgeChunk, RetrievalResult, ScoredChunk
from btrix_bot.tools.knowledge_base import VectorBackend
from btrix_bot.tools.llm import LLMProvider
from btrix_bot.utils import truncate

logger = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n---\n\n"


class RetrievalError(Exception):
    """Raised when embedding or the vector backend fails."""


def format_chunk(chunk: KnowledgeChunk) -> str:
    return f"[Source: {chunk.source} - {chunk.title or 'Untitled'}]\n{chunk.content}\n"


def build_context(
    scored: list[ScoredChunk], max_chars: int
) -> tuple[list[ScoredChunk], str]:
    """
    Greedily pack whole chunks, in rank order, into ``max_chars``.

    Separators count towards the budget. Packing stops at the first chunk
    that would not fit; chunks are never cut.

    Returns:
        The chunks used and the assembled context string.
    """
    used: list[ScoredChunk] = []
    parts: list[str] = []
    total = 0
    for item in scored:
        text = format_chunk(item.chunk)
        cost = len(text) + (len(CHUNK_SEPARATOR) if parts else 0)
        if total + cost > max_chars:
            logger.info(
                "Context limit reached: %d chunks, %d/%d chars", len(used), total, max_chars
            )
            break
        parts.append(text)
        used.append(item)
        total += cost
    return used, CHUNK_SEPARATOR.join(parts)


class KnowledgeRetriever:
    """Embeds queries, searches the knowledge base and assembles bounded context."""

    def __init__(
        self,
        llm: LLMProvider,
        backend: VectorBackend,
        metrics: Optional[MetricsCollector] = None,
        config: Optional[RetrievalConfig] = None,
    ) -> None:
        self.llm = llm
        self.backend = backend
        self.metrics = metrics
        self.config = config or settings.retrieval

    async def _search(self, query: str, intents: list[str], k: int) -> list[ScoredChunk]:
        try:
            embedding = await self.llm.embed(query)
            tag_filter = set(intents) or None
            scored = await self.backend.nearest(embedding, k, tag_filter)
            if not scored and tag_filter:
                logger.info("No chunks tagged %s, searching without filter", sorted(tag_filter))
                scored = await self.backend.nearest(embedding, k, None)
        except Exception as e:
            raise RetrievalError(f"{type(e).__name__}: {e}") from e
        return sorted(scored, key=lambda s: s.similarity, reverse=True)[:k]

    async def retrieve(
        self,
        query: str,
        *,
        top_k: Optional[int] = None,
        max_context_chars: Optional[int] = None,
        language: str = "en",
        session_id: Optional[str] = None,
    ) -> RetrievalResult:
        """
        Retrieve context for a query.

        Args:
            query: The user's question.
            top_k: Chunks to fetch (defaults to RAG_TOP_K).
            max_context_chars: Context budget (defaults to RAG_MAX_CONTEXT_CHARS).
            language: Reply language, recorded for the learning loop.
            session_id: Recorded with the request for tracing.

        Returns:
            RetrievalResult. Never raises.
        """
        start = time.perf_counter()
        k = top_k or self.config.top_k
        budget = max_context_chars or self.config.max_context_chars
        intents = classify_intent(query)

        try:
            scored = await self._search(query, intents, k)
        except RetrievalError as e:
            logger.error("RAG_ERROR query=%r intents=%s: %s", truncate(query, 200), intents, e)
            return RetrievalResult(intent_tags=set(intents), error=str(e))

        top_similarity = scored[0].similarity if scored else 0.0
        below_threshold = top_similarity < self.config.similarity_threshold

        if below_threshold:
            result = RetrievalResult(
                top_similarity=top_similarity,
                below_threshold=True,
                intent_tags=set(intents),
            )
        else:
            used, context = build_context(scored, budget)
            result = RetrievalResult(
                top_similarity=top_similarity,
                below_threshold=False,
                chunks_used=used,
                context=context,
                total_chars=len(context),
                sources={item.chunk.source for item in used},
                intent_tags=set(intents),
            )

        elapsed_ms = (time.perf_counter() - start) * 1000
        record = RAGRequestRecord(
            query=query,
            language=language,
            intent_tags=intents,
            top_similarity=top_similarity,
            below_threshold=below_threshold,
            chunk_ids=[item.chunk.id for item in result.chunks_used],
            retrieval_time_ms=elapsed_ms,
            total_time_ms=elapsed_ms,
            session_id=session_id,
        )
        log_rag_request(record)
        if self.metrics is not None:
            self.metrics.record_request(record)
        return result

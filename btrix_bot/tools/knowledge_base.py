"""Vector knowledge backends returning chunks nearest to a query embedding."""

import asyncio
import logging
import math
from typing import Any, Iterable, Optional, Protocol

from supabase import Client, create_client

from btrix_bot.config import RetrievalConfig, settings
from btrix_bot.schemas.knowledge_schema import KnowledgeChunk, ScoredChunk

logger = logging.getLogger(__name__)


class VectorBackend(Protocol):
    async def nearest(
        self,
        embedding: list[float],
        k: int,
        tag_filter: Optional[set[str]] = None,
    ) -> list[ScoredChunk]: ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors, clamped to [0, 1]."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return max(0.0, min(1.0, dot / norm))


class InMemoryVectorBackend:
    """Brute-force cosine search over chunks held in memory."""

    def __init__(self, chunks: Optional[Iterable[KnowledgeChunk]] = None) -> None:
        self._chunks: dict[str, KnowledgeChunk] = {}
        for chunk in chunks or []:
            self.add(chunk)

    def add(self, chunk: KnowledgeChunk) -> None:
        if not chunk.embedding:
            raise ValueError(f"Chunk {chunk.id} has no embedding")
        self._chunks[chunk.id] = chunk

    def __len__(self) -> int:
        return len(self._chunks)

    async def nearest(
        self,
        embedding: list[float],
        k: int,
        tag_filter: Optional[set[str]] = None,
    ) -> list[ScoredChunk]:
        candidates = [
            c for c in self._chunks.values()
            if not tag_filter or c.tags & tag_filter
        ]
        scored = [
            ScoredChunk(chunk=c, similarity=cosine_similarity(embedding, c.embedding))
            for c in candidates
        ]
        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored[:k]


class SupabaseVectorBackend:
    """Nearest-neighbour search through the ``match_knowledge_chunks`` RPC."""

    RPC_NAME = "match_knowledge_chunks"

    def __init__(
        self,
        config: Optional[RetrievalConfig] = None,
        client: Optional[Client] = None,
    ) -> None:
        self.config = config or settings.retrieval
        if client is None:
            if not self.config.supabase_url or not self.config.supabase_service_key:
                raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
            client = create_client(self.config.supabase_url, self.config.supabase_service_key)
        self.client = client

    def _match(
        self, embedding: list[float], k: int, tag_filter: Optional[set[str]]
    ) -> list[dict[str, Any]]:
        response = self.client.rpc(self.RPC_NAME, {
            "p_brain_id": self.config.brain_id,
            "p_query_embedding": embedding,
            "p_match_count": k,
            "p_tags": sorted(tag_filter) if tag_filter else None,
        }).execute()
        return response.data or []

    @staticmethod
    def _to_scored(row: dict[str, Any]) -> ScoredChunk:
        metadata = row.get("metadata") or {}
        chunk = KnowledgeChunk(
            id=str(row.get("id", "")),
            source=row.get("source") or "unknown",
            title=row.get("title") or row.get("section"),
            content=row.get("content") or "",
            tags=frozenset(row.get("tags") or []),
            token_count=int(metadata.get("token_count", 0) or 0),
        )
        return ScoredChunk(chunk=chunk, similarity=float(row.get("similarity") or 0.0))

    async def nearest(
        self,
        embedding: list[float],
        k: int,
        tag_filter: Optional[set[str]] = None,
    ) -> list[ScoredChunk]:
        # supabase-py is synchronous; keep it off the event loop.
        rows = await asyncio.to_thread(self._match, embedding, k, tag_filter)
        logger.info("Chunks retrieved: %d (brain=%s, k=%d)", len(rows), self.config.brain_id, k)
        scored = [self._to_scored(row) for row in rows]
        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored

"""Knowledge base chunks and retrieval results."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class KnowledgeChunk(BaseModel):
    """A unit of retrievable content, immutable once indexed."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: str
    title: Optional[str] = None
    content: str
    embedding: list[float] = Field(default_factory=list)
    tags: frozenset[str] = Field(default_factory=frozenset)
    token_count: int = 0


class ScoredChunk(BaseModel):
    """A chunk returned by a vector backend with its similarity to the query."""

    chunk: KnowledgeChunk
    similarity: float


class RetrievalResult(BaseModel):
    """Outcome of one retrieval call. Never persisted."""

    top_similarity: float = 0.0
    below_threshold: bool = False
    chunks_used: list[ScoredChunk] = Field(default_factory=list)
    context: str = ""
    total_chars: int = 0
    sources: set[str] = Field(default_factory=set)
    intent_tags: set[str] = Field(default_factory=set)
    error: Optional[str] = None

    @property
    def has_context(self) -> bool:
        return bool(self.context)

"""Shared test fixtures and in-memory collaborators."""

from typing import Any, Optional

import pytest

from btrix_bot.config import BookingConfig, LanguageConfig, RetrievalConfig
from btrix_bot.conversation.guardrails import PriceGuardrail
from btrix_bot.conversation.orchestrator import DialogueOrchestrator
from btrix_bot.conversation.state_machine import ConversationStateMachine
from btrix_bot.evaluation.metrics import MetricsCollector
from btrix_bot.retrieval.retriever import KnowledgeRetriever
from btrix_bot.schemas.knowledge_schema import KnowledgeChunk
from btrix_bot.session.store import InMemorySessionStore
from btrix_bot.tools.knowledge_base import InMemoryVectorBackend
from btrix_bot.tools.llm import Completion

PRICING_VECTOR = [1.0, 0.0, 0.0]
SUPPORT_VECTOR = [0.0, 1.0, 0.0]
UNRELATED_VECTOR = [0.0, 0.0, 1.0]


class FakeLLM:
    """Returns a fixed embedding and a fixed draft reply."""

    def __init__(
        self,
        reply: str = "BTRIX works on WhatsApp and website chat.",
        embedding: Optional[list[float]] = None,
        fail_embed: bool = False,
        fail_complete: bool = False,
    ) -> None:
        self.reply = reply
        self.embedding = embedding or list(PRICING_VECTOR)
        self.fail_embed = fail_embed
        self.fail_complete = fail_complete
        self.embedded: list[str] = []
        self.prompts: list[str] = []
        self.messages: list[list[dict[str, str]]] = []

    async def embed(self, text: str) -> list[float]:
        self.embedded.append(text)
        if self.fail_embed:
            raise RuntimeError("embedding service down")
        return list(self.embedding)

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Completion:
        self.prompts.append(system_prompt)
        self.messages.append(messages)
        if self.fail_complete:
            raise RuntimeError("model unavailable")
        return Completion(text=self.reply)


class RecordingNotifier:
    """Keeps every notification instead of sending it."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [event for event, _ in self.events]


def make_chunk(
    chunk_id: str,
    content: str,
    embedding: list[float],
    tags: tuple[str, ...] = (),
    source: str = "kb.md",
    title: Optional[str] = None,
) -> KnowledgeChunk:
    return KnowledgeChunk(
        id=chunk_id,
        source=source,
        title=title or chunk_id,
        content=content,
        embedding=embedding,
        tags=frozenset(tags),
    )


def default_chunks() -> list[KnowledgeChunk]:
    return [
        make_chunk(
            "packs",
            "Essential is €1,400 setup + €300/month. Pro is €2,200 setup + €550/month.",
            PRICING_VECTOR,
            tags=("pricing", "packs"),
            source="pricing.md",
        ),
        make_chunk(
            "support-hours",
            "AI support runs 24/7. Humans answer during business hours.",
            SUPPORT_VECTOR,
            tags=("support",),
            source="support.md",
        ),
    ]


def retrieval_config(**overrides: Any) -> RetrievalConfig:
    values: dict[str, Any] = {
        "top_k": 8,
        "similarity_threshold": 0.55,
        "max_context_chars": 12000,
        "brain_id": "test-brain",
    }
    values.update(overrides)
    return RetrievalConfig(**values)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def state_machine(metrics):
    return ConversationStateMachine(history_limit=20, metrics=metrics)


@pytest.fixture
def guardrail(metrics):
    return PriceGuardrail(metrics=metrics)


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def backend():
    return InMemoryVectorBackend(default_chunks())


@pytest.fixture
def retriever(llm, backend, metrics):
    return KnowledgeRetriever(llm, backend, metrics=metrics, config=retrieval_config())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def booking_config():
    return BookingConfig(booking_link="https://cal.example/btrix", default_timezone="UTC")


@pytest.fixture
def language_config():
    return LanguageConfig(mode="allowed", default_language="en", allowed_languages=("en", "pt-BR", "es"))


@pytest.fixture
def orchestrator(store, retriever, llm, guardrail, notifier, metrics, state_machine,
                 language_config, booking_config):
    return DialogueOrchestrator(
        store=store,
        retriever=retriever,
        llm=llm,
        guardrail=guardrail,
        notifier=notifier,
        metrics=metrics,
        state_machine=state_machine,
        language_config=language_config,
        booking_config=booking_config,
    )

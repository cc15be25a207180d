"""
Runtime observability for retrieval, guardrail and state-machine events.

The MetricsCollector is constructed explicitly and injected into the
components that record events. It keeps bounded in-memory windows:
the last 20 fallback queries, the last 100 similarity scores per intent
and the last 1000 latencies. It can be exported to and restored from a
JSON snapshot for the learning-loop report.
"""

import json
import logging
import math
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from btrix_bot.utils import truncate

logger = logging.getLogger(__name__)

MAX_FALLBACK_QUERIES = 20
MAX_SIMILARITIES_PER_INTENT = 100
MAX_LATENCIES = 1000
MAX_REQUEST_RECORDS = 5000


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RAGRequestRecord:
    """One retrieval request, as seen by the learning loop."""
    query: str
    language: str = "en"
    intent_tags: list[str] = field(default_factory=list)
    top_similarity: float = 0.0
    below_threshold: bool = False
    chunk_ids: list[str] = field(default_factory=list)
    retrieval_time_ms: Optional[float] = None
    total_time_ms: Optional[float] = None
    session_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)


def log_rag_request(record: RAGRequestRecord) -> None:
    """Structured RAG_REQUEST log line, plus RAG_FALLBACK when below threshold."""
    logger.info(
        "RAG_REQUEST query=%r language=%s intents=%s top_similarity=%.4f "
        "below_threshold=%s chunks=%d retrieval_ms=%s",
        truncate(record.query, 200), record.language, record.intent_tags,
        record.top_similarity, record.below_threshold, len(record.chunk_ids),
        None if record.retrieval_time_ms is None else round(record.retrieval_time_ms),
    )
    if record.below_threshold:
        logger.warning(
            "RAG_FALLBACK query=%r intents=%s top_similarity=%.4f language=%s",
            truncate(record.query, 200), record.intent_tags,
            record.top_similarity, record.language,
        )


class MetricsCollector:
    """Aggregates retrieval, guardrail and adjacency events in memory."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Drop everything recorded so far."""
        self.total_requests = 0
        self.fallback_count = 0
        self.fallback_queries: deque[dict[str, Any]] = deque(maxlen=MAX_FALLBACK_QUERIES)
        self.similarity_by_intent: dict[str, deque[float]] = {}
        self.latencies: deque[float] = deque(maxlen=MAX_LATENCIES)
        self.requests: deque[RAGRequestRecord] = deque(maxlen=MAX_REQUEST_RECORDS)
        self.guardrail_violations: list[dict[str, Any]] = []
        self.adjacency_violations: dict[str, int] = {}

    # --- Recording ---

    def record_request(self, record: RAGRequestRecord) -> None:
        self.total_requests += 1
        self.requests.append(record)

        if record.below_threshold:
            self.fallback_count += 1
            self.fallback_queries.append({
                "query": truncate(record.query, 100),
                "intent_tags": list(record.intent_tags),
                "top_similarity": record.top_similarity,
                "timestamp": record.timestamp,
            })

        for intent in record.intent_tags:
            window = self.similarity_by_intent.setdefault(
                intent, deque(maxlen=MAX_SIMILARITIES_PER_INTENT)
            )
            window.append(record.top_similarity)

        if record.total_time_ms is not None:
            self.latencies.append(record.total_time_ms)

    def record_guardrail_violation(self, record: dict[str, Any]) -> None:
        self.guardrail_violations.append(dict(record))

    def record_adjacency_violation(self, from_state: str, to_state: str) -> None:
        key = f"{from_state}->{to_state}"
        self.adjacency_violations[key] = self.adjacency_violations.get(key, 0) + 1

    # --- Reading ---

    @property
    def fallback_rate(self) -> float:
        """Percentage of requests that fell below the similarity threshold."""
        if not self.total_requests:
            return 0.0
        return round(self.fallback_count / self.total_requests * 100, 2)

    @staticmethod
    def get_percentile(values: list[float], percentile: float) -> float:
        """Nearest-rank percentile; 0 for an empty list."""
        if not values:
            return 0.0
        ordered = sorted(values)
        index = max(math.ceil(percentile / 100 * len(ordered)) - 1, 0)
        return float(round(ordered[index]))

    def get_metrics(self) -> dict[str, Any]:
        latencies = list(self.latencies)
        avg_similarity = {
            intent: round(sum(values) / len(values) * 100, 2)
            for intent, values in self.similarity_by_intent.items()
            if values
        }
        return {
            "total_requests": self.total_requests,
            "fallback_count": self.fallback_count,
            "fallback_rate": self.fallback_rate,
            "avg_similarity_by_intent": avg_similarity,
            "top_fallback_queries": list(reversed(self.fallback_queries)),
            "avg_latency_ms": round(sum(latencies) / len(latencies)) if latencies else 0,
            "p95_latency_ms": self.get_percentile(latencies, 95),
            "p99_latency_ms": self.get_percentile(latencies, 99),
            "guardrail_violations": len(self.guardrail_violations),
            "adjacency_violations": dict(self.adjacency_violations),
        }

    # --- Snapshots ---

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "generated_at": _now_iso(),
            "total_requests": self.total_requests,
            "fallback_count": self.fallback_count,
            "fallback_queries": list(self.fallback_queries),
            "similarity_by_intent": {k: list(v) for k, v in self.similarity_by_intent.items()},
            "latencies": list(self.latencies),
            "requests": [asdict(r) for r in self.requests],
            "guardrail_violations": list(self.guardrail_violations),
            "adjacency_violations": dict(self.adjacency_violations),
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "MetricsCollector":
        collector = cls()
        collector.total_requests = int(data.get("total_requests", 0))
        collector.fallback_count = int(data.get("fallback_count", 0))
        collector.fallback_queries.extend(data.get("fallback_queries", []))
        for intent, values in data.get("similarity_by_intent", {}).items():
            collector.similarity_by_intent[intent] = deque(values, maxlen=MAX_SIMILARITIES_PER_INTENT)
        collector.latencies.extend(data.get("latencies", []))
        collector.requests.extend(RAGRequestRecord(**r) for r in data.get("requests", []))
        collector.guardrail_violations.extend(data.get("guardrail_violations", []))
        collector.adjacency_violations.update(data.get("adjacency_violations", {}))
        return collector

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.write_text(json.dumps(self.to_snapshot(), indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Metrics snapshot written to %s", path)
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "MetricsCollector":
        with open(path, encoding="utf-8") as f:
            return cls.from_snapshot(json.load(f))

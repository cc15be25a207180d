"""
Learning loop over collected retrieval and guardrail metrics.

Turns a MetricsCollector (live or restored from a snapshot) into a report
that points at knowledge-base gaps: intents that keep falling back,
recurring unanswered questions, weak similarity and blocked prices.
"""

import logging
import re
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from btrix_bot.evaluation.metrics import MetricsCollector, RAGRequestRecord
from btrix_bot.utils import truncate

logger = logging.getLogger(__name__)

MIN_GROUP_SIZE = 3
MIN_KEYWORD_LENGTH = 4
MIN_KEYWORD_FREQUENCY = 2
MAX_KEYWORDS = 5
MAX_SAMPLE_QUERIES = 5

WEAK_SIMILARITY = 0.60
HIGH_FALLBACK_RATE = 30.0
MIN_REQUESTS_FOR_GAP = 5
RECURRING_PATTERN_SIZE = 5

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

_WORD_RE = re.compile(r"[^\W\d_]+", re.UNICODE)


@dataclass
class FallbackGroup:
    intent: str
    count: int
    common_keywords: list[str]
    sample_queries: list[str] = field(default_factory=list)


@dataclass
class IntentSimilarity:
    intent: str
    requests: int
    avg_similarity: float
    weak_queries: list[str] = field(default_factory=list)


@dataclass
class KnowledgeGap:
    """A likely hole in the knowledge base, with a suggested fix."""
    type: str  # "high_fallback_rate", "recurring_pattern", "low_similarity"
    intent: str
    severity: str
    evidence: str
    recommendation: str


def _primary_intent(record: RAGRequestRecord) -> str:
    return record.intent_tags[0] if record.intent_tags else "unknown"


def extract_keywords(queries: list[str]) -> list[str]:
    """Most frequent words longer than three letters seen at least twice."""
    counts = Counter(
        word
        for query in queries
        for word in _WORD_RE.findall(query.lower())
        if len(word) >= MIN_KEYWORD_LENGTH
    )
    return [
        word for word, n in counts.most_common()
        if n >= MIN_KEYWORD_FREQUENCY
    ][:MAX_KEYWORDS]


class LearningLoop:
    """Analyses one MetricsCollector. Read-only."""

    def __init__(self, metrics: MetricsCollector) -> None:
        self.metrics = metrics

    @property
    def _requests(self) -> list[RAGRequestRecord]:
        return [r for r in self.metrics.requests if r.error is None]

    def analyze_fallbacks(self) -> list[FallbackGroup]:
        """Group below-threshold queries by primary intent (groups of 3 or more)."""
        grouped: dict[str, list[str]] = defaultdict(list)
        for record in self._requests:
            if record.below_threshold:
                grouped[_primary_intent(record)].append(record.query)

        groups = [
            FallbackGroup(
                intent=intent,
                count=len(queries),
                common_keywords=extract_keywords(queries),
                sample_queries=[truncate(q, 100) for q in queries[-MAX_SAMPLE_QUERIES:]],
            )
            for intent, queries in grouped.items()
            if len(queries) >= MIN_GROUP_SIZE
        ]
        return sorted(groups, key=lambda g: -g.count)

    def analyze_similarity_by_intent(self) -> list[IntentSimilarity]:
        scores: dict[str, list[RAGRequestRecord]] = defaultdict(list)
        for record in self._requests:
            for intent in record.intent_tags or ["unknown"]:
                scores[intent].append(record)

        results = []
        for intent, records in scores.items():
            avg = sum(r.top_similarity for r in records) / len(records)
            weak = [truncate(r.query, 100) for r in records if r.top_similarity < WEAK_SIMILARITY]
            results.append(IntentSimilarity(
                intent=intent,
                requests=len(records),
                avg_similarity=round(avg, 4),
                weak_queries=weak[-MAX_SAMPLE_QUERIES:],
            ))
        return sorted(results, key=lambda s: s.avg_similarity)

    def identify_kb_gaps(self) -> list[KnowledgeGap]:
        gaps: list[KnowledgeGap] = []

        per_intent: dict[str, list[RAGRequestRecord]] = defaultdict(list)
        for record in self._requests:
            per_intent[_primary_intent(record)].append(record)

        for intent, records in per_intent.items():
            if len(records) < MIN_REQUESTS_FOR_GAP:
                continue
            fallbacks = sum(1 for r in records if r.below_threshold)
            rate = fallbacks / len(records) * 100
            if rate > HIGH_FALLBACK_RATE:
                gaps.append(KnowledgeGap(
                    type="high_fallback_rate",
                    intent=intent,
                    severity="high",
                    evidence=f"{rate:.1f}% fallback rate over {len(records)} requests",
                    recommendation=f"Add or expand knowledge chunks tagged '{intent}'",
                ))

        for group in self.analyze_fallbacks():
            if group.count >= RECURRING_PATTERN_SIZE:
                keywords = ", ".join(group.common_keywords) or "no common keywords"
                gaps.append(KnowledgeGap(
                    type="recurring_pattern",
                    intent=group.intent,
                    severity="medium",
                    evidence=f"{group.count} unanswered queries ({keywords})",
                    recommendation="Write a chunk that answers these questions directly",
                ))

        for similarity in self.analyze_similarity_by_intent():
            if similarity.requests >= MIN_REQUESTS_FOR_GAP and similarity.avg_similarity < WEAK_SIMILARITY:
                gaps.append(KnowledgeGap(
                    type="low_similarity",
                    intent=similarity.intent,
                    severity="medium",
                    evidence=(
                        f"average similarity {similarity.avg_similarity:.2f} "
                        f"over {similarity.requests} requests"
                    ),
                    recommendation="Rephrase existing chunks closer to how users ask",
                ))

        return sorted(gaps, key=lambda g: SEVERITY_ORDER.get(g.severity, len(SEVERITY_ORDER)))

    def analyze_violations(self) -> dict[str, Any]:
        """Guardrail violations grouped by rule, with the prices involved."""
        by_rule: dict[str, dict[str, Any]] = {}
        for violation in self.metrics.guardrail_violations:
            rules = str(violation.get("rule_violated") or "unknown").split(",")
            for rule in rules:
                entry = by_rule.setdefault(rule, {"count": 0, "invalid_prices": Counter()})
                entry["count"] += 1
                entry["invalid_prices"].update(violation.get("invalid_prices") or [])

        return {
            "total": len(self.metrics.guardrail_violations),
            "by_rule": {
                rule: {
                    "count": entry["count"],
                    "invalid_prices": [p for p, _ in entry["invalid_prices"].most_common(MAX_KEYWORDS)],
                }
                for rule, entry in sorted(by_rule.items(), key=lambda item: -item[1]["count"])
            },
        }

    def generate_report(self) -> dict[str, Any]:
        gaps = self.identify_kb_gaps()
        logger.info("Learning report generated: %d gap(s)", len(gaps))
        return {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "summary": self.metrics.get_metrics(),
            "fallbacks": [asdict(g) for g in self.analyze_fallbacks()],
            "similarity_by_intent": [asdict(s) for s in self.analyze_similarity_by_intent()],
            "kb_gaps": [asdict(g) for g in gaps],
            "violations": self.analyze_violations(),
        }


def format_report(report: dict[str, Any]) -> str:
    """Render a learning report as plain text."""
    summary = report["summary"]
    lines = [
        "=" * 60,
        "KNOWLEDGE LEARNING REPORT",
        "=" * 60,
        "",
        "RETRIEVAL",
        f"  Total requests:         {summary['total_requests']}",
        f"  Fallbacks:              {summary['fallback_count']}  ({summary['fallback_rate']:.1f}%)",
        f"  Avg latency:            {summary['avg_latency_ms']}ms",
        f"  p95 / p99 latency:      {summary['p95_latency_ms']:.0f}ms / {summary['p99_latency_ms']:.0f}ms",
        "",
        "SIMILARITY BY INTENT",
    ]
    if report["similarity_by_intent"]:
        for item in report["similarity_by_intent"]:
            lines.append(
                f"  {item['intent']:<22}  {item['avg_similarity']:.2f}  "
                f"({item['requests']} request(s), {len(item['weak_queries'])} weak)"
            )
    else:
        lines.append("  No retrieval requests recorded.")

    lines.extend(["", "FALLBACK GROUPS"])
    if report["fallbacks"]:
        for group in report["fallbacks"]:
            keywords = ", ".join(group["common_keywords"]) or "-"
            lines.append(f"  {group['intent']}: {group['count']} query(ies), keywords: {keywords}")
            for query in group["sample_queries"]:
                lines.append(f"    - {query}")
    else:
        lines.append("  None.")

    lines.extend(["", "KNOWLEDGE BASE GAPS"])
    if report["kb_gaps"]:
        for i, gap in enumerate(report["kb_gaps"], 1):
            lines.extend([
                f"  [{i}] {gap['type']} / {gap['intent']} ({gap['severity'].upper()})",
                f"      Evidence: {gap['evidence']}",
                f"      Fix:      {gap['recommendation']}",
            ])
    else:
        lines.append("  No gaps detected.")

    violations = report["violations"]
    lines.extend(["", "PRICE GUARDRAIL", f"  Violations:             {violations['total']}"])
    for rule, entry in violations["by_rule"].items():
        prices = ", ".join(entry["invalid_prices"]) or "-"
        lines.append(f"    {rule}: {entry['count']} (prices: {prices})")

    adjacency = summary.get("adjacency_violations") or {}
    if adjacency:
        lines.extend(["", "UNDECLARED TRANSITIONS"])
        for key, count in sorted(adjacency.items(), key=lambda item: -item[1]):
            lines.append(f"  {key}: {count}")

    lines.append("=" * 60)
    return "\n".join(lines)

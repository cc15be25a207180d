"""
Post-generation price guardrail.

Every model-generated reply is checked before it reaches the user:
1. Detect price mentions (currency-prefixed or suffixed numbers, "N euros",
   "N per month", "price/cost/fee ... N").
2. A price whose surrounding text hedges or computes ("around", "total",
   "would be", unofficial plan names) is invalid whatever its value.
3. Otherwise the price must literally contain one of the accepted display
   forms from the official price list. Derived values (sums, roundings,
   discounts) are never in that list and so never pass.

Any invalid price fails the whole reply. Internal errors fail closed.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from btrix_bot.evaluation.metrics import MetricsCollector
from btrix_bot.tools.pricing import get_accepted_display_forms
from btrix_bot.utils import truncate

logger = logging.getLogger(__name__)

# A whole number, optionally thousands-grouped. Never starts or ends mid-number.
NUMBER = r"(?<![\d,])\d+(?:,\d{3})*(?!\d)"

PRICE_PATTERNS: list[re.Pattern] = [
    re.compile(rf"€\s*{NUMBER}"),
    re.compile(rf"{NUMBER}\s*€"),
    re.compile(rf"{NUMBER}\s*euros?\b", re.IGNORECASE),
    re.compile(rf"{NUMBER}\s*(?:per month|/month|monthly)", re.IGNORECASE),
    re.compile(rf"(?:setup|fee|cost|price)[^.!?\n]*?{NUMBER}", re.IGNORECASE),
]

HEDGE_RULES: list[tuple[str, re.Pattern]] = [
    ("approximation", re.compile(r"\b(?:approximately|around|about|roughly|estimated?)\b", re.IGNORECASE)),
    ("calculation", re.compile(r"\b(?:together|total|combined|sum)\b", re.IGNORECASE)),
    ("speculation", re.compile(r"\b(?:would be|could be|might be)\b", re.IGNORECASE)),
    ("unofficial_plan", re.compile(r"\b(?:starter|basic|beginner)\b", re.IGNORECASE)),
]

NOT_IN_PRICE_LIST = "not_in_price_list"
CONTEXT_WINDOW = 50

REASON_NO_PRICES = "No prices detected"
REASON_ALL_VALID = "All prices valid"
REASON_INVALID = "Invalid prices detected"
REASON_ERROR = "guardrail_error"

FALLBACK_MESSAGES = {
    "en": (
        "I want to make sure I give you accurate pricing information. Let me connect you "
        "with BTRIX to confirm the exact costs for your specific needs. "
        "Would you like to schedule a demo?"
    ),
    "pt-BR": (
        "Quero garantir que te passe informações precisas sobre preços. Deixe-me conectar "
        "você com a BTRIX para confirmar os custos exatos para suas necessidades "
        "específicas. Gostaria de agendar uma demo?"
    ),
    "es": (
        "Quiero asegurarme de darte información precisa sobre precios. Déjame conectarte "
        "con BTRIX para confirmar los costos exactos para tus necesidades específicas. "
        "¿Te gustaría agendar una demo?"
    ),
}


def _normalize(value: str) -> str:
    return re.sub(r"\s+", "", value).lower()


@dataclass
class PriceViolation:
    price: str
    rule: str


@dataclass
class PriceCheckResult:
    """Outcome of a price guardrail check."""
    passed: bool
    detected_prices: list[str] = field(default_factory=list)
    invalid_prices: list[str] = field(default_factory=list)
    reason: str = REASON_NO_PRICES
    violations: list[PriceViolation] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def rules_violated(self) -> list[str]:
        return sorted({v.rule for v in self.violations})


class PriceGuardrail:
    """Validates price mentions in a draft reply against the official price list."""

    def __init__(
        self,
        accepted_forms: Optional[frozenset[str]] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        forms = accepted_forms if accepted_forms is not None else get_accepted_display_forms()
        normalized = sorted({_normalize(f) for f in forms if f.strip()}, key=len, reverse=True)
        self.accepted_forms = frozenset(normalized)
        self.metrics = metrics
        self._accepted_pattern = re.compile(
            r"(?<![\d,])(?:" + "|".join(re.escape(f) for f in normalized) + r")(?![\d,]*\d)"
        ) if normalized else None

    def detect_prices(self, text: str) -> dict[str, list[tuple[int, int]]]:
        """Map each distinct detected price string to every span where it occurs."""
        detected: dict[str, list[tuple[int, int]]] = {}
        for pattern in PRICE_PATTERNS:
            for match in pattern.finditer(text):
                detected.setdefault(match.group(0), []).append(match.span())
        return detected

    def hedge_rule(self, text: str, spans: list[tuple[int, int]]) -> Optional[str]:
        """Name of the first hedge rule found within 50 chars of any occurrence."""
        for start, end in spans:
            window = text[max(0, start - CONTEXT_WINDOW):end + CONTEXT_WINDOW]
            for rule, pattern in HEDGE_RULES:
                if pattern.search(window):
                    return rule
        return None

    def is_official(self, price: str) -> bool:
        """True if the price literally contains an accepted display form."""
        if self._accepted_pattern is None:
            return False
        return bool(self._accepted_pattern.search(_normalize(price)))

    def check(self, text: str) -> PriceCheckResult:
        """
        Check a draft reply.

        Returns:
            PriceCheckResult with ``passed`` False if any detected price is
            hedged or not an official display form, or if the check itself
            failed.
        """
        try:
            detected = self.detect_prices(text or "")
            if not detected:
                return PriceCheckResult(passed=True, reason=REASON_NO_PRICES)

            violations: list[PriceViolation] = []
            for price, spans in detected.items():
                rule = self.hedge_rule(text, spans)
                if rule is None and not self.is_official(price):
                    rule = NOT_IN_PRICE_LIST
                if rule is not None:
                    violations.append(PriceViolation(price=price, rule=rule))

            detected_prices = list(detected)
            if not violations:
                logger.info("Price guardrail passed: %s", detected_prices)
                return PriceCheckResult(
                    passed=True, detected_prices=detected_prices, reason=REASON_ALL_VALID
                )

            invalid = [v.price for v in violations]
            logger.warning(
                "Price guardrail failed: invalid=%s detected=%s preview=%r",
                invalid, detected_prices, truncate(text, 200),
            )
            return PriceCheckResult(
                passed=False,
                detected_prices=detected_prices,
                invalid_prices=invalid,
                reason=REASON_INVALID,
                violations=violations,
            )
        except Exception as e:
            logger.error("Price guardrail error, blocking reply: %s", e)
            return PriceCheckResult(passed=False, reason=REASON_ERROR, error=str(e))

    def enforce(
        self,
        draft: str,
        language: str = "en",
        query: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> tuple[str, PriceCheckResult]:
        """Return the draft if it passes, else the fixed fallback. Never regenerates."""
        result = self.check(draft)
        if result.passed:
            return draft, result
        self.log_violation(result, draft, query=query, session_id=session_id)
        return get_fallback_message(language), result

    def log_violation(
        self,
        result: PriceCheckResult,
        draft: str,
        query: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        record = {
            "event": "PRICE_GUARDRAIL_VIOLATION",
            "severity": "CRITICAL",
            "query": truncate(query, 200),
            "response_blocked": truncate(draft, 500),
            "detected_prices": result.detected_prices,
            "invalid_prices": result.invalid_prices,
            "rule_violated": ",".join(result.rules_violated) or result.reason,
            "session_id": session_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": "response discarded, fallback forced",
        }
        logger.warning("PRICE_GUARDRAIL_VIOLATION %s", record)
        if self.metrics is not None:
            self.metrics.record_guardrail_violation(record)


def get_fallback_message(language: str = "en") -> str:
    return FALLBACK_MESSAGES.get(language, FALLBACK_MESSAGES["en"])

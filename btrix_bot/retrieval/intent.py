"""Keyword intent classification for knowledge retrieval.

A query may match zero, one or several families. The matched families
are used as a tag filter on the vector search and as the grouping key of
the learning-loop report.
"""

import re

INTENT_KEYWORDS: dict[str, list[str]] = {
    "pricing": [
        "price", "pricing", "cost", "costs", "fee", "setup", "monthly", "euro", "euros",
        "plan", "plans", "preço", "preços", "precio", "precios", "cuesta", "quanto",
    ],
    "agents": [
        "agent", "agents", "sales agent", "marketing agent", "finance agent",
        "inventory agent", "social media", "design agent", "video agent",
        "agente", "agentes",
    ],
    "support": [
        "support", "help", "issue", "problem", "error", "broken", "not working",
        "suporte", "ajuda", "soporte", "ayuda",
    ],
    "limits": [
        "limit", "limits", "leads per day", "leads/day", "volume", "capacity",
        "how many", "quota", "limite", "límite",
    ],
    "enterprise": [
        "enterprise", "erp", "custom", "integration", "integrations", "franchise",
        "dedicated", "sla",
    ],
    "roadmap": [
        "roadmap", "coming soon", "future", "upcoming", "planned", "release", "new feature",
    ],
    "packs": [
        "pack", "packs", "bundle", "bundles", "essential", "pro", "package", "pacote", "paquete",
    ],
}

_PATTERNS: dict[str, re.Pattern] = {
    intent: re.compile(
        "|".join(rf"(?<!\w){re.escape(keyword)}(?!\w)" for keyword in keywords),
        re.IGNORECASE,
    )
    for intent, keywords in INTENT_KEYWORDS.items()
}


def classify_intent(query: str) -> list[str]:
    """Return every intent family whose keywords appear in the query, in table order.

    Examples:
        >>> classify_intent("How much does the Pro pack cost per month?")
        ['pricing', 'packs']
        >>> classify_intent("hello")
        []
    """
    if not query:
        return []
    return [intent for intent, pattern in _PATTERNS.items() if pattern.search(query)]

"""Authoritative BTRIX price list, plan and agent catalog.

This is the single source of truth for every price the bot may state.
Scripted plan and agent texts are built from it, and the price guardrail
only accepts amounts whose display forms are listed here.
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

CURRENCY_SYMBOL = "€"


@dataclass(frozen=True)
class PriceFact:
    """One official price entry and the literal strings allowed to express it."""
    key: str
    label: str
    kind: str  # "pack" | "agent" | "bundle"
    setup_amount: Optional[int] = None
    monthly_amount: Optional[int] = None
    savings_amount: Optional[int] = None
    currency_symbol: str = CURRENCY_SYMBOL
    is_minimum: bool = False
    accepted_display_forms: frozenset[str] = frozenset()


def display_forms(amount: int, currency: str = CURRENCY_SYMBOL, minimum: bool = False) -> set[str]:
    """Every literal way an amount may be written, e.g. €1,400 / €1400 / 1400€ / 1,400.

    Examples:
        >>> sorted(display_forms(300))
        ['300', '300€', '€ 300', '€300']
    """
    grouped = f"{amount:,}"
    plain = str(amount)
    forms = set()
    for number in {grouped, plain}:
        forms.update({
            f"{currency}{number}",
            f"{currency} {number}",
            f"{number}{currency}",
            number,
        })
    if minimum:
        forms.update({f"{currency}{grouped}+", f"{grouped}+"})
    return forms


def _fact(
    key: str,
    label: str,
    kind: str,
    setup: Optional[int] = None,
    monthly: Optional[int] = None,
    savings: Optional[int] = None,
    minimum: bool = False,
) -> PriceFact:
    forms: set[str] = set()
    for amount in (setup, monthly, savings):
        if amount is not None:
            forms |= display_forms(amount, minimum=minimum and amount != savings)
    return PriceFact(
        key=key,
        label=label,
        kind=kind,
        setup_amount=setup,
        monthly_amount=monthly,
        savings_amount=savings,
        is_minimum=minimum,
        accepted_display_forms=frozenset(forms),
    )


PRICE_FACTS: dict[str, PriceFact] = {
    fact.key: fact
    for fact in (
        # Packs
        _fact("essential", "BTRIX Essential", "pack", setup=1400, monthly=300),
        _fact("pro", "BTRIX Pro", "pack", setup=2200, monthly=550),
        _fact("enterprise", "BTRIX Enterprise", "pack", setup=3500, monthly=900, minimum=True),
        # Agents (add-ons, require an active pack)
        _fact("sales", "Sales Agent", "agent", monthly=200),
        _fact("marketing", "Marketing Agent", "agent", monthly=200),
        _fact("finance", "Finance Agent", "agent", monthly=180),
        _fact("inventory", "Inventory Agent", "agent", monthly=180),
        _fact("social_media", "Social Media Agent", "agent", monthly=180),
        _fact("design", "Design Agent", "agent", monthly=180),
        _fact("video", "Video Agent", "agent", monthly=250),
        # Pack + all agents bundles
        _fact("essential_agents", "Essential + Agents bundle", "bundle", monthly=430, savings=250),
        _fact("pro_agents", "Pro + Agents bundle", "bundle", monthly=790, savings=520),
        _fact("enterprise_agents", "Enterprise + Agents bundle", "bundle", monthly=1350, savings=640),
    )
}


PLAN_CATALOG: dict[str, dict] = {
    "Essential": {
        "price_key": "essential",
        "badge": "",
        "best_for": "Small businesses starting automation (10-50 leads/day)",
        "includes": [
            "Basic automation structure",
            "WhatsApp + website chatbot",
            "Lead capture and CRM",
            "24/7 AI support",
        ],
    },
    "Pro": {
        "price_key": "pro",
        "badge": "Most Popular",
        "best_for": "Growing companies with higher volume (50-200 leads/day)",
        "includes": [
            "Everything in Essential",
            "Multi-channel automation",
            "Lead scoring and prioritization",
            "Advanced CRM integration",
            "Operational dashboards",
        ],
    },
    "Enterprise": {
        "price_key": "enterprise",
        "badge": "",
        "best_for": "Large companies, franchises, complex operations (200+ leads/day)",
        "includes": [
            "Everything in Pro",
            "Fully customized ecosystem",
            "Multiple AI agents included",
            "Deep integrations (ERP, custom APIs)",
            "Dedicated success manager",
        ],
    },
}

AGENT_CATALOG: dict[str, dict] = {
    "Sales": {
        "price_key": "sales",
        "does": ["Lead qualification", "Pipeline management", "Follow-up automation", "Sales forecasting"],
    },
    "Marketing": {
        "price_key": "marketing",
        "does": ["Campaign optimization", "Analytics and reporting", "A/B testing", "Performance tracking"],
    },
    "Finance": {
        "price_key": "finance",
        "does": ["Cash flow tracking", "Expense monitoring", "Financial alerts", "Budget management"],
    },
    "Inventory": {
        "price_key": "inventory",
        "does": ["Stock monitoring", "Reorder alerts", "Inventory forecasting", "Supplier management"],
    },
    "Social Media": {
        "price_key": "social_media",
        "does": ["Content planning", "Engagement tracking", "Post scheduling", "Analytics"],
    },
    "Design": {
        "price_key": "design",
        "does": [
            "Static designs (banners, posts, ads)",
            "Brand consistency",
            "Template generation",
            "Quick turnaround",
        ],
    },
    "Video": {
        "price_key": "video",
        "does": ["Short-form videos", "Ads and reels", "Video editing", "Content repurposing"],
    },
}


def format_amount(amount: int, minimum: bool = False) -> str:
    """Render an amount the way the price list publishes it, e.g. €3,500+."""
    return f"{CURRENCY_SYMBOL}{amount:,}{'+' if minimum else ''}"


def get_price_fact(key: str) -> PriceFact:
    """Look up a price fact by key. Raises KeyError for unknown keys."""
    return PRICE_FACTS[key]


def get_accepted_display_forms() -> frozenset[str]:
    """Union of every accepted display form across the whole price list."""
    forms: set[str] = set()
    for fact in PRICE_FACTS.values():
        forms |= fact.accepted_display_forms
    return frozenset(forms)


def get_plan_info(plan: str) -> Optional[dict]:
    """Return catalog info for a plan name with its price fact attached."""
    info = PLAN_CATALOG.get(plan)
    if info is None:
        logger.debug("Unknown plan requested: '%s'", plan)
        return None
    return {**info, "name": plan, "price": PRICE_FACTS[info["price_key"]]}


def get_agent_info(agent: str) -> Optional[dict]:
    """Return catalog info for an agent name with its price fact attached."""
    info = AGENT_CATALOG.get(agent)
    if info is None:
        logger.debug("Unknown agent requested: '%s'", agent)
        return None
    return {**info, "name": agent, "price": PRICE_FACTS[info["price_key"]]}


def get_official_price_summary() -> str:
    """One line per price fact, used in the system prompt."""
    lines = []
    for fact in PRICE_FACTS.values():
        parts = []
        if fact.setup_amount is not None:
            parts.append(f"{format_amount(fact.setup_amount, fact.is_minimum)} setup")
        if fact.monthly_amount is not None:
            parts.append(f"{format_amount(fact.monthly_amount, fact.is_minimum)}/month")
        if fact.savings_amount is not None:
            parts.append(f"saves {format_amount(fact.savings_amount)}/month")
        lines.append(f"- {fact.label}: {', '.join(parts)}")
    return "\n".join(lines)

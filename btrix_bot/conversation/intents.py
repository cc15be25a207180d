"""Keyword detectors for menu choices, booking intent and booking fields.

All detectors work on normalized input (lowercase, alphanumerics and
spaces only) and match keywords at word starts, so "ai" does not fire on
"email" and "book" still fires on "booking".
"""

import re
from typing import Optional

from btrix_bot.schemas.session_schema import State
from btrix_bot.utils import normalize_menu_input

BOOKING_INTENT_PATTERN = re.compile(r"\b(?:book|demo|call|schedul|reschedul|meeting)")
BOOKING_SHORTCUT = "4"

# Order matters: first match wins.
MENU_OPTIONS: list[tuple[State, re.Pattern, str]] = [
    (State.PRICING_SELECT, re.compile(r"\b(?:pric|plan|cost)"), "1"),
    (State.AGENTS_SELECT, re.compile(r"\b(?:agent|ai\b)"), "2"),
    (State.SUPPORT_ISSUE, re.compile(r"\b(?:support|help)"), "3"),
    (State.BOOK_START, BOOKING_INTENT_PATTERN, "4"),
]

BACK_TO_MENU_PATTERN = re.compile(r"\b(?:menu|back)\b")
DETAIL_BOOKING_PATTERN = re.compile(r"\b(?:book|demo)")
ESCALATION_PATTERN = re.compile(r"\b(?:human|person|escalat|ticket)")

PLAN_KEYWORDS: list[tuple[str, str, str]] = [
    ("Essential", "essential", "1"),
    ("Pro", "pro", "2"),
    ("Enterprise", "enterprise", "3"),
]

AGENT_KEYWORDS: list[tuple[str, str, str]] = [
    ("Sales", "sales", "1"),
    ("Marketing", "marketing", "2"),
    ("Finance", "finance", "3"),
    ("Inventory", "inventory", "4"),
    ("Social Media", "social", "5"),
    ("Design", "design", "6"),
    ("Video", "video", "7"),
]

CHANNEL_KEYWORDS: list[tuple[str, str, str]] = [
    ("WhatsApp", r"whatsapp", "1"),
    ("Website Chat", r"website|chat", "2"),
    ("Email", r"email|e mail", "3"),
    ("Instagram/Facebook", r"instagram|facebook", "4"),
]

GOAL_KEYWORDS: list[tuple[str, str, str]] = [
    ("More leads & sales", r"lead|sales", "1"),
    ("Faster support", r"support", "2"),
    ("Bookings & scheduling", r"booking|scheduling", "3"),
    ("Operations automation", r"operations|automation", "4"),
]

TIME_PREFERENCES = ("morning", "afternoon", "evening")


def _starts_with_option(normalized: str, number: str) -> bool:
    return normalized == number or normalized.startswith(number + " ")


def _match_option(text: str, options: list[tuple[str, str, str]]) -> Optional[str]:
    normalized = normalize_menu_input(text)
    if not normalized:
        return None
    for label, keywords, number in options:
        if _starts_with_option(normalized, number):
            return label
    for label, keywords, number in options:
        if re.search(rf"\b(?:{keywords})", normalized):
            return label
    return None


def detect_booking_intent(text: str, allow_shortcut: bool = False) -> bool:
    """True if the message asks to book a demo.

    The bare "4" shortcut only counts when ``allow_shortcut`` is set. The
    caller clears it in numbered choosers, where a digit picks an option.
    """
    normalized = normalize_menu_input(text)
    if allow_shortcut and _starts_with_option(normalized, BOOKING_SHORTCUT):
        return True
    return bool(BOOKING_INTENT_PATTERN.search(normalized))


def match_menu_option(text: str) -> Optional[State]:
    """Map a main-menu reply to the state it selects, or None."""
    normalized = normalize_menu_input(text)
    if not normalized:
        return None
    for state, pattern, number in MENU_OPTIONS:
        if _starts_with_option(normalized, number) or pattern.search(normalized):
            return state
    return None


def wants_menu(text: str) -> bool:
    return bool(BACK_TO_MENU_PATTERN.search(normalize_menu_input(text)))


def wants_booking_from_detail(text: str) -> bool:
    return bool(DETAIL_BOOKING_PATTERN.search(normalize_menu_input(text)))


def wants_human(text: str) -> bool:
    return bool(ESCALATION_PATTERN.search(normalize_menu_input(text)))


def detect_plan_selection(text: str) -> Optional[str]:
    """Return "Essential", "Pro" or "Enterprise" for a name or 1-3."""
    return _match_option(text, PLAN_KEYWORDS)


def detect_agent_selection(text: str) -> Optional[str]:
    """Return the agent label for a name or 1-7."""
    return _match_option(text, AGENT_KEYWORDS)


def detect_channel_selection(text: str) -> str:
    """Return a known channel label, or the stripped free text as given."""
    return _match_option(text, CHANNEL_KEYWORDS) or text.strip()


def detect_goal_selection(text: str) -> str:
    """Return a known goal label, or the stripped free text as given."""
    return _match_option(text, GOAL_KEYWORDS) or text.strip()


def detect_time_preference(text: str) -> Optional[str]:
    normalized = normalize_menu_input(text)
    for preference in TIME_PREFERENCES:
        if re.search(rf"\b{preference}\b", normalized):
            return preference
    return None

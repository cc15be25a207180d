"""Per-session conversation state persisted in the session store."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class State(str, Enum):
    """Every named point in the scripted conversation flow."""
    WELCOME = "WELCOME"
    MENU = "MENU"
    PRICING_SELECT = "PRICING_SELECT"
    PRICING_DETAIL = "PRICING_DETAIL"
    AGENTS_SELECT = "AGENTS_SELECT"
    AGENTS_DETAIL = "AGENTS_DETAIL"
    SUPPORT_ISSUE = "SUPPORT_ISSUE"
    SUPPORT_ESCALATE = "SUPPORT_ESCALATE"
    BOOK_START = "BOOK_START"
    BOOK_NAME = "BOOK_NAME"
    BOOK_EMAIL = "BOOK_EMAIL"
    BOOK_PHONE = "BOOK_PHONE"
    BOOK_COMPANY = "BOOK_COMPANY"
    BOOK_EMPLOYEES = "BOOK_EMPLOYEES"
    BOOK_CHANNEL = "BOOK_CHANNEL"
    BOOK_GOAL = "BOOK_GOAL"
    BOOK_SEND_LINK = "BOOK_SEND_LINK"
    BOOK_AWAIT_CONFIRMATION = "BOOK_AWAIT_CONFIRMATION"
    BOOK_CONFIRMED = "BOOK_CONFIRMED"
    DONE = "DONE"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(BaseModel):
    """One conversation's position in the flow plus the fields collected so far."""

    current: State = State.WELCOME
    data: dict[str, Any] = Field(default_factory=dict)
    history: list[State] = Field(default_factory=list)
    language: str = "en"
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def age_seconds(self) -> float:
        return (_utcnow() - self.created_at).total_seconds()

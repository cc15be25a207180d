"""
Finite state machine for the scripted conversation flow.

Defines the 20 conversation states, the declared adjacency between them
and per-state input validators. Transitions are pure: they take a
SessionState and return a new one, leaving persistence to the caller.

Adjacency is permissive. A jump that is not declared is still applied but
logged at WARNING and counted, unless the caller marks it as a first-class
override (direct booking intent, return to menu).

Usage:
    sm = ConversationStateMachine()
    session = sm.initial_state()
    session = sm.transition(session, State.MENU)
    assert session.current == State.MENU
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from btrix_bot.config import settings
from btrix_bot.conversation.intents import match_menu_option
from btrix_bot.conversation.scripts import invalid_input_message
from btrix_bot.evaluation.metrics import MetricsCollector
from btrix_bot.schemas.session_schema import SessionState, State
from btrix_bot.utils import count_digits

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{8,}$")
MIN_PHONE_DIGITS = 8
MIN_NAME_LENGTH = 2


def is_valid_name(value: str) -> bool:
    return len(value.strip()) >= MIN_NAME_LENGTH


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def is_valid_phone(value: str) -> bool:
    stripped = value.strip()
    return bool(PHONE_PATTERN.match(stripped)) and count_digits(stripped) >= MIN_PHONE_DIGITS


VALIDATORS: dict[str, Callable[[str], bool]] = {
    "name": is_valid_name,
    "email": is_valid_email,
    "phone": is_valid_phone,
}


@dataclass(frozen=True)
class StateConfig:
    """Declared successors and input requirements of one state."""
    next_states: tuple[State, ...]
    requires_input: bool = True
    validation: Optional[str] = None


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None


class InvalidStateError(Exception):
    """Raised when a value is not a member of the known State enum."""


BOOKING_STATES = frozenset({
    State.BOOK_START,
    State.BOOK_NAME,
    State.BOOK_EMAIL,
    State.BOOK_PHONE,
    State.BOOK_COMPANY,
    State.BOOK_EMPLOYEES,
    State.BOOK_CHANNEL,
    State.BOOK_GOAL,
    State.BOOK_SEND_LINK,
    State.BOOK_AWAIT_CONFIRMATION,
    State.BOOK_CONFIRMED,
})

# States whose prompt is a numbered chooser; a bare digit there picks an option.
CHOOSER_STATES = frozenset({State.PRICING_SELECT, State.AGENTS_SELECT})


class ConversationStateMachine:
    """
    Deterministic controller for the scripted flow.

    Holds no per-session data. Every method takes the session it works on,
    so one instance serves all sessions.
    """

    STATE_CONFIG: dict[State, StateConfig] = {
        State.WELCOME: StateConfig((State.MENU,), requires_input=False),
        State.MENU: StateConfig((
            State.PRICING_SELECT, State.AGENTS_SELECT, State.SUPPORT_ISSUE, State.BOOK_START,
        )),

        # --- Pricing ---
        State.PRICING_SELECT: StateConfig((State.PRICING_DETAIL,)),
        State.PRICING_DETAIL: StateConfig((State.BOOK_START, State.MENU, State.DONE)),

        # --- Agents ---
        State.AGENTS_SELECT: StateConfig((State.AGENTS_DETAIL,)),
        State.AGENTS_DETAIL: StateConfig((State.BOOK_START, State.MENU, State.DONE)),

        # --- Support ---
        State.SUPPORT_ISSUE: StateConfig((State.SUPPORT_ESCALATE, State.MENU, State.DONE)),
        State.SUPPORT_ESCALATE: StateConfig((State.DONE,), validation="email"),

        # --- Booking (sequential) ---
        State.BOOK_START: StateConfig((State.BOOK_NAME,)),
        State.BOOK_NAME: StateConfig((State.BOOK_EMAIL,), validation="name"),
        State.BOOK_EMAIL: StateConfig((State.BOOK_PHONE,), validation="email"),
        State.BOOK_PHONE: StateConfig((State.BOOK_COMPANY,), validation="phone"),
        State.BOOK_COMPANY: StateConfig((State.BOOK_EMPLOYEES,)),
        State.BOOK_EMPLOYEES: StateConfig((State.BOOK_CHANNEL,)),
        State.BOOK_CHANNEL: StateConfig((State.BOOK_GOAL,)),
        State.BOOK_GOAL: StateConfig((State.BOOK_SEND_LINK,)),
        State.BOOK_SEND_LINK: StateConfig((State.BOOK_AWAIT_CONFIRMATION,)),
        State.BOOK_AWAIT_CONFIRMATION: StateConfig((State.BOOK_CONFIRMED, State.DONE)),
        State.BOOK_CONFIRMED: StateConfig((State.DONE,)),

        # --- Terminal ---
        State.DONE: StateConfig((State.MENU,)),
    }

    def __init__(
        self,
        history_limit: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.history_limit = history_limit or settings.session.history_limit
        self.metrics = metrics

    @staticmethod
    def coerce_state(value: Any) -> State:
        """Return ``value`` as a State or raise InvalidStateError."""
        if isinstance(value, State):
            return value
        try:
            return State(value)
        except ValueError:
            raise InvalidStateError(f"Unknown conversation state: {value!r}") from None

    def initial_state(self, language: Optional[str] = None) -> SessionState:
        """A fresh session positioned at WELCOME."""
        return SessionState(
            current=State.WELCOME,
            language=language or settings.language.default_language,
        )

    def get_config(self, state: Any) -> StateConfig:
        return self.STATE_CONFIG[self.coerce_state(state)]

    def allowed_next_states(self, state: Any) -> tuple[State, ...]:
        return self.get_config(state).next_states

    def is_declared(self, from_state: Any, to_state: Any) -> bool:
        return self.coerce_state(to_state) in self.allowed_next_states(from_state)

    def transition(
        self,
        session: SessionState,
        next_state: Any,
        data_patch: Optional[dict[str, Any]] = None,
        *,
        override: bool = False,
    ) -> SessionState:
        """
        Move a session to ``next_state`` and merge ``data_patch`` into its data.

        Staying in the same state only merges data. Undeclared jumps are
        applied anyway and reported, except when ``override`` is set.

        Raises:
            InvalidStateError: If either state is not a known State.
        """
        current = self.coerce_state(session.current)
        target = self.coerce_state(next_state)
        now = datetime.now(timezone.utc)
        data = {**session.data, **(data_patch or {})}

        if target == current:
            return session.model_copy(update={"data": data, "updated_at": now})

        if not override and not self.is_declared(current, target):
            logger.warning(
                "Undeclared transition: %s -> %s (allowed: %s)",
                current.value, target.value,
                [s.value for s in self.allowed_next_states(current)],
            )
            if self.metrics is not None:
                self.metrics.record_adjacency_violation(current.value, target.value)

        history = [*session.history, current][-self.history_limit:]
        logger.info("State transition: %s -> %s", current.value, target.value)
        return session.model_copy(update={
            "current": target,
            "data": data,
            "history": history,
            "updated_at": now,
        })

    def validate_input(self, state: Any, raw_input: str) -> ValidationResult:
        """Apply the state's validator, if it has one."""
        config = self.get_config(state)
        if config.validation is None:
            return ValidationResult(valid=True)
        validator = VALIDATORS[config.validation]
        if validator(raw_input or ""):
            return ValidationResult(valid=True)
        return ValidationResult(valid=False, error=invalid_input_message(config.validation))

    def next_menu_state(self, raw_input: str) -> Optional[State]:
        """Main-menu disambiguation. None means no option matched."""
        selected = match_menu_option(raw_input)
        if selected is None:
            logger.info("No menu option matched")
        return selected

    @staticmethod
    def is_booking_state(state: State) -> bool:
        return state in BOOKING_STATES

    @staticmethod
    def allows_booking_shortcut(state: State) -> bool:
        return state not in BOOKING_STATES and state not in CHOOSER_STATES

"""
Per-state turn handlers.

One handler per State, registered in a table. A handler reads the user's
message and returns a StepResult describing the next state, the scripted
reply, the data to merge and any side effects. Handlers never persist or
call external services themselves.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from btrix_bot.config import BookingConfig, settings
from btrix_bot.conversation import scripts
from btrix_bot.conversation.intents import (
    detect_agent_selection,
    detect_channel_selection,
    detect_goal_selection,
    detect_plan_selection,
    detect_time_preference,
    wants_booking_from_detail,
    wants_human,
    wants_menu,
)
from btrix_bot.conversation.state_machine import ConversationStateMachine, InvalidStateError
from btrix_bot.schemas.session_schema import SessionState, State

logger = logging.getLogger(__name__)

LEAD_FIELDS = (
    "name", "email", "phone", "company", "employees", "channel", "goal",
    "timePreference", "bookingLink", "timezone",
)


@dataclass
class Notification:
    """A fire-and-forget side effect requested by a handler."""
    event: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepResult:
    """What one handler decided for one turn."""
    next_state: State
    message: Optional[str] = None
    data_patch: dict[str, Any] = field(default_factory=dict)
    defer_to_retrieval: bool = False
    override: bool = False
    notifications: list[Notification] = field(default_factory=list)


Handler = Callable[[SessionState, str], StepResult]


def start_booking() -> StepResult:
    """Direct jump into the booking flow, asking for the first name."""
    return StepResult(
        next_state=State.BOOK_NAME,
        message=scripts.booking_prompt(State.BOOK_NAME),
        override=True,
    )


class StateHandlers:
    """Dispatch table mapping every State to its handler."""

    def __init__(
        self,
        state_machine: ConversationStateMachine,
        booking: Optional[BookingConfig] = None,
    ) -> None:
        self.sm = state_machine
        self.booking = booking or settings.booking
        self._handlers: dict[State, Handler] = {
            State.WELCOME: self.on_welcome,
            State.MENU: self.on_menu,
            State.PRICING_SELECT: self.on_pricing_select,
            State.PRICING_DETAIL: self.on_detail,
            State.AGENTS_SELECT: self.on_agents_select,
            State.AGENTS_DETAIL: self.on_detail,
            State.SUPPORT_ISSUE: self.on_support_issue,
            State.SUPPORT_ESCALATE: self.on_support_escalate,
            State.BOOK_START: self.on_book_start,
            State.BOOK_NAME: self.on_book_name,
            State.BOOK_EMAIL: self.on_book_email,
            State.BOOK_PHONE: self.on_book_phone,
            State.BOOK_COMPANY: self.on_book_company,
            State.BOOK_EMPLOYEES: self.on_book_employees,
            State.BOOK_CHANNEL: self.on_book_channel,
            State.BOOK_GOAL: self.on_book_goal,
            State.BOOK_SEND_LINK: self.on_book_send_link,
            State.BOOK_AWAIT_CONFIRMATION: self.on_book_await_confirmation,
            State.BOOK_CONFIRMED: self.on_book_confirmed,
            State.DONE: self.on_done,
        }

    def dispatch(self, session: SessionState, text: str) -> StepResult:
        """Run the handler registered for the session's current state.

        Raises:
            InvalidStateError: If no handler is registered for the state.
        """
        handler = self._handlers.get(session.current)
        if handler is None:
            raise InvalidStateError(f"No handler registered for state {session.current!r}")
        return handler(session, text)

    def registered_states(self) -> set[State]:
        return set(self._handlers)

    # --- Entry and menu ---

    def on_welcome(self, session: SessionState, text: str) -> StepResult:
        return StepResult(next_state=State.MENU, message=scripts.WELCOME_MESSAGE)

    def on_menu(self, session: SessionState, text: str) -> StepResult:
        selected = self.sm.next_menu_state(text)
        if selected is None:
            return StepResult(next_state=State.MENU, message=scripts.MENU_REPROMPT)
        if selected == State.BOOK_START:
            return start_booking()
        if selected == State.PRICING_SELECT:
            return StepResult(next_state=selected, message=scripts.PLAN_CHOOSER)
        if selected == State.AGENTS_SELECT:
            return StepResult(next_state=selected, message=scripts.AGENT_CHOOSER)
        return StepResult(next_state=selected, message=scripts.SUPPORT_PROMPT)

    def on_done(self, session: SessionState, text: str) -> StepResult:
        return StepResult(next_state=State.MENU, message=scripts.WELCOME_MESSAGE)

    # --- Pricing and agents ---

    def on_pricing_select(self, session: SessionState, text: str) -> StepResult:
        plan = detect_plan_selection(text)
        if plan is None:
            return StepResult(
                next_state=State.PRICING_SELECT,
                message=scripts.chooser_reprompt(State.PRICING_SELECT),
            )
        return StepResult(
            next_state=State.PRICING_DETAIL,
            message=scripts.plan_detail(plan),
            data_patch={"plan": plan},
        )

    def on_agents_select(self, session: SessionState, text: str) -> StepResult:
        agent = detect_agent_selection(text)
        if agent is None:
            return StepResult(
                next_state=State.AGENTS_SELECT,
                message=scripts.chooser_reprompt(State.AGENTS_SELECT),
            )
        return StepResult(
            next_state=State.AGENTS_DETAIL,
            message=scripts.agent_detail(agent),
            data_patch={"agent": agent},
        )

    def on_detail(self, session: SessionState, text: str) -> StepResult:
        if wants_booking_from_detail(text):
            return start_booking()
        if wants_menu(text):
            return StepResult(next_state=State.MENU, message=scripts.WELCOME_MESSAGE, override=True)
        return StepResult(next_state=session.current, defer_to_retrieval=True)

    # --- Support ---

    def on_support_issue(self, session: SessionState, text: str) -> StepResult:
        if wants_human(text):
            return StepResult(next_state=State.SUPPORT_ESCALATE, message=scripts.ESCALATE_PROMPT)
        if wants_menu(text):
            return StepResult(next_state=State.MENU, message=scripts.WELCOME_MESSAGE, override=True)
        return StepResult(
            next_state=State.SUPPORT_ISSUE,
            data_patch={"issue": text.strip()},
            defer_to_retrieval=True,
        )

    def on_support_escalate(self, session: SessionState, text: str) -> StepResult:
        validation = self.sm.validate_input(State.SUPPORT_ESCALATE, text)
        if not validation.valid:
            return StepResult(next_state=State.SUPPORT_ESCALATE, message=validation.error)
        email = text.strip()
        return StepResult(
            next_state=State.DONE,
            message=scripts.ESCALATION_ACK.format(email=email),
            data_patch={"escalationEmail": email},
            notifications=[Notification("support.escalated", {
                "email": email,
                "issue": session.data.get("issue"),
            })],
        )

    # --- Booking ---

    def _collect(
        self,
        session: SessionState,
        text: str,
        field_name: str,
        next_state: State,
        value: Optional[str] = None,
        override: bool = False,
    ) -> StepResult:
        """Validate a booking field and advance to the next booking question."""
        current = session.current
        validation = self.sm.validate_input(current, text)
        if not validation.valid:
            logger.info("Invalid %s input, staying in %s", field_name, current.value)
            return StepResult(next_state=current, message=validation.error)

        value = value if value is not None else text.strip()
        if not value:
            return StepResult(
                next_state=current,
                message=scripts.REDIRECT_MESSAGES.get(current, scripts.DEFAULT_INVALID_MESSAGE),
            )
        patch = {field_name: value}
        return StepResult(
            next_state=next_state,
            message=scripts.booking_prompt(next_state, {**session.data, **patch}),
            data_patch=patch,
            override=override,
        )

    def on_book_start(self, session: SessionState, text: str) -> StepResult:
        # The first-name question was already asked on entering BOOK_START.
        validation = self.sm.validate_input(State.BOOK_NAME, text)
        if not validation.valid:
            return StepResult(next_state=State.BOOK_NAME, message=validation.error)
        name = text.strip()
        return StepResult(
            next_state=State.BOOK_EMAIL,
            message=scripts.booking_prompt(State.BOOK_EMAIL, {"name": name}),
            data_patch={"name": name},
            override=True,
        )

    def on_book_name(self, session: SessionState, text: str) -> StepResult:
        return self._collect(session, text, "name", State.BOOK_EMAIL)

    def on_book_email(self, session: SessionState, text: str) -> StepResult:
        return self._collect(session, text, "email", State.BOOK_PHONE)

    def on_book_phone(self, session: SessionState, text: str) -> StepResult:
        return self._collect(session, text, "phone", State.BOOK_COMPANY)

    def on_book_company(self, session: SessionState, text: str) -> StepResult:
        return self._collect(session, text, "company", State.BOOK_EMPLOYEES)

    def on_book_employees(self, session: SessionState, text: str) -> StepResult:
        return self._collect(session, text, "employees", State.BOOK_CHANNEL)

    def on_book_channel(self, session: SessionState, text: str) -> StepResult:
        return self._collect(
            session, text, "channel", State.BOOK_GOAL, value=detect_channel_selection(text)
        )

    def on_book_goal(self, session: SessionState, text: str) -> StepResult:
        goal = detect_goal_selection(text)
        if not goal:
            return StepResult(next_state=State.BOOK_GOAL, message=scripts.REDIRECT_MESSAGES[State.BOOK_GOAL])

        patch: dict[str, Any] = {
            "goal": goal,
            "bookingLink": self.booking.booking_link,
            "timezone": session.data.get("timezone") or self.booking.default_timezone,
        }
        preference = detect_time_preference(text)
        if preference:
            patch["timePreference"] = preference
            message = scripts.preference_message(preference, patch["bookingLink"])
        else:
            message = scripts.send_link_message(patch["bookingLink"], patch["timezone"])

        lead = {**session.data, **patch}
        return StepResult(
            next_state=State.BOOK_SEND_LINK,
            message=message,
            data_patch=patch,
            notifications=[Notification("lead.captured", {
                key: lead[key] for key in LEAD_FIELDS if key in lead
            })],
        )

    def on_book_send_link(self, session: SessionState, text: str) -> StepResult:
        preference = detect_time_preference(text)
        if preference:
            return StepResult(
                next_state=State.BOOK_SEND_LINK,
                message=scripts.preference_message(preference, session.data.get("bookingLink")),
                data_patch={"timePreference": preference},
            )
        return StepResult(
            next_state=State.BOOK_AWAIT_CONFIRMATION,
            message=scripts.AWAIT_CONFIRMATION_MESSAGE,
        )

    def on_book_await_confirmation(self, session: SessionState, text: str) -> StepResult:
        # Only a confirmation record can leave this state.
        return StepResult(
            next_state=State.BOOK_AWAIT_CONFIRMATION,
            message=scripts.AWAIT_CONFIRMATION_MESSAGE,
        )

    def on_book_confirmed(self, session: SessionState, text: str) -> StepResult:
        return StepResult(next_state=State.DONE, message=scripts.ALREADY_CONFIRMED_MESSAGE)

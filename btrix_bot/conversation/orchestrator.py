"""
Dialogue orchestrator: one call per inbound message.

Per turn:
1. Load the session (fresh WELCOME state if absent, corrupt or the store
   is down).
2. Direct-intent override: outside the booking flow, a booking request
   jumps straight to BOOK_NAME.
3. Otherwise dispatch to the handler of the current state.
4. If the handler defers, retrieve knowledge, generate a draft with the
   model and run the price guardrail on it. A failed check replaces the
   draft with a fixed fallback. Generation is never retried.
5. Persist the new state and fire any notifications without waiting.

Turns for the same session are serialised with a per-session lock.
"""

import asyncio
import logging
import weakref
from typing import Any, Optional, Union

from pydantic import ValidationError

from btrix_bot.config import BookingConfig, LanguageConfig, settings
from btrix_bot.conversation import scripts
from btrix_bot.conversation.guardrails import PriceGuardrail
from btrix_bot.conversation.handlers import Notification, StateHandlers, StepResult, start_booking
from btrix_bot.conversation.intents import detect_booking_intent
from btrix_bot.conversation.state_machine import ConversationStateMachine, InvalidStateError
from btrix_bot.evaluation.metrics import MetricsCollector
from btrix_bot.language import resolve_language
from btrix_bot.logging_context import set_session_id
from btrix_bot.prompts.prompt_templates import build_messages, build_rag_system_prompt
from btrix_bot.retrieval.retriever import KnowledgeRetriever
from btrix_bot.schemas.booking_schema import BookingConfirmation
from btrix_bot.schemas.conversation_schema import TurnReply
from btrix_bot.schemas.session_schema import SessionState, State
from btrix_bot.session.store import SessionStore, SessionStoreUnavailableError
from btrix_bot.tools.llm import LLMProvider
from btrix_bot.tools.notifier import Notifier, NullNotifier

logger = logging.getLogger(__name__)


class DialogueOrchestrator:
    """Composes the store, state machine, retriever, model and guardrail."""

    def __init__(
        self,
        store: SessionStore,
        retriever: KnowledgeRetriever,
        llm: LLMProvider,
        guardrail: Optional[PriceGuardrail] = None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[MetricsCollector] = None,
        state_machine: Optional[ConversationStateMachine] = None,
        language_config: Optional[LanguageConfig] = None,
        booking_config: Optional[BookingConfig] = None,
    ) -> None:
        self.store = store
        self.retriever = retriever
        self.llm = llm
        self.metrics = metrics or MetricsCollector()
        self.sm = state_machine or ConversationStateMachine(metrics=self.metrics)
        self.handlers = StateHandlers(self.sm, booking_config)
        self.guardrail = guardrail or PriceGuardrail(metrics=self.metrics)
        self.notifier = notifier or NullNotifier()
        self.language_config = language_config or settings.language
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # --- Public API ---

    async def handle_turn(
        self, session_id: str, message: str, language: Optional[str] = None
    ) -> TurnReply:
        """
        Process one inbound message and return the reply.

        Args:
            session_id: Opaque key of the conversation.
            message: The user's text.
            language: Optional explicit language request from the caller.

        Returns:
            TurnReply. Internal errors produce a "start over" reply, never
            an exception or raw error text.
        """
        set_session_id(session_id)
        lock = self._lock_for(session_id)
        async with lock:
            try:
                return await self._handle_turn(session_id, message or "", language)
            except Exception:
                logger.exception("Unexpected error handling turn, starting over")
                return await self._start_over(session_id, language)

    async def confirm_booking(
        self, session_id: str, record: Union[BookingConfirmation, dict[str, Any]]
    ) -> TurnReply:
        """
        Apply a booking confirmation record from the calendar integration.

        Only a record with booking id, start time, timezone and status
        "confirmed" moves the session to BOOK_CONFIRMED. Anything less
        leaves the state untouched and produces no confirmation text.
        """
        set_session_id(session_id)
        lock = self._lock_for(session_id)
        async with lock:
            session = await self._load_session(session_id)
            try:
                if not isinstance(record, BookingConfirmation):
                    record = BookingConfirmation.model_validate(record)
            except ValidationError as e:
                logger.warning("Malformed booking confirmation (%d field errors)", e.error_count())
                record = None
            message = scripts.confirmed_message(record) if record is not None else None
            if message is None:
                logger.warning(
                    "Incomplete booking confirmation, staying in %s", session.current.value
                )
                return TurnReply(
                    message=scripts.AWAIT_CONFIRMATION_MESSAGE,
                    next_state=session.current,
                    language=session.language,
                )

            session = self.sm.transition(
                session,
                State.BOOK_CONFIRMED,
                {
                    "bookingId": record.booking_id,
                    "startDatetime": record.start_datetime,
                    "timezone": record.timezone,
                    "bookingStatus": record.status,
                },
                override=True,
            )
            await self._save_session(session_id, session)
            self._dispatch(session_id, [Notification("booking.confirmed", {
                "booking_id": record.booking_id,
                "start_datetime": record.start_datetime,
                "timezone": record.timezone,
                "email": session.data.get("email"),
                "name": session.data.get("name"),
            })])
            return TurnReply(
                message=message,
                next_state=session.current,
                language=session.language,
            )

    # --- Turn pipeline ---

    async def _handle_turn(
        self, session_id: str, message: str, language: Optional[str]
    ) -> TurnReply:
        session = await self._load_session(session_id)
        is_new = session.current == State.WELCOME and not session.history
        lang = resolve_language(
            message,
            current=None if is_new else session.language,
            override=language,
            config=self.language_config,
        )
        session = session.model_copy(update={"language": lang})

        try:
            result = self._step(session, message)
        except InvalidStateError as e:
            logger.warning("Invalid session state, reinitialising: %s", e)
            session = self.sm.initial_state(lang)
            result = self._step(session, message)

        session = self.sm.transition(
            session, result.next_state, result.data_patch, override=result.override
        )

        reply = result.message or ""
        used_retrieval = False
        if result.defer_to_retrieval:
            reply = await self._answer_with_retrieval(session_id, message, lang)
            used_retrieval = True

        await self._save_session(session_id, session)
        self._dispatch(session_id, result.notifications)
        return TurnReply(
            message=reply,
            next_state=session.current,
            used_retrieval=used_retrieval,
            language=lang,
        )

    def _step(self, session: SessionState, message: str) -> StepResult:
        current = self.sm.coerce_state(session.current)
        if self._is_direct_booking(current, message):
            logger.info("Direct booking intent from %s", current.value)
            return start_booking()
        return self.handlers.dispatch(session, message)

    def _is_direct_booking(self, current: State, message: str) -> bool:
        if self.sm.is_booking_state(current):
            return False
        # Input that satisfies the state's own validator is taken as an answer.
        if self.sm.get_config(current).validation and self.sm.validate_input(current, message).valid:
            return False
        return detect_booking_intent(message, allow_shortcut=self.sm.allows_booking_shortcut(current))

    async def _answer_with_retrieval(self, session_id: str, message: str, language: str) -> str:
        retrieval = await self.retriever.retrieve(
            message, language=language, session_id=session_id
        )
        if retrieval.error:
            return scripts.localized(scripts.RETRIEVAL_ERROR_MESSAGES, language)
        if retrieval.below_threshold:
            return scripts.localized(scripts.CLARIFICATION_MESSAGES, language)

        system_prompt = build_rag_system_prompt(retrieval.context, language)
        try:
            completion = await self.llm.complete(system_prompt, build_messages(message))
        except Exception as e:
            logger.error("Completion failed: %s", e)
            return scripts.localized(scripts.RETRIEVAL_ERROR_MESSAGES, language)

        if not completion.text.strip():
            return scripts.localized(scripts.CLARIFICATION_MESSAGES, language)

        reply, _ = self.guardrail.enforce(
            completion.text, language, query=message, session_id=session_id
        )
        return reply

    # --- Persistence and side effects ---

    async def _load_session(self, session_id: str) -> SessionState:
        return await self.store.get_or_init(session_id, self.sm.initial_state)

    async def _save_session(self, session_id: str, session: SessionState) -> None:
        try:
            await self.store.set(session_id, session)
        except SessionStoreUnavailableError as e:
            logger.warning("Session state not persisted: %s", e)

    def _dispatch(self, session_id: str, notifications: list[Notification]) -> None:
        for notification in notifications:
            try:
                self.notifier.notify(
                    notification.event, {**notification.payload, "session_id": session_id}
                )
            except Exception as e:
                logger.error("Could not schedule '%s' notification: %s", notification.event, e)

    async def _start_over(self, session_id: str, language: Optional[str]) -> TurnReply:
        session = self.sm.initial_state(language)
        await self._save_session(session_id, session)
        return TurnReply(
            message=scripts.START_OVER_MESSAGE,
            next_state=session.current,
            language=session.language,
        )

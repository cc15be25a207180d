"""Tests for the dialogue orchestrator: full turns through every layer."""

import asyncio
import logging
from datetime import datetime

import pytest

from btrix_bot.conversation import scripts
from btrix_bot.conversation.guardrails import FALLBACK_MESSAGES
from btrix_bot.schemas.booking_schema import BookingConfirmation
from btrix_bot.schemas.session_schema import State
from tests.conftest import UNRELATED_VECTOR


async def say(orchestrator, *messages, session_id="s1"):
    reply = None
    for message in messages:
        reply = await orchestrator.handle_turn(session_id, message)
    return reply


class TestMenuFlow:
    @pytest.mark.asyncio
    async def test_first_message_shows_welcome_menu(self, orchestrator, store):
        reply = await say(orchestrator, "hi")
        assert reply.message == scripts.WELCOME_MESSAGE
        assert reply.next_state == State.MENU
        assert store.sessions["s1"].history == [State.WELCOME]

    @pytest.mark.asyncio
    async def test_pricing_option_shows_plan_chooser(self, orchestrator):
        reply = await say(orchestrator, "hi", "1")
        assert reply.message == scripts.PLAN_CHOOSER
        assert reply.next_state == State.PRICING_SELECT

    @pytest.mark.asyncio
    async def test_plan_detail_uses_official_prices(self, orchestrator):
        reply = await say(orchestrator, "hi", "1", "pro")
        assert reply.next_state == State.PRICING_DETAIL
        assert "€550" in reply.message
        assert "€2,200" in reply.message

    @pytest.mark.asyncio
    async def test_unrecognised_menu_reply_reprompts(self, orchestrator):
        reply = await say(orchestrator, "hi", "what?")
        assert reply.message == scripts.MENU_REPROMPT
        assert reply.next_state == State.MENU

    @pytest.mark.asyncio
    async def test_digit_in_chooser_is_not_booking_shortcut(self, orchestrator):
        reply = await say(orchestrator, "hi", "1", "4")
        assert reply.next_state == State.PRICING_SELECT
        assert reply.message.startswith(scripts.CHOOSER_REPROMPT)

    @pytest.mark.asyncio
    async def test_menu_from_detail_returns_to_menu(self, orchestrator, metrics):
        reply = await say(orchestrator, "hi", "2", "sales", "back to menu")
        assert reply.next_state == State.MENU
        assert reply.message == scripts.WELCOME_MESSAGE
        assert metrics.adjacency_violations == {}


class TestDirectBooking:
    @pytest.mark.asyncio
    async def test_booking_keyword_from_detail_jumps_to_name(self, orchestrator, metrics):
        reply = await say(orchestrator, "hi", "1", "pro", "can I book a call?")
        assert reply.next_state == State.BOOK_NAME
        assert reply.message == scripts.booking_prompt(State.BOOK_NAME)
        assert metrics.adjacency_violations == {}

    @pytest.mark.asyncio
    async def test_shortcut_from_menu(self, orchestrator):
        reply = await say(orchestrator, "hi", "4")
        assert reply.next_state == State.BOOK_NAME

    @pytest.mark.asyncio
    @pytest.mark.parametrize("opening", [("1", "essential"), ("2", "sales"), ("3",)])
    async def test_shortcut_from_detail_and_support(self, orchestrator, store, opening):
        reply = await say(orchestrator, "hi", *opening, "4")
        assert reply.next_state == State.BOOK_NAME
        assert reply.used_retrieval is False
        assert "issue" not in store.sessions["s1"].data

    @pytest.mark.asyncio
    async def test_reschedule_from_detail_jumps_to_name(self, orchestrator):
        reply = await say(orchestrator, "hi", "1", "pro", "Can I reschedule later?")
        assert reply.next_state == State.BOOK_NAME

    @pytest.mark.asyncio
    async def test_booking_keyword_on_first_message(self, orchestrator):
        reply = await say(orchestrator, "I want to schedule a demo")
        assert reply.next_state == State.BOOK_NAME

    @pytest.mark.asyncio
    async def test_booking_words_inside_booking_flow_are_answers(self, orchestrator):
        reply = await say(orchestrator, "hi", "4", "Maria", "maria@acme.com", "+351 912 345 678",
                          "Demo Booking Ltd")
        assert reply.next_state == State.BOOK_EMPLOYEES


class TestBookingFlow:
    @pytest.mark.asyncio
    async def test_full_booking_conversation(self, orchestrator, notifier, store, metrics):
        await say(orchestrator, "hi", "4")
        reply = await say(orchestrator, "Maria")
        assert reply.message == "Thanks, Maria. What's your work email?"
        assert reply.next_state == State.BOOK_EMAIL

        await say(orchestrator, "maria@acme.com", "+351 912 345 678", "Acme", "25")
        reply = await say(orchestrator, "1")
        assert reply.next_state == State.BOOK_GOAL

        reply = await say(orchestrator, "More leads please")
        assert reply.next_state == State.BOOK_SEND_LINK
        assert "https://cal.example/btrix" in reply.message

        data = store.sessions["s1"].data
        assert data["channel"] == "WhatsApp"
        assert data["goal"] == "More leads & sales"
        assert data["timezone"] == "UTC"

        assert notifier.names() == ["lead.captured"]
        lead = notifier.events[0][1]
        assert lead["email"] == "maria@acme.com"
        assert lead["company"] == "Acme"
        assert lead["session_id"] == "s1"

        reply = await say(orchestrator, "thanks")
        assert reply.next_state == State.BOOK_AWAIT_CONFIRMATION
        reply = await say(orchestrator, "is it booked?")
        assert reply.next_state == State.BOOK_AWAIT_CONFIRMATION
        assert metrics.adjacency_violations == {}

    @pytest.mark.asyncio
    async def test_invalid_email_stays_with_error(self, orchestrator):
        reply = await say(orchestrator, "hi", "4", "Maria", "not-an-email")
        assert reply.next_state == State.BOOK_EMAIL
        assert reply.message == scripts.INVALID_INPUT_MESSAGES["email"]

    @pytest.mark.asyncio
    async def test_time_preference_is_acknowledged(self, orchestrator, store):
        await say(orchestrator, "hi", "4", "Maria", "maria@acme.com", "+351 912 345 678",
                  "Acme", "25", "2")
        reply = await say(orchestrator, "faster support, morning is best")
        assert "morning" in reply.message
        assert store.sessions["s1"].data["timePreference"] == "morning"


class TestBookingConfirmation:
    async def _await_confirmation(self, orchestrator):
        await say(orchestrator, "hi", "4", "Maria", "maria@acme.com", "+351 912 345 678",
                  "Acme", "25", "1", "leads", "ok")

    @pytest.mark.asyncio
    async def test_incomplete_record_does_not_confirm(self, orchestrator, notifier):
        await self._await_confirmation(orchestrator)
        reply = await orchestrator.confirm_booking("s1", {
            "booking_id": "bk_1",
            "start_datetime": "2026-11-03T10:00:00",
            "timezone": "Europe/Lisbon",
            "status": "pending",
        })
        assert reply.next_state == State.BOOK_AWAIT_CONFIRMATION
        assert reply.message == scripts.AWAIT_CONFIRMATION_MESSAGE
        assert "booking.confirmed" not in notifier.names()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("booking_id", None),
        ("start_datetime", None),
        ("timezone", None),
        ("status", None),
        ("booking_id", ""),
        ("timezone", ""),
        ("booking_id", "   "),
        ("start_datetime", " \t "),
    ])
    async def test_missing_or_blank_field_does_not_confirm(self, orchestrator, notifier, field, value):
        await self._await_confirmation(orchestrator)
        record = {
            "booking_id": "bk_1",
            "start_datetime": "2026-11-03T10:00:00",
            "timezone": "Europe/Lisbon",
            "status": "confirmed",
        }
        record[field] = value
        reply = await orchestrator.confirm_booking("s1", record)
        assert reply.next_state == State.BOOK_AWAIT_CONFIRMATION
        assert reply.message == scripts.AWAIT_CONFIRMATION_MESSAGE
        assert "booking.confirmed" not in notifier.names()

    @pytest.mark.asyncio
    async def test_numeric_id_and_datetime_are_accepted(self, orchestrator, store):
        await self._await_confirmation(orchestrator)
        reply = await orchestrator.confirm_booking("s1", {
            "booking_id": 12345,
            "start_datetime": datetime(2026, 11, 3, 10, 0),
            "timezone": "UTC",
            "status": "confirmed",
        })
        assert reply.next_state == State.BOOK_CONFIRMED
        assert "2026-11-03T10:00:00 UTC" in reply.message
        assert store.sessions["s1"].data["bookingId"] == "12345"

    @pytest.mark.asyncio
    async def test_malformed_record_stays_waiting(self, orchestrator):
        await self._await_confirmation(orchestrator)
        reply = await orchestrator.confirm_booking("s1", {
            "booking_id": ["bk_1"],
            "start_datetime": "2026-11-03T10:00:00",
            "timezone": "UTC",
            "status": "confirmed",
        })
        assert reply.next_state == State.BOOK_AWAIT_CONFIRMATION
        assert reply.message == scripts.AWAIT_CONFIRMATION_MESSAGE

    @pytest.mark.asyncio
    async def test_complete_record_confirms(self, orchestrator, notifier, store, metrics):
        await self._await_confirmation(orchestrator)
        reply = await orchestrator.confirm_booking("s1", BookingConfirmation(
            booking_id="bk_1",
            start_datetime="2026-11-03T10:00:00",
            timezone="Europe/Lisbon",
            status="confirmed",
        ))
        assert reply.next_state == State.BOOK_CONFIRMED
        assert "2026-11-03T10:00:00 Europe/Lisbon" in reply.message
        assert store.sessions["s1"].data["bookingId"] == "bk_1"
        assert notifier.names()[-1] == "booking.confirmed"
        assert metrics.adjacency_violations == {}

    @pytest.mark.asyncio
    async def test_after_confirmation_conversation_finishes(self, orchestrator):
        await self._await_confirmation(orchestrator)
        await orchestrator.confirm_booking("s1", BookingConfirmation(
            booking_id="bk_1",
            start_datetime="2026-11-03T10:00:00",
            timezone="UTC",
            status="confirmed",
        ))
        reply = await say(orchestrator, "thanks!")
        assert reply.next_state == State.DONE
        assert reply.message == scripts.ALREADY_CONFIRMED_MESSAGE

        reply = await say(orchestrator, "hello again")
        assert reply.next_state == State.MENU
        assert reply.message == scripts.WELCOME_MESSAGE


class TestGroundedAnswers:
    @pytest.mark.asyncio
    async def test_detail_question_uses_retrieval(self, orchestrator, llm):
        llm.reply = "Pro is €2,200 setup + €550/month."
        reply = await say(orchestrator, "hi", "1", "pro", "what does the setup cost?")
        assert reply.used_retrieval is True
        assert reply.message == "Pro is €2,200 setup + €550/month."
        assert reply.next_state == State.PRICING_DETAIL
        assert "## Relevant Knowledge" in llm.prompts[-1]
        assert "Respond in English." in llm.prompts[-1]
        assert llm.messages[-1] == [{"role": "user", "content": "what does the setup cost?"}]

    @pytest.mark.asyncio
    async def test_invalid_price_is_replaced_by_fallback(self, orchestrator, llm, metrics):
        llm.reply = "That would be around €1,500 setup."
        reply = await say(orchestrator, "hi", "1", "pro", "any discount on setup?")
        assert reply.message == FALLBACK_MESSAGES["en"]
        assert len(metrics.guardrail_violations) == 1
        assert metrics.guardrail_violations[0]["session_id"] == "s1"

    @pytest.mark.asyncio
    async def test_below_threshold_asks_for_clarification(self, orchestrator, llm):
        llm.embedding = list(UNRELATED_VECTOR)
        reply = await say(orchestrator, "hi", "1", "pro", "what's the weather like?")
        assert reply.message == scripts.CLARIFICATION_MESSAGES["en"]
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_retrieval_error_gives_error_reply(self, orchestrator, llm, metrics):
        await say(orchestrator, "hi", "1", "pro")
        llm.fail_embed = True
        reply = await say(orchestrator, "what does it include?")
        assert reply.message == scripts.RETRIEVAL_ERROR_MESSAGES["en"]
        assert reply.next_state == State.PRICING_DETAIL
        assert metrics.total_requests == 0

    @pytest.mark.asyncio
    async def test_model_error_gives_error_reply(self, orchestrator, llm):
        llm.fail_complete = True
        reply = await say(orchestrator, "hi", "1", "pro", "what does the setup cost?")
        assert reply.message == scripts.RETRIEVAL_ERROR_MESSAGES["en"]


class TestSupport:
    @pytest.mark.asyncio
    async def test_escalation_records_email_and_notifies(self, orchestrator, notifier):
        await say(orchestrator, "hi", "3", "my whatsapp bot stopped answering")
        reply = await say(orchestrator, "I need a human")
        assert reply.next_state == State.SUPPORT_ESCALATE

        reply = await say(orchestrator, "bookkeeping@acme.com")
        assert reply.next_state == State.DONE
        assert "bookkeeping@acme.com" in reply.message
        event, payload = notifier.events[-1]
        assert event == "support.escalated"
        assert payload["issue"] == "my whatsapp bot stopped answering"

    @pytest.mark.asyncio
    async def test_invalid_escalation_email_stays(self, orchestrator):
        reply = await say(orchestrator, "hi", "3", "talk to a person", "tomorrow")
        assert reply.next_state == State.SUPPORT_ESCALATE
        assert reply.message == scripts.INVALID_INPUT_MESSAGES["email"]


class TestLanguage:
    @pytest.mark.asyncio
    async def test_language_detected_on_first_turn_and_kept(self, orchestrator, store):
        reply = await say(orchestrator, "Olá, quero saber mais")
        assert reply.language == "pt-BR"
        reply = await say(orchestrator, "1")
        assert reply.language == "pt-BR"
        assert store.sessions["s1"].language == "pt-BR"

    @pytest.mark.asyncio
    async def test_change_request_switches_language(self, orchestrator):
        await say(orchestrator, "hola")
        reply = await say(orchestrator, "switch to english")
        assert reply.language == "en"

    @pytest.mark.asyncio
    async def test_explicit_override(self, orchestrator):
        reply = await orchestrator.handle_turn("s1", "hi", language="es")
        assert reply.language == "es"

    @pytest.mark.asyncio
    async def test_clarification_in_session_language(self, orchestrator, llm):
        await say(orchestrator, "hola", "1", "pro")
        llm.embedding = list(UNRELATED_VECTOR)
        reply = await say(orchestrator, "y el clima?")
        assert reply.message == scripts.CLARIFICATION_MESSAGES["es"]


class TestResilience:
    @pytest.mark.asyncio
    async def test_store_outage_still_replies(self, orchestrator, store):
        store.available = False
        reply = await say(orchestrator, "hi")
        assert reply.message == scripts.WELCOME_MESSAGE
        assert reply.next_state == State.MENU

    @pytest.mark.asyncio
    async def test_unexpected_error_starts_over(self, orchestrator, store, monkeypatch):
        await say(orchestrator, "hi", "1")

        def boom(session, text):
            raise RuntimeError("database exploded")

        monkeypatch.setattr(orchestrator.handlers, "dispatch", boom)
        reply = await say(orchestrator, "pro")
        assert reply.message == scripts.START_OVER_MESSAGE
        assert "exploded" not in reply.message
        assert reply.next_state == State.WELCOME
        assert store.sessions["s1"].current == State.WELCOME

    @pytest.mark.asyncio
    async def test_missing_handler_reinitialises_session(self, orchestrator):
        await say(orchestrator, "hi")
        del orchestrator.handlers._handlers[State.MENU]
        reply = await say(orchestrator, "1")
        assert reply.message == scripts.WELCOME_MESSAGE
        assert reply.next_state == State.MENU

    @pytest.mark.asyncio
    async def test_concurrent_turns_are_serialised(self, orchestrator, store):
        first, second = await asyncio.gather(
            orchestrator.handle_turn("s1", "hi"),
            orchestrator.handle_turn("s1", "1"),
        )
        assert first.next_state == State.MENU
        assert second.next_state == State.PRICING_SELECT
        assert store.sessions["s1"].history == [State.WELCOME, State.MENU]

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, orchestrator):
        await say(orchestrator, "hi", "1", session_id="a")
        reply = await say(orchestrator, "hi", session_id="b")
        assert reply.next_state == State.MENU


class TestSessionLogging:
    @pytest.mark.asyncio
    async def test_downstream_records_carry_session_id(self, orchestrator, caplog):
        caplog.set_level(logging.INFO)
        await say(orchestrator, "hi", "1", session_id="sess-42")
        transitions = [r for r in caplog.records if r.name == "btrix_bot.conversation.state_machine"]
        assert len(transitions) == 2
        assert {r.session_id for r in transitions} == {"sess-42"}

    @pytest.mark.asyncio
    async def test_each_turn_logs_its_own_session(self, orchestrator, caplog):
        caplog.set_level(logging.INFO)
        await say(orchestrator, "hi", session_id="a")
        await say(orchestrator, "hi", session_id="b")
        sessions = [r.session_id for r in caplog.records if r.name == "btrix_bot.conversation.state_machine"]
        assert sessions == ["a", "b"]

"""Tests for the price list and the prompts built from it."""

import pytest

from btrix_bot.conversation import scripts
from btrix_bot.prompts.prompt_templates import (
    NO_KNOWLEDGE_NOTE,
    build_messages,
    build_rag_system_prompt,
)
from btrix_bot.prompts.system_prompts import BASE_SYSTEM_PROMPT
from btrix_bot.schemas.booking_schema import BookingConfirmation
from btrix_bot.tools.pricing import (
    PRICE_FACTS,
    display_forms,
    format_amount,
    get_accepted_display_forms,
    get_agent_info,
    get_official_price_summary,
    get_plan_info,
    get_price_fact,
)


class TestPriceList:
    def test_pack_prices(self):
        assert get_price_fact("essential").setup_amount == 1400
        assert get_price_fact("pro").monthly_amount == 550
        assert get_price_fact("enterprise").is_minimum is True

    def test_unknown_key(self):
        with pytest.raises(KeyError):
            get_price_fact("starter")

    def test_display_forms(self):
        assert display_forms(1400) == {"€1,400", "€ 1,400", "1,400€", "1,400", "€1400", "€ 1400", "1400€", "1400"}

    def test_minimum_forms(self):
        assert "€3,500+" in get_price_fact("enterprise").accepted_display_forms

    def test_accepted_forms_cover_every_fact(self):
        forms = get_accepted_display_forms()
        for fact in PRICE_FACTS.values():
            assert fact.accepted_display_forms <= forms

    def test_format_amount(self):
        assert format_amount(2200) == "€2,200"
        assert format_amount(3500, minimum=True) == "€3,500+"

    def test_catalog_lookup(self):
        assert get_plan_info("Pro")["badge"] == "Most Popular"
        assert get_agent_info("Video")["price"].monthly_amount == 250
        assert get_plan_info("Starter") is None
        assert get_agent_info("Legal") is None

    def test_price_summary_lists_every_fact(self):
        summary = get_official_price_summary()
        assert len(summary.splitlines()) == len(PRICE_FACTS)
        assert "- BTRIX Enterprise: €3,500+ setup, €900+/month" in summary


class TestScriptedTexts:
    def test_plan_detail_uses_price_list(self):
        text = scripts.plan_detail("Essential")
        assert "€300/month (€1,400 setup)" in text

    def test_enterprise_detail_shows_minimum(self):
        assert "€900+/month (€3,500+ setup)" in scripts.plan_detail("Enterprise")

    def test_agent_detail(self):
        text = scripts.agent_detail("Finance")
        assert text.startswith("**Finance Agent**: €180/month")
        assert "Requires an active BTRIX pack" in text

    def test_unknown_plan_falls_back_to_chooser(self):
        assert scripts.plan_detail("Gold") == scripts.PLAN_CHOOSER

    def test_confirmed_message_needs_full_record(self):
        record = BookingConfirmation(booking_id="bk1", start_datetime="2026-11-03T10:00", timezone="UTC")
        assert scripts.confirmed_message(record) is None
        record = record.model_copy(update={"status": "confirmed"})
        assert "2026-11-03T10:00 UTC" in scripts.confirmed_message(record)

    def test_localized_falls_back_to_english(self):
        assert scripts.localized(scripts.CLARIFICATION_MESSAGES, "fr") == scripts.CLARIFICATION_MESSAGES["en"]


class TestPrompts:
    def test_base_prompt_carries_price_list(self):
        assert "€2,200 setup" in BASE_SYSTEM_PROMPT
        assert "Never calculate" in BASE_SYSTEM_PROMPT

    def test_rag_prompt_with_context(self):
        prompt = build_rag_system_prompt("[Source: a.md - A]\nfact\n", language="pt-BR")
        assert "## Relevant Knowledge" in prompt
        assert "fact" in prompt
        assert prompt.endswith("Responda em Português (Brasil).")

    def test_rag_prompt_without_context(self):
        prompt = build_rag_system_prompt("", base_prompt="BASE")
        assert prompt.startswith("BASE")
        assert NO_KNOWLEDGE_NOTE in prompt

    def test_messages(self):
        assert build_messages("hi") == [{"role": "user", "content": "hi"}]

"""
Offline console demo: runs the dialogue core without any API keys.

Uses the real orchestrator, state machine, retriever and price guardrail
with an in-memory session store, an in-memory knowledge base and a
keyword "model". No Redis, no OpenAI, no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario booking
    python console_demo.py --scenario guardrail
"""

import argparse
import asyncio
import re
from typing import Any, Optional

from btrix_bot.config import settings
from btrix_bot.conversation import DialogueOrchestrator
from btrix_bot.evaluation import LearningLoop, MetricsCollector, format_report
from btrix_bot.retrieval import KnowledgeRetriever
from btrix_bot.schemas.booking_schema import BookingConfirmation
from btrix_bot.schemas.knowledge_schema import KnowledgeChunk
from btrix_bot.session import InMemorySessionStore
from btrix_bot.tools.knowledge_base import InMemoryVectorBackend
from btrix_bot.tools.llm import Completion

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

VOCABULARY = [
    "price", "cost", "setup", "month", "plan", "essential", "pro", "enterprise",
    "agent", "sales", "marketing", "whatsapp", "channel", "support", "human",
    "hours", "limit", "leads", "integration", "erp", "language",
]

KNOWLEDGE = [
    ("pricing-packs", "pricing.md", "Packs", {"pricing", "packs"},
     "The Essential pack costs €1,400 setup + €300/month. The Pro pack costs "
     "€2,200 setup + €550/month. Enterprise starts from €3,500 setup + €900/month."),
    ("channels", "product.md", "Channels", {"enterprise"},
     "BTRIX answers on WhatsApp, website chat, email and Instagram/Facebook. "
     "ERP integration is available on Enterprise."),
    ("support-hours", "support.md", "Support", {"support"},
     "The AI answers 24/7. Human support is available during business hours."),
    ("limits", "limits.md", "Lead limits", {"limits"},
     "Essential handles up to 100 leads per month, Pro up to 500."),
]


def _demo_embedding(text: str) -> list[float]:
    words = re.findall(r"\w+", text.lower())
    return [float(sum(1 for w in words if w.startswith(term))) for term in VOCABULARY]


class OfflineProvider:
    """Keyword embeddings and an extractive "completion" over the context."""

    def __init__(self, forced_reply: Optional[str] = None) -> None:
        self.forced_reply = forced_reply

    async def embed(self, text: str) -> list[float]:
        return _demo_embedding(text)

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Completion:
        if self.forced_reply:
            return Completion(text=self.forced_reply)
        match = re.search(r"\[Source: [^\]]*\]\n(.+?)\n", system_prompt)
        if not match:
            return Completion(text="I don't have that specific information in my knowledge base.")
        return Completion(text=match.group(1))


class DemoPrinter:
    """Prints each turn and the resulting state."""

    def __init__(self) -> None:
        self.trace: list[str] = []

    def user(self, text: str) -> None:
        print(f"\n{BLUE}[User] {RESET}{text}")

    def bot(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[{settings.bot_name}]{RESET} {GREEN}{text}{RESET}")

    def system(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")


SCENARIOS: dict[str, list[str]] = {
    "booking": [
        "hi",
        "4",
        "Maria",
        "maria@acme.com",
        "+351 912 345 678",
        "Acme Lda",
        "11-50",
        "1",
        "More leads, mornings work best",
        "ok thanks",
    ],
    "pricing": [
        "hello",
        "1",
        "pro",
        "what does the setup cost?",
        "which channel works on whatsapp?",
        "what's the weather like?",
        "menu",
    ],
    "support": [
        "hi",
        "3",
        "do you answer outside business hours?",
        "I want a human",
        "ops@acme.com",
    ],
    "guardrail": [
        "hi",
        "1",
        "essential",
        "can I get a discount on the setup price?",
    ],
}

GUARDRAIL_DRAFT = "We could do around €1,200 setup for you, roughly €250/month."


def build_demo_orchestrator(scenario: str) -> DialogueOrchestrator:
    metrics = MetricsCollector()
    provider = OfflineProvider(GUARDRAIL_DRAFT if scenario == "guardrail" else None)
    backend = InMemoryVectorBackend(
        KnowledgeChunk(
            id=chunk_id,
            source=source,
            title=title,
            content=content,
            tags=frozenset(tags),
            embedding=_demo_embedding(f"{title} {content}"),
        )
        for chunk_id, source, title, tags, content in KNOWLEDGE
    )
    retriever = KnowledgeRetriever(provider, backend, metrics=metrics)
    return DialogueOrchestrator(
        store=InMemorySessionStore(),
        retriever=retriever,
        llm=provider,
        metrics=metrics,
    )


async def run_scenario(scenario: str) -> None:
    steps = SCENARIOS.get(scenario)
    if not steps:
        print(f"{RED}Unknown scenario: {scenario}{RESET}")
        return

    orchestrator = build_demo_orchestrator(scenario)
    printer = DemoPrinter()
    session_id = f"demo-{scenario}"

    print()
    print(f"{BOLD}{'=' * 60}{RESET}")
    print(f"{BOLD}  {settings.bot_name} DIALOGUE CORE - Scenario: {scenario}{RESET}")
    print(f"{BOLD}{'=' * 60}{RESET}")

    for step in steps:
        printer.user(step)
        reply = await orchestrator.handle_turn(session_id, step)
        printer.bot(reply.message)
        printer.system(f"State: {reply.next_state.value}  language={reply.language}"
                       + ("  (retrieval)" if reply.used_retrieval else ""))
        printer.trace.append(reply.next_state.value)

    if scenario == "booking":
        print(f"\n{YELLOW}[Calendar] booking confirmed{RESET}")
        reply = await orchestrator.confirm_booking(session_id, BookingConfirmation(
            booking_id="bk_demo_1",
            start_datetime="2026-11-03T10:00:00",
            timezone="Europe/Lisbon",
            status="confirmed",
        ))
        printer.bot(reply.message)
        printer.trace.append(reply.next_state.value)

    print(f"\n{BOLD}{'=' * 60}{RESET}")
    print(f"{BOLD}  Scenario '{scenario}' complete.{RESET}")
    print(f"{DIM}  State trace: {' -> '.join(printer.trace)}{RESET}")
    print(f"{BOLD}{'=' * 60}{RESET}")
    print(format_report(LearningLoop(orchestrator.metrics).generate_report()))


async def run_interactive() -> None:
    orchestrator = build_demo_orchestrator("interactive")
    printer = DemoPrinter()

    print()
    print(f"{BOLD}{'=' * 60}{RESET}")
    print(f"{BOLD}  {settings.bot_name} DIALOGUE CORE - Console Demo{RESET}")
    print(f"{BOLD}  Type 'quit' to exit{RESET}")
    print(f"{BOLD}{'=' * 60}{RESET}")

    while True:
        user_input = input(f"\n{BLUE}[User] {RESET}").strip()
        if not user_input:
            continue
        if user_input.lower() in ("quit", "exit", "q"):
            print(f"\n{DIM}Session ended.{RESET}")
            return
        reply = await orchestrator.handle_turn("console", user_input)
        printer.bot(reply.message)
        printer.system(f"State: {reply.next_state.value}  language={reply.language}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Offline dialogue core demo")
    parser.add_argument(
        "--scenario",
        choices=list(SCENARIOS.keys()),
        help="Run a pre-scripted scenario instead of interactive mode",
    )
    args = parser.parse_args()

    if args.scenario:
        asyncio.run(run_scenario(args.scenario))
    else:
        asyncio.run(run_interactive())

"""
Chat entry point for the dialogue core.

Wires the orchestrator to Redis, OpenAI, the Supabase knowledge base and
the n8n webhook, then runs a text chat loop in the terminal.

Usage:
    Live services:  python main.py chat [--session-id ID]
    Offline demo:   python main.py console
    Metrics file:   python main.py chat --metrics-out metrics.json
"""

import argparse
import asyncio
import logging
import uuid
from typing import Optional

from btrix_bot.config import settings

logger = logging.getLogger(__name__)


def build_orchestrator():
    """Build an orchestrator backed by the configured external services."""
    from btrix_bot.conversation import DialogueOrchestrator
    from btrix_bot.evaluation import MetricsCollector
    from btrix_bot.retrieval import KnowledgeRetriever
    from btrix_bot.session import SessionStore, get_redis_client
    from btrix_bot.tools.knowledge_base import SupabaseVectorBackend
    from btrix_bot.tools.llm import OpenAIProvider
    from btrix_bot.tools.notifier import build_notifier

    metrics = MetricsCollector()
    llm = OpenAIProvider()
    retriever = KnowledgeRetriever(llm, SupabaseVectorBackend(), metrics=metrics)
    return DialogueOrchestrator(
        store=SessionStore(get_redis_client()),
        retriever=retriever,
        llm=llm,
        notifier=build_notifier(settings.webhook),
        metrics=metrics,
    )


async def _chat(session_id: str, metrics_out: Optional[str]) -> None:
    orchestrator = build_orchestrator()
    logger.info("Chat session started: %s", session_id)
    print(f"{settings.bot_name} chat (session {session_id}). Type 'quit' to exit.")

    try:
        while True:
            text = (await asyncio.to_thread(input, "\n> ")).strip()
            if not text:
                continue
            if text.lower() in ("quit", "exit", "q"):
                break
            reply = await orchestrator.handle_turn(session_id, text)
            print(f"\n{reply.message}")
    finally:
        drain = getattr(orchestrator.notifier, "drain", None)
        if drain is not None:
            await drain()
        if metrics_out:
            orchestrator.metrics.save(metrics_out)


def _run_console_mode() -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import run_interactive

    asyncio.run(run_interactive())


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=f"{settings.bot_name} dialogue core")
    parser.add_argument("mode", nargs="?", choices=["chat", "console"], default="chat")
    parser.add_argument("--session-id", default=None, help="Resume an existing session")
    parser.add_argument("--metrics-out", default=None, help="Write a metrics snapshot on exit")
    args = parser.parse_args()

    if args.mode == "console":
        _run_console_mode()
    else:
        asyncio.run(_chat(args.session_id or uuid.uuid4().hex, args.metrics_out))

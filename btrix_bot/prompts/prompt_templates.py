"""Dynamic prompt construction for retrieval-augmented replies."""

from typing import Optional

from btrix_bot.language import get_language_instruction
from btrix_bot.prompts.system_prompts import BASE_SYSTEM_PROMPT

NO_KNOWLEDGE_NOTE = (
    "No specific knowledge was retrieved for this query. Provide a helpful general "
    "response and offer to schedule a demo for detailed information."
)


def build_knowledge_section(context: str) -> str:
    if context:
        return (
            "\n## Relevant Knowledge\n\n"
            "Use the following information to answer the user's question:\n\n"
            f"{context}"
        )
    return f"\n## Note\n\n{NO_KNOWLEDGE_NOTE}"


def build_rag_system_prompt(
    context: str,
    language: str = "en",
    base_prompt: Optional[str] = None,
) -> str:
    """Base rules + retrieved knowledge (or a no-knowledge note) + language instruction."""
    parts = [
        base_prompt or BASE_SYSTEM_PROMPT,
        build_knowledge_section(context),
        f"\n\n## Language\n\n{get_language_instruction(language)}",
    ]
    return "\n".join(parts)


def build_messages(user_message: str) -> list[dict[str, str]]:
    """Message history for the model: the current user message only."""
    return [{"role": "user", "content": user_message}]

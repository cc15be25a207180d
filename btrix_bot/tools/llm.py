"""Language-model provider used for query embeddings and reply generation."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from openai import AsyncOpenAI

from btrix_bot.config import ModelConfig, settings

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """A model reply: text plus any tool calls it requested."""
    text: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


class LLMProvider(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Completion: ...


class OpenAIProvider:
    """LLMProvider backed by the OpenAI API."""

    def __init__(
        self,
        config: Optional[ModelConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.config = config or settings.model
        self.client = client or AsyncOpenAI(api_key=self.config.openai_api_key or None)

    async def embed(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(
            model=self.config.embedding_model,
            input=text,
        )
        return list(response.data[0].embedding)

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Completion:
        kwargs: dict[str, Any] = {
            "model": self.config.llm_model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": self.config.llm_temperature,
            "max_tokens": self.config.llm_max_tokens,
        }
        if tools:
            kwargs["tools"] = tools

        response = await self.client.chat.completions.create(**kwargs)
        message = response.choices[0].message
        tool_calls = [
            {"id": call.id, "name": call.function.name, "arguments": call.function.arguments}
            for call in (message.tool_calls or [])
        ]
        logger.debug("Completion received (%d tool calls)", len(tool_calls))
        return Completion(text=message.content or "", tool_calls=tool_calls)

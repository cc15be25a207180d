"""
Outbound notifications to the automation webhook (n8n).

``notify()`` schedules delivery in the background and returns at once, so
a slow or failing webhook never delays or fails a reply. Delivery retries
with exponential backoff; on exhaustion the failure is logged only.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from btrix_bot.config import WebhookConfig, settings

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a webhook delivery fails after all retries."""


class Notifier(Protocol):
    def notify(self, event: str, payload: dict[str, Any]) -> None: ...


class NullNotifier:
    """Used when no webhook URL is configured."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.debug("Notifications disabled, dropping '%s'", event)

    async def drain(self) -> None:
        return None


class WebhookNotifier:
    """POSTs ``{event, timestamp, ...payload}`` to a webhook URL."""

    def __init__(
        self,
        config: Optional[WebhookConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        wait: Optional[wait_base] = None,
    ) -> None:
        self.config = config or settings.webhook
        if not self.config.url:
            raise ValueError("N8N_WEBHOOK_URL must be set to use WebhookNotifier")
        self.client = client or httpx.AsyncClient(timeout=self.config.timeout_sec)
        self.wait = wait or wait_exponential(multiplier=1, min=1, max=10)
        self._tasks: set[asyncio.Task] = set()

    @staticmethod
    def build_body(event: str, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload,
        }

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver one event, retrying on HTTP errors.

        Raises:
            NotificationError: If every attempt failed.
        """
        body = self.build_body(event, payload)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(self.config.retries, 1)),
                wait=self.wait,
                retry=retry_if_exception_type(httpx.HTTPError),
                reraise=True,
            ):
                with attempt:
                    response = await self.client.post(self.config.url, json=body)
                    response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook delivery failed for '{event}': {e}") from e
        logger.info("Webhook delivered: %s", event)

    async def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        try:
            await self.send(event, payload)
        except NotificationError as e:
            logger.error("%s", e)

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        """Schedule delivery and return immediately."""
        task = asyncio.create_task(self._deliver(event, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        await self.drain()
        await self.client.aclose()


def build_notifier(config: Optional[WebhookConfig] = None) -> Notifier:
    """WebhookNotifier when a URL is configured, NullNotifier otherwise."""
    config = config or settings.webhook
    if config.url:
        return WebhookNotifier(config)
    return NullNotifier()

"""Fire-and-forget outbound webhooks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from mortgagepro.config import Settings

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts JSON payloads in the background and logs only the outcome."""

    def __init__(
        self,
        url: str | None,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._tasks: set[asyncio.Task[bool]] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> WebhookNotifier:
        """Notifier for the lender document upload webhook."""
        return cls(settings.lender_document_webhook_url, timeout=settings.request_timeout)

    def notify(self, payload: dict[str, Any]) -> asyncio.Task[bool] | None:
        """Schedule a POST of payload; returns the task, or None without a URL."""
        if not self.url:
            logger.debug("No webhook URL configured; skipping notification")
            return None
        task = asyncio.create_task(self.send(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def send(self, payload: dict[str, Any]) -> bool:
        """POST payload now. Returns True on a 2xx response, never raises."""
        if not self.url:
            return False
        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Webhook %s failed: %s", self.url, exc)
            return False
        if not response.is_success:
            logger.warning("Webhook %s returned HTTP %s", self.url, response.status_code)
            return False
        logger.info("Webhook %s delivered", self.url)
        return True

    async def wait(self) -> None:
        """Wait for every scheduled notification to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait()
        await self._client.aclose()


__all__ = ["WebhookNotifier"]

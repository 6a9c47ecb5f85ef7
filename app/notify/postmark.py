"""Postmark e-mail delivery."""
from __future__ import annotations

import asyncio
import logging

import httpx

from app.notify.base import NotificationError, Notifier

logger = logging.getLogger(__name__)


class PostmarkNotifier(Notifier):
    name = "postmark"

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        api_base: str = "https://api.postmarkapp.com",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def send(self, address: str, subject: str, body: str) -> None:
        """Hand one message to Postmark; never takes longer than ``timeout`` seconds."""
        message = {"From": self.sender, "To": address, "Subject": subject, "HtmlBody": body}
        headers = {"X-Postmark-Server-Token": self.api_key, "Accept": "application/json"}
        try:
            res = await asyncio.wait_for(
                self._client.post(f"{self.api_base}/email", headers=headers, json=message, timeout=self.timeout),
                self.timeout,
            )
            res.raise_for_status()
        except asyncio.TimeoutError as exc:
            raise NotificationError(f"Postmark send to {address} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise NotificationError(f"Postmark send to {address} failed: {exc}") from exc
        logger.info("Sent '%s' to %s", subject, address)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

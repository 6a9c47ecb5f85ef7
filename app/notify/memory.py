from __future__ import annotations

from app.notify.base import Notifier


class OutboxNotifier(Notifier):
    """Keeps sent messages in a list instead of delivering them."""

    name = "outbox"

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_with = fail_with

    async def send(self, address: str, subject: str, body: str) -> None:
        if self.fail_with:
            raise self.fail_with
        self.sent.append((address, subject, body))

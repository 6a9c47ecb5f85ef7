from __future__ import annotations

from abc import ABC, abstractmethod


class NotificationError(RuntimeError):
    """Raised when a message could not be handed to the mail provider."""


class Notifier(ABC):
    name: str

    @abstractmethod
    async def send(self, address: str, subject: str, body: str) -> None:
        raise NotImplementedError

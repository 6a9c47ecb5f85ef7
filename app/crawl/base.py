from __future__ import annotations

from abc import ABC, abstractmethod

from app.models import CrawlHandle, CrawlOutcome


class CrawlServiceError(RuntimeError):
    """Raised when the crawl service rejects a call or cannot be reached."""


class CrawlClient(ABC):
    name: str

    @abstractmethod
    async def create(self, url: str, profile: str | None = None) -> CrawlHandle:
        raise NotImplementedError

    @abstractmethod
    async def status(self, handle: CrawlHandle) -> CrawlOutcome:
        raise NotImplementedError

    @abstractmethod
    async def fetch(self, handle: CrawlHandle) -> bytes:
        raise NotImplementedError

    @abstractmethod
    async def replay_url(self, job_run_id: str) -> str:
        raise NotImplementedError

from __future__ import annotations

import uuid
from collections.abc import Iterable

from app.crawl.base import CrawlClient, CrawlServiceError
from app.models import CrawlHandle, CrawlOutcome


class ScriptedCrawlClient(CrawlClient):
    """In-process crawl service that replays a fixed sequence of statuses.

    Each entry in ``statuses`` answers one status call; an Exception instance
    is raised instead of returned. Once the script runs out the last entry
    repeats. Used for local runs without Browsertrix and in tests.
    """

    name = "memory"

    def __init__(
        self,
        statuses: Iterable[CrawlOutcome | Exception] = (CrawlOutcome.COMPLETE,),
        payload: bytes = b"PK\x03\x04wacz",
        *,
        create_error: Exception | None = None,
        fetch_error: Exception | None = None,
    ) -> None:
        self._statuses = list(statuses) or [CrawlOutcome.COMPLETE]
        self.payload = payload
        self.create_error = create_error
        self.fetch_error = fetch_error
        self.calls: list[str] = []

    async def create(self, url: str, profile: str | None = None) -> CrawlHandle:
        self.calls.append("create")
        if self.create_error:
            raise self.create_error
        return CrawlHandle(crawl_id=str(uuid.uuid4()), job_run_id=f"manual-{uuid.uuid4().hex[:12]}")

    async def status(self, handle: CrawlHandle) -> CrawlOutcome:
        index = self.calls.count("status")
        self.calls.append("status")
        outcome = self._statuses[min(index, len(self._statuses) - 1)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch(self, handle: CrawlHandle) -> bytes:
        self.calls.append("fetch")
        if self.fetch_error:
            raise self.fetch_error
        return self.payload

    async def replay_url(self, job_run_id: str) -> str:
        if not job_run_id:
            raise CrawlServiceError("job_run_id is required")
        return f"memory://crawls/{job_run_id}.wacz"

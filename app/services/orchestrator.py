"""
Crawl orchestrator: the archive saga.

    initiating -> polling -> fetching -> persisting -> recording -> notifying

Every step talks to a different external system and none of them share a
transaction, so the order of side effects is what keeps the catalog honest:
a record is written only after its WACZ is confirmed in the object store.
Failures never leave this module; they are classified and logged.

A catalog write that fails after a successful upload leaves an orphan object
in the bucket. That case is logged at CRITICAL and has to be reconciled by
hand.
"""
from __future__ import annotations

import asyncio
import html
import logging
from typing import Awaitable, Callable

from app.catalog.base import CatalogWriter, DuplicateRecordError
from app.crawl.base import CrawlClient
from app.models import (
    WACZ_CONTENT_TYPE,
    ArchivedRecord,
    ArchiveRequest,
    CrawlHandle,
    CrawlOutcome,
    FailureKind,
    SagaResult,
    SagaState,
    new_storage_key,
)
from app.notify.base import Notifier
from app.storage.base import ArtifactStore

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class CrawlOrchestrator:
    def __init__(
        self,
        crawler: CrawlClient,
        store: ArtifactStore,
        catalog: CatalogWriter,
        notifier: Notifier,
        *,
        poll_interval: float = 60.0,
        max_attempts: int = 30,
        org_id: str = "",
        public_base_url: str = "",
        sleep: Sleep = asyncio.sleep,
        key_factory: Callable[[], str] = new_storage_key,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.crawler = crawler
        self.store = store
        self.catalog = catalog
        self.notifier = notifier
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.org_id = org_id
        self.public_base_url = public_base_url.rstrip("/")
        self._sleep = sleep
        self._key_factory = key_factory

    # ------------------------------------------------------------------
    # state bookkeeping
    # ------------------------------------------------------------------
    @staticmethod
    def _enter(result: SagaResult, state: SagaState) -> None:
        if result.state.terminal:
            raise RuntimeError(f"Saga already terminated in {result.state.value}")
        result.state = state
        result.history.append(state)

    def _fail(self, result: SagaResult, kind: FailureKind) -> SagaResult:
        self._enter(result, SagaState.FAILED)
        result.failure = kind
        return result

    # ------------------------------------------------------------------
    # saga
    # ------------------------------------------------------------------
    async def run(self, request: ArchiveRequest) -> SagaResult:
        result = SagaResult(state=SagaState.INITIATING, history=[SagaState.INITIATING])
        url = request.url

        try:
            handle = await self.crawler.create(url, request.browser_profile)
        except Exception as exc:
            logger.error("Error launching crawl for %s: %s", url, exc)
            return self._fail(result, FailureKind.BEFORE_ARTIFACT)
        result.handle = handle
        logger.info("Launched crawl %s (job %s) for %s", handle.crawl_id, handle.job_run_id, url)

        self._enter(result, SagaState.POLLING)
        if not await self._poll(handle, url, result):
            logger.error(
                "Crawl %s for %s not complete after %d attempts, giving up",
                handle.job_run_id, url, result.poll_attempts,
            )
            return self._fail(result, FailureKind.BEFORE_ARTIFACT)

        self._enter(result, SagaState.FETCHING)
        try:
            artifact = await self.crawler.fetch(handle)
        except Exception as exc:
            logger.error("Error downloading WACZ for crawl %s (%s): %s", handle.job_run_id, url, exc)
            return self._fail(result, FailureKind.BEFORE_ARTIFACT)

        self._enter(result, SagaState.PERSISTING)
        key = self._key_factory()
        try:
            await self.store.upload(key, artifact, WACZ_CONTENT_TYPE)
        except Exception as exc:
            logger.error(
                "Error uploading WACZ %s for crawl %s (%s), crawl result abandoned: %s",
                key, handle.job_run_id, url, exc,
            )
            return self._fail(result, FailureKind.AFTER_ARTIFACT)
        result.storage_key = key

        self._enter(result, SagaState.RECORDING)
        record = ArchivedRecord(request=request, handle=handle, storage_key=key, org_id=self.org_id)
        try:
            record_id = await self.catalog.write_record(record)
        except DuplicateRecordError as exc:
            logger.critical(
                "Orphaned artifact %s: duplicate catalog entry for crawl %s (%s): %s",
                key, handle.job_run_id, url, exc,
            )
            return self._fail(result, FailureKind.ORPHAN)
        except Exception as exc:
            logger.critical(
                "Orphaned artifact %s: catalog write failed for crawl %s (%s): %s",
                key, handle.job_run_id, url, exc,
            )
            return self._fail(result, FailureKind.ORPHAN)
        result.record_id = record_id
        logger.info("Recorded accession %s for %s", record_id, url)

        # The archive is durable from here on; notification cannot undo it.
        self._enter(result, SagaState.NOTIFYING)
        await self._notify(request, record_id)
        self._enter(result, SagaState.SUCCEEDED)
        return result

    async def _poll(self, handle: CrawlHandle, url: str, result: SagaResult) -> bool:
        attempt = 0
        while attempt < self.max_attempts:
            attempt += 1
            result.poll_attempts = attempt
            logger.info("Polled %d time(s) for %s", attempt, url)
            try:
                outcome = await self.crawler.status(handle)
            except Exception as exc:
                logger.warning(
                    "Invalid crawl status for %s, trying again in %ss: %s",
                    handle.crawl_id, self.poll_interval, exc,
                )
                outcome = CrawlOutcome.PENDING

            if outcome is CrawlOutcome.COMPLETE:
                logger.info(
                    "Crawl %s complete after %d poll(s), ~%ss",
                    handle.job_run_id, attempt, (attempt - 1) * self.poll_interval,
                )
                return True
            if attempt < self.max_attempts:
                await self._sleep(self.poll_interval)
        return False

    async def _notify(self, request: ArchiveRequest, record_id: int) -> None:
        subject, body = self._compose(request, record_id)
        try:
            await self.notifier.send(request.requester_email, subject, body)
        except Exception as exc:
            logger.warning("Could not notify %s about accession %s: %s", request.requester_email, record_id, exc)

    def _compose(self, request: ArchiveRequest, record_id: int) -> tuple[str, str]:
        subject = f"Archived: {request.title}"
        link = f"{self.public_base_url}/archive/{record_id}" if self.public_base_url else ""
        body = (
            f"<p>Your archive of <a href=\"{html.escape(request.url)}\">{html.escape(request.url)}</a> "
            f"is complete.</p>"
            f"<p><strong>{html.escape(request.title)}</strong> (record #{record_id})</p>"
        )
        if link:
            body += f"<p><a href=\"{link}\">View the archived record</a></p>"
        return subject, body


__all__ = ["CrawlOrchestrator"]

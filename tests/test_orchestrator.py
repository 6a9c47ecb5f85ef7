from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import pytest

from app.catalog.base import CatalogError, DuplicateRecordError
from app.catalog.memory import InMemoryCatalog
from app.crawl.base import CrawlServiceError
from app.crawl.memory import ScriptedCrawlClient
from app.models import ArchiveRequest, CrawlOutcome, FailureKind, MetadataLanguage, SagaResult, SagaState
from app.notify.base import NotificationError
from app.notify.memory import OutboxNotifier
from app.services.orchestrator import CrawlOrchestrator
from app.storage.base import StorageError
from app.storage.memory import InMemoryArtifactStore

PENDING = CrawlOutcome.PENDING
COMPLETE = CrawlOutcome.COMPLETE


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _request(**overrides) -> ArchiveRequest:
    fields = dict(
        url="https://example.com/story",
        language=MetadataLanguage.ENGLISH,
        title="  A story  ",
        description=" about things ",
        subjects=[1, 2],
        requester_email="researcher@example.org",
        metadata_time=datetime(2025, 1, 10, 12, 0),
    )
    fields.update(overrides)
    return ArchiveRequest.build(**fields)


def _build(crawler=None, store=None, catalog=None, notifier=None, **kw):
    sleep = FakeSleep()
    orch = CrawlOrchestrator(
        crawler or ScriptedCrawlClient(),
        store or InMemoryArtifactStore(),
        catalog or InMemoryCatalog(),
        notifier or OutboxNotifier(),
        sleep=sleep,
        **kw,
    )
    return orch, sleep


def test_request_build_trims_metadata():
    req = _request()
    assert req.title == "A story"
    assert req.description == "about things"
    assert req.subjects == frozenset({1, 2})
    assert _request(description=None).description is None


def test_complete_on_first_poll_runs_whole_saga_without_sleeping():
    payload = b"x" * 1024
    crawler = ScriptedCrawlClient([COMPLETE], payload=payload)
    store, catalog, notifier = InMemoryArtifactStore(), InMemoryCatalog(), OutboxNotifier()
    orch, sleep = _build(crawler, store, catalog, notifier, key_factory=lambda: "K1")

    result = asyncio.run(orch.run(_request()))

    assert result.state is SagaState.SUCCEEDED
    assert result.failure is None
    assert result.history == [
        SagaState.INITIATING,
        SagaState.POLLING,
        SagaState.FETCHING,
        SagaState.PERSISTING,
        SagaState.RECORDING,
        SagaState.NOTIFYING,
        SagaState.SUCCEEDED,
    ]
    assert sleep.calls == []
    assert store.objects["K1"] == (payload, "application/wacz")
    assert result.storage_key == "K1"
    row = catalog.rows[result.record_id]
    assert row["s3_filename"] == "K1"
    assert row["metadata_title"] == "A story"
    assert row["crawl_status"] == "complete"
    assert row["job_run_id"] == result.handle.job_run_id
    assert len(notifier.sent) == 1
    address, subject, body = notifier.sent[0]
    assert address == "researcher@example.org"
    assert "A story" in subject
    assert f"#{result.record_id}" in body


def test_five_pending_polls_sleep_five_times_before_fetch():
    crawler = ScriptedCrawlClient([PENDING] * 5 + [COMPLETE])
    orch, sleep = _build(crawler)

    result = asyncio.run(orch.run(_request()))

    assert result.succeeded
    assert result.poll_attempts == 6
    assert sleep.calls == [60.0] * 5
    assert crawler.calls == ["create"] + ["status"] * 6 + ["fetch"]


def test_polling_exhausted_stops_before_any_side_effect():
    crawler = ScriptedCrawlClient([PENDING])
    store, catalog, notifier = InMemoryArtifactStore(), InMemoryCatalog(), OutboxNotifier()
    orch, sleep = _build(crawler, store, catalog, notifier)

    result = asyncio.run(orch.run(_request()))

    assert result.state is SagaState.FAILED
    assert result.failure is FailureKind.BEFORE_ARTIFACT
    assert result.poll_attempts == 30
    assert crawler.calls.count("status") == 30
    assert "fetch" not in crawler.calls
    # no sleep after the last attempt
    assert len(sleep.calls) == 29
    assert store.objects == {}
    assert catalog.rows == {}
    assert notifier.sent == []


def test_status_errors_are_retried_like_pending():
    boom = CrawlServiceError("connection reset")
    crawler = ScriptedCrawlClient([boom, boom, boom, COMPLETE])
    orch, sleep = _build(crawler)

    result = asyncio.run(orch.run(_request()))

    assert result.succeeded
    assert len(sleep.calls) == 3


def test_status_errors_until_budget_runs_out():
    crawler = ScriptedCrawlClient([CrawlServiceError("down")])
    orch, sleep = _build(crawler, max_attempts=4, poll_interval=5)

    result = asyncio.run(orch.run(_request()))

    assert result.failure is FailureKind.BEFORE_ARTIFACT
    assert sleep.calls == [5, 5, 5]


def test_failed_remote_state_keeps_polling():
    crawler = ScriptedCrawlClient([CrawlOutcome.FAILED, COMPLETE])
    orch, _ = _build(crawler)

    assert asyncio.run(orch.run(_request())).succeeded


def test_create_failure_ends_saga(caplog):
    crawler = ScriptedCrawlClient(create_error=CrawlServiceError("401"))
    orch, sleep = _build(crawler)

    with caplog.at_level(logging.ERROR, logger="app.services.orchestrator"):
        result = asyncio.run(orch.run(_request()))

    assert result.history == [SagaState.INITIATING, SagaState.FAILED]
    assert result.failure is FailureKind.BEFORE_ARTIFACT
    assert crawler.calls == ["create"]
    assert sleep.calls == []
    assert any(r.levelno == logging.ERROR for r in caplog.records)


def test_fetch_failure_skips_upload():
    crawler = ScriptedCrawlClient([COMPLETE], fetch_error=CrawlServiceError("502"))
    store = InMemoryArtifactStore()
    orch, _ = _build(crawler, store)

    result = asyncio.run(orch.run(_request()))

    assert result.failure is FailureKind.BEFORE_ARTIFACT
    assert store.objects == {}


def test_upload_failure_never_touches_catalog(caplog):
    store = InMemoryArtifactStore(fail_with=StorageError("bucket gone"))
    catalog, notifier = InMemoryCatalog(), OutboxNotifier()
    orch, _ = _build(store=store, catalog=catalog, notifier=notifier)

    with caplog.at_level(logging.INFO, logger="app.services.orchestrator"):
        result = asyncio.run(orch.run(_request()))

    assert result.state is SagaState.FAILED
    assert result.failure is FailureKind.AFTER_ARTIFACT
    assert result.storage_key is None
    assert catalog.rows == {}
    assert notifier.sent == []
    levels = {r.levelno for r in caplog.records}
    assert logging.ERROR in levels
    assert logging.CRITICAL not in levels


def test_catalog_failure_is_logged_as_orphan(caplog):
    store = InMemoryArtifactStore()
    catalog = InMemoryCatalog(fail_with=CatalogError("connection refused"))
    notifier = OutboxNotifier()
    orch, _ = _build(store=store, catalog=catalog, notifier=notifier, key_factory=lambda: "K9")

    with caplog.at_level(logging.INFO, logger="app.services.orchestrator"):
        result = asyncio.run(orch.run(_request()))

    assert result.failure is FailureKind.ORPHAN
    assert "K9" in store.objects
    assert notifier.sent == []
    critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
    assert len(critical) == 1
    assert "K9" in critical[0].getMessage()
    assert "Orphaned artifact" in critical[0].getMessage()


def test_duplicate_record_is_an_orphan_too(caplog):
    catalog = InMemoryCatalog(fail_with=DuplicateRecordError("already there"))
    orch, _ = _build(catalog=catalog)

    with caplog.at_level(logging.CRITICAL, logger="app.services.orchestrator"):
        result = asyncio.run(orch.run(_request()))

    assert result.failure is FailureKind.ORPHAN
    assert "duplicate" in caplog.records[-1].getMessage()


def test_notification_failure_does_not_fail_saga(caplog):
    notifier = OutboxNotifier(fail_with=NotificationError("postmark 500"))
    catalog = InMemoryCatalog()
    orch, _ = _build(catalog=catalog, notifier=notifier)

    with caplog.at_level(logging.WARNING, logger="app.services.orchestrator"):
        result = asyncio.run(orch.run(_request()))

    assert result.state is SagaState.SUCCEEDED
    assert len(catalog.rows) == 1
    assert any("Could not notify" in r.getMessage() for r in caplog.records)


def test_record_is_written_only_after_upload_confirmed():
    store = InMemoryArtifactStore()

    class CheckingCatalog(InMemoryCatalog):
        async def write_record(self, record):
            assert record.storage_key in store.objects
            return await super().write_record(record)

    catalog = CheckingCatalog()
    orch, _ = _build(store=store, catalog=catalog)

    result = asyncio.run(orch.run(_request()))

    assert result.succeeded
    assert len(catalog.rows) == 1


def test_concurrent_sagas_get_distinct_keys():
    store = InMemoryArtifactStore()
    catalog = InMemoryCatalog()
    orch, _ = _build(store=store, catalog=catalog)

    async def run_many():
        return await asyncio.gather(*(orch.run(_request(url=f"https://example.com/{i}")) for i in range(25)))

    results = asyncio.run(run_many())

    assert all(r.succeeded for r in results)
    keys = {r.storage_key for r in results}
    assert len(keys) == 25
    assert set(store.objects) == keys
    assert len(catalog.rows) == 25


def test_terminal_state_is_absorbing():
    result = SagaResult(state=SagaState.SUCCEEDED)
    with pytest.raises(RuntimeError):
        CrawlOrchestrator._enter(result, SagaState.POLLING)


def test_rejects_empty_poll_budget():
    with pytest.raises(ValueError):
        _build(max_attempts=0)

import asyncio
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from app.catalog.memory import InMemoryCatalog
from app.crawl.memory import ScriptedCrawlClient
from app.dependencies import Services
from app.main import create_app
from app.models import ArchivedRecord, ArchiveRequest, CrawlHandle, MetadataLanguage
from app.notify.memory import OutboxNotifier
from app.schemas import CreateAccessionRequest
from app.services.orchestrator import CrawlOrchestrator
from app.storage.memory import InMemoryArtifactStore
from app.utils import is_valid_email, is_valid_url


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture()
def services():
    crawler = ScriptedCrawlClient()
    store = InMemoryArtifactStore()
    catalog = InMemoryCatalog(subjects={MetadataLanguage.ENGLISH: {1, 2, 3}})
    notifier = OutboxNotifier()
    orchestrator = CrawlOrchestrator(crawler, store, catalog, notifier, sleep=_no_sleep)
    return Services(
        crawler=crawler,
        store=store,
        catalog=catalog,
        reader=catalog,
        notifier=notifier,
        orchestrator=orchestrator,
    )


@pytest.fixture()
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def _payload(**overrides) -> dict:
    body = {
        "url": "https://www.theguardian.com/business/2025/jan/10/britain-energy-costs",
        "metadata_language": "english",
        "metadata_title": "Britain energy costs",
        "metadata_description": "Cold weather coverage",
        "metadata_time": "2025-01-10T12:00:00",
        "metadata_subjects": [1, 2],
        "is_private": False,
        "requester_email": "archiver@example.org",
    }
    body.update(overrides)
    return body


def test_valid_url():
    assert is_valid_url("https://example.com/post/1")


def test_invalid_url_scheme():
    assert not is_valid_url("ftp://example.com/file")


def test_invalid_url_netloc():
    assert not is_valid_url("https:///abc")


def test_email_check():
    assert is_valid_email("someone@example.org")
    assert not is_valid_email("someone")
    assert not is_valid_email("@example.org")


def test_create_accession_starts_crawl(client):
    response = client.post("/api/v1/accessions", json=_payload())
    assert response.status_code == 201
    assert response.json()["message"] == "Started browsertrix crawl task!"


def test_create_accession_without_description(client):
    response = client.post("/api/v1/accessions", json=_payload(metadata_description=None, browser_profile="facebook"))
    assert response.status_code == 201


def test_unknown_subjects_are_rejected(client, services):
    response = client.post("/api/v1/accessions", json=_payload(metadata_subjects=[1, 99]))
    assert response.status_code == 400
    assert services.crawler.calls == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"url": "not a url"},
        {"metadata_title": ""},
        {"metadata_subjects": []},
        {"requester_email": "nobody"},
        {"browser_profile": "myspace"},
        {"metadata_title": "   "},
        {"metadata_description": " \t "},
    ],
)
def test_invalid_payloads_are_rejected(client, overrides):
    response = client.post("/api/v1/accessions", json=_payload(**overrides))
    assert response.status_code == 422


def test_get_accession_returns_signed_url(client, services):
    request = ArchiveRequest.build(
        url="https://example.com",
        language=MetadataLanguage.ENGLISH,
        title="Example",
        requester_email="a@example.org",
        metadata_time=datetime(2025, 1, 1),
    )
    record = ArchivedRecord(request=request, handle=CrawlHandle("cfg", "job"), storage_key="K1.wacz")

    async def seed():
        await services.store.upload("K1.wacz", b"wacz", "application/wacz")
        return await services.catalog.write_record(record)

    record_id = asyncio.run(seed())

    response = client.get(f"/api/v1/accessions/{record_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["accession"]["s3_filename"] == "K1.wacz"
    assert body["wacz_url"].startswith("memory://K1.wacz?expires=")


def test_get_missing_accession(client):
    assert client.get("/api/v1/accessions/404").status_code == 404


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_title_is_stored_trimmed():
    payload = CreateAccessionRequest(**_payload(metadata_title="  Padded title \n"))
    assert payload.metadata_title == "Padded title"
    assert payload.to_archive_request().title == "Padded title"


def test_private_accession_is_hidden(client, services):
    request = ArchiveRequest.build(
        url="https://example.com/private",
        language=MetadataLanguage.ENGLISH,
        title="Private",
        requester_email="a@example.org",
        metadata_time=datetime(2025, 1, 1),
        is_private=True,
    )
    record = ArchivedRecord(request=request, handle=CrawlHandle("cfg-p", "job-p"), storage_key="P1.wacz")

    async def seed():
        await services.store.upload("P1.wacz", b"wacz", "application/wacz")
        return await services.catalog.write_record(record)

    record_id = asyncio.run(seed())

    assert services.catalog.rows[record_id]["is_private"] is True
    assert client.get(f"/api/v1/accessions/{record_id}").status_code == 404

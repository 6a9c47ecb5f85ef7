from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

WACZ_CONTENT_TYPE = "application/wacz"


class MetadataLanguage(str, Enum):
    ENGLISH = "english"
    ARABIC = "arabic"


class CrawlOutcome(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class SagaState(str, Enum):
    INITIATING = "initiating"
    POLLING = "polling"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    RECORDING = "recording"
    NOTIFYING = "notifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SagaState.SUCCEEDED, SagaState.FAILED)


class FailureKind(str, Enum):
    BEFORE_ARTIFACT = "before_artifact"   # create, polling exhausted, fetch
    AFTER_ARTIFACT = "after_artifact"     # upload
    ORPHAN = "orphan"                     # catalog write after a stored upload


@dataclass(frozen=True)
class ArchiveRequest:
    url: str
    language: MetadataLanguage
    title: str
    requester_email: str
    metadata_time: datetime
    subjects: frozenset[int] = frozenset()
    description: str | None = None
    is_private: bool = False
    browser_profile: str | None = None

    @classmethod
    def build(cls, **kwargs) -> "ArchiveRequest":
        """Trim free-text metadata once, before the request is frozen."""
        kwargs["title"] = kwargs["title"].strip()
        description = kwargs.get("description")
        kwargs["description"] = description.strip() if description is not None else None
        kwargs["subjects"] = frozenset(kwargs.get("subjects") or ())
        return cls(**kwargs)


@dataclass(frozen=True)
class CrawlHandle:
    crawl_id: str
    job_run_id: str


@dataclass(frozen=True)
class ArchivedRecord:
    request: ArchiveRequest
    handle: CrawlHandle
    storage_key: str
    org_id: str = ""
    crawl_status: str = "complete"

    def to_params(self) -> dict:
        req = self.request
        return {
            "url": req.url,
            "metadata_language": req.language.value,
            "metadata_title": req.title,
            "metadata_description": req.description,
            "metadata_time": req.metadata_time.isoformat(),
            "metadata_subjects": sorted(req.subjects),
            "is_private": req.is_private,
            "browser_profile": req.browser_profile,
            "org_id": self.org_id,
            "crawl_id": self.handle.crawl_id,
            "job_run_id": self.handle.job_run_id,
            "crawl_status": self.crawl_status,
            "s3_filename": self.storage_key,
        }


@dataclass
class SagaResult:
    state: SagaState
    failure: FailureKind | None = None
    handle: CrawlHandle | None = None
    storage_key: str | None = None
    record_id: int | None = None
    poll_attempts: int = 0
    history: list[SagaState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is SagaState.SUCCEEDED


def new_storage_key() -> str:
    return f"{uuid.uuid4()}.wacz"

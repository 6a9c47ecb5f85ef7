from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from app.models import ArchivedRecord, MetadataLanguage


class CatalogError(RuntimeError):
    """Raised when the catalog write or lookup fails."""


class DuplicateRecordError(CatalogError):
    """The record collides with an existing catalog entry."""


class CatalogWriter(ABC):
    @abstractmethod
    async def write_record(self, record: ArchivedRecord) -> int:
        """Persist ``record`` atomically and return its id."""
        raise NotImplementedError


class CatalogReader(ABC):
    @abstractmethod
    async def subjects_exist(self, subject_ids: Iterable[int], language: MetadataLanguage) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def get_accession(self, accession_id: int) -> dict | None:
        raise NotImplementedError

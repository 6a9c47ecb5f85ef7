from __future__ import annotations

from collections.abc import Iterable

from app.catalog.base import CatalogReader, CatalogWriter, DuplicateRecordError
from app.models import ArchivedRecord, MetadataLanguage


class InMemoryCatalog(CatalogWriter, CatalogReader):
    def __init__(
        self,
        subjects: dict[MetadataLanguage, set[int]] | None = None,
        fail_with: Exception | None = None,
    ) -> None:
        self.subjects = subjects or {}
        self.fail_with = fail_with
        self.rows: dict[int, dict] = {}

    async def write_record(self, record: ArchivedRecord) -> int:
        if self.fail_with:
            raise self.fail_with
        row = record.to_params()
        if any(existing["job_run_id"] == row["job_run_id"] for existing in self.rows.values()):
            raise DuplicateRecordError(f"Accession for crawl {row['job_run_id']} already exists")
        record_id = len(self.rows) + 1
        self.rows[record_id] = {"id": record_id, **row}
        return record_id

    async def subjects_exist(self, subject_ids: Iterable[int], language: MetadataLanguage) -> bool:
        known = self.subjects.get(language, set())
        return all(subject_id in known for subject_id in subject_ids)

    async def get_accession(self, accession_id: int) -> dict | None:
        return self.rows.get(accession_id)

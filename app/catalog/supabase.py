"""
Catalog stored in Postgres behind PostgREST.

``create_accession`` is a SQL function that inserts the metadata row, the
subject links and the accession row; PostgREST wraps each RPC call in one
transaction, so the write is all-or-nothing.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import httpx

from app.catalog.base import CatalogError, CatalogReader, CatalogWriter, DuplicateRecordError
from app.models import ArchivedRecord, MetadataLanguage
from app.storage.supabase import SupabaseClient

UNIQUE_VIOLATION = "23505"

SUBJECT_TABLES = {
    MetadataLanguage.ENGLISH: "dublin_metadata_subject_en",
    MetadataLanguage.ARABIC: "dublin_metadata_subject_ar",
}


def _is_duplicate(exc: httpx.HTTPStatusError) -> bool:
    if exc.response.status_code == httpx.codes.CONFLICT:
        return True
    try:
        return exc.response.json().get("code") == UNIQUE_VIOLATION
    except ValueError:
        return False


def _record_id(result: Any) -> int:
    """Id from a scalar, an object, or a one-row table returned by the RPC."""
    if isinstance(result, list):
        if len(result) != 1:
            raise CatalogError(f"Catalog write returned {len(result)} rows, expected 1")
        result = result[0]
    if isinstance(result, dict):
        result = result.get("id")
    if result is None:
        raise CatalogError("Catalog write returned no id")
    try:
        return int(result)
    except (TypeError, ValueError) as exc:
        raise CatalogError(f"Catalog write returned a bad id: {result!r}") from exc


class PostgRESTCatalog(CatalogWriter, CatalogReader):
    def __init__(self, client: SupabaseClient, write_function: str = "create_accession"):
        self.client = client
        self.write_function = write_function

    async def write_record(self, record: ArchivedRecord) -> int:
        try:
            result = await self.client.rpc(self.write_function, record.to_params())
        except httpx.HTTPStatusError as exc:
            if _is_duplicate(exc):
                raise DuplicateRecordError(
                    f"Accession for crawl {record.handle.job_run_id} already exists"
                ) from exc
            raise CatalogError(f"Catalog write failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise CatalogError(f"Catalog write failed: {exc}") from exc
        except ValueError as exc:
            raise CatalogError(f"Catalog write returned invalid JSON: {exc}") from exc
        return _record_id(result)

    async def subjects_exist(self, subject_ids: Iterable[int], language: MetadataLanguage) -> bool:
        wanted = set(subject_ids)
        if not wanted:
            return True
        ids = ",".join(str(i) for i in sorted(wanted))
        try:
            rows = await self.client.select(SUBJECT_TABLES[language], {"id": f"in.({ids})"}, columns="id")
        except httpx.HTTPError as exc:
            raise CatalogError(f"Subject lookup failed: {exc}") from exc
        return {row["id"] for row in rows} == wanted

    async def get_accession(self, accession_id: int) -> dict | None:
        try:
            rows = await self.client.select("accessions_with_metadata", {"id": accession_id})
        except httpx.HTTPError as exc:
            raise CatalogError(f"Accession lookup failed: {exc}") from exc
        return rows[0] if rows else None

"""
Supabase backends: Storage bucket for WACZ artifacts, PostgREST for the catalog.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from app.storage.base import ArtifactStore, StorageError

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Minimal async Supabase client (Storage + PostgREST)."""

    def __init__(
        self,
        url: str,
        key: str,
        bucket: str,
        *,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base = url.rstrip("/")
        self.key = key
        self.bucket = bucket
        self._headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
        }
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    def _storage_url(self, path: str) -> str:
        return f"{self.base}/storage/v1/object/{self.bucket}/{path}"

    def _sign_url(self, path: str) -> str:
        return f"{self.base}/storage/v1/object/sign/{self.bucket}/{path}"

    def _rest_url(self, table: str) -> str:
        return f"{self.base}/rest/v1/{table}"

    async def upload(self, remote_path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Upload bytes, return the stored object path."""
        headers = {**self._headers, "Content-Type": content_type, "x-upsert": "false"}
        res = await self._client.post(self._storage_url(remote_path), headers=headers, content=data)
        res.raise_for_status()
        payload = res.json() if res.content else {}
        return payload.get("Key") or f"{self.bucket}/{remote_path}"

    async def sign(self, remote_path: str, expires_in: int) -> str:
        headers = {**self._headers, "Content-Type": "application/json"}
        res = await self._client.post(self._sign_url(remote_path), headers=headers, json={"expiresIn": expires_in})
        res.raise_for_status()
        payload = res.json()
        signed = payload.get("signedURL") or payload.get("signedUrl")
        if not signed:
            raise StorageError(f"No signed URL returned for {remote_path}")
        return f"{self.base}/storage/v1{signed}"

    async def rpc(self, function: str, params: dict) -> Any:
        """Call a Postgres function; PostgREST runs it in a single transaction."""
        headers = {**self._headers, "Content-Type": "application/json"}
        res = await self._client.post(self._rest_url(f"rpc/{function}"), headers=headers, json=params)
        res.raise_for_status()
        return res.json()

    async def select(self, table: str, filters: dict | None = None, columns: str = "*") -> list[dict]:
        """Filter values are PostgREST operators, e.g. ``eq.5`` or ``in.(1,2)``."""
        params = {"select": columns}
        if filters:
            for k, v in filters.items():
                params[k] = v if "." in str(v) else f"eq.{v}"
        headers = {**self._headers, "Accept": "application/json"}
        res = await self._client.get(self._rest_url(table), headers=headers, params=params)
        res.raise_for_status()
        return res.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class SupabaseArtifactStore(ArtifactStore):
    name = "supabase"

    def __init__(self, client: SupabaseClient):
        self.client = client

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        try:
            stored = await self.client.upload(key, data, content_type)
        except httpx.HTTPError as exc:
            raise StorageError(f"Upload of {key} failed: {exc}") from exc
        logger.info("Stored %s (%d bytes) as %s", key, len(data), stored)
        return stored

    async def presigned_url(self, key: str, ttl: int = 3600) -> str:
        try:
            return await self.client.sign(key, ttl)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (400, 404):
                raise StorageError(f"Object not found: {key}") from exc
            raise StorageError(f"Signing {key} failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"Signing {key} failed: {exc}") from exc

from __future__ import annotations

import time

from app.storage.base import ArtifactStore, StorageError


class InMemoryArtifactStore(ArtifactStore):
    name = "memory"

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_with = fail_with

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail_with:
            raise self.fail_with
        if key in self.objects:
            raise StorageError(f"Object already exists: {key}")
        self.objects[key] = (bytes(data), content_type)
        return f"memory://{key}"

    async def presigned_url(self, key: str, ttl: int = 3600) -> str:
        if key not in self.objects:
            raise StorageError(f"Object not found: {key}")
        return f"memory://{key}?expires={int(time.time()) + ttl}"

from __future__ import annotations

from abc import ABC, abstractmethod


class StorageError(RuntimeError):
    """Raised when the object store rejects an upload or a URL request."""


class ArtifactStore(ABC):
    name: str

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def presigned_url(self, key: str, ttl: int = 3600) -> str:
        raise NotImplementedError

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import StrEnum, auto
from pathlib import Path
from typing import Optional

import httpx

from blob_cleaner.domain.errors import ConfigurationError, StorageTimeoutError, StorageUnavailableError
from blob_cleaner.settings import Settings

logger = logging.getLogger(__name__)

class DeleteResult(StrEnum):
    DELETED = auto()
    ALREADY_ABSENT = auto()

class BlobStore(ABC):
    """
    Minimal storage contract needed for cleanup.

    `delete` must be idempotent: a missing blob is ALREADY_ABSENT, not an error.
    Transport problems raise StorageUnavailableError or StorageTimeoutError.
    """

    @abstractmethod
    async def delete(self, blob_ref: str) -> DeleteResult:
        ...

    async def close(self) -> None:
        pass

class InMemoryBlobStore(BlobStore):
    def __init__(self, blobs: Optional[dict[str, bytes]] = None):
        self.blobs: dict[str, bytes] = dict(blobs or {})
        self.delete_calls: list[str] = []

    def put(self, blob_ref: str, data: bytes = b"") -> None:
        self.blobs[blob_ref] = data

    def exists(self, blob_ref: str) -> bool:
        return blob_ref in self.blobs

    async def delete(self, blob_ref: str) -> DeleteResult:
        self.delete_calls.append(blob_ref)
        if self.blobs.pop(blob_ref, None) is None:
            return DeleteResult.ALREADY_ABSENT
        return DeleteResult.DELETED

class LocalBlobStore(BlobStore):
    """Blobs stored as files under a root directory, keyed by relative path."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _path(self, blob_ref: str) -> Path:
        path = (self.root / blob_ref).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"Blob ref {blob_ref!r} escapes store root")
        return path

    def _unlink(self, path: Path) -> DeleteResult:
        try:
            path.unlink()
        except FileNotFoundError:
            return DeleteResult.ALREADY_ABSENT
        return DeleteResult.DELETED

    async def delete(self, blob_ref: str) -> DeleteResult:
        path = self._path(blob_ref)
        try:
            return await asyncio.to_thread(self._unlink, path)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot delete {path}: {e}") from e

class HttpBlobStore(BlobStore):
    """Object store reachable over HTTP: `DELETE {base_url}/{blob_ref}`."""

    def __init__(self, base_url: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self.timeout = timeout

    async def delete(self, blob_ref: str) -> DeleteResult:
        try:
            resp = await self.client.delete(f"/{blob_ref}")
        except httpx.TimeoutException as e:
            raise StorageTimeoutError(blob_ref, self.timeout) from e
        except httpx.HTTPError as e:
            raise StorageUnavailableError(f"Delete {blob_ref} failed: {e}") from e

        if resp.status_code == 404:
            return DeleteResult.ALREADY_ABSENT
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StorageUnavailableError(
                f"Delete {blob_ref} rejected with status {resp.status_code}"
            ) from e
        return DeleteResult.DELETED

    async def close(self) -> None:
        await self.client.aclose()

def build_blob_store(settings: Settings) -> BlobStore:
    backend = settings.BLOB_STORE_BACKEND
    if backend == "memory":
        logger.warning("Using in-memory blob store; deletions affect nothing outside this process.")
        return InMemoryBlobStore()
    if backend == "local":
        if not settings.BLOB_STORE_PATH:
            raise ConfigurationError("BLOB_STORE_PATH is required for the local blob store")
        return LocalBlobStore(settings.BLOB_STORE_PATH)
    if backend == "http":
        if not settings.BLOB_STORE_URL:
            raise ConfigurationError("BLOB_STORE_URL is required for the http blob store")
        return HttpBlobStore(settings.BLOB_STORE_URL, timeout=settings.STORAGE_TIMEOUT_SECONDS)
    raise ConfigurationError(f"Unknown blob store backend: {backend}")

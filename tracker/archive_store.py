"""
Archive Store - Cold Storage for Failure Detail

Blob storage addressed by slash-separated keys:
- errors/<date>/<worker>/<timestamp>.json   (trace failures)
- github/<date>/<owner-repo>/<timestamp>.json   (webhook failures)

Written only by the ingestion pipeline, read by the aggregation reader.
A put with an existing key replaces the blob (last write wins).
"""

import asyncio
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional, Dict, List

from .exceptions import StorageError

logger = logging.getLogger("archive_store")

DEFAULT_LIST_LIMIT = 1000


class ArchiveStore(ABC):
    """Async blob contract used by the pipeline and the reader."""

    backend_name = "archive-store"

    @abstractmethod
    async def put(self, key: str, body: bytes) -> None:
        """Store body under key, replacing any previous blob."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the blob or None when the key does not exist."""

    @abstractmethod
    async def list(self, prefix: str, limit: int = DEFAULT_LIST_LIMIT) -> List[str]:
        """Return up to limit keys starting with prefix, in key order."""


class InMemoryArchiveStore(ArchiveStore):
    """Process-local archive for tests and development."""

    backend_name = "memory-archive-store"

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def put(self, key: str, body: bytes) -> None:
        self._blobs[key] = bytes(body)

    async def get(self, key: str) -> Optional[bytes]:
        return self._blobs.get(key)

    async def list(self, prefix: str, limit: int = DEFAULT_LIST_LIMIT) -> List[str]:
        return sorted(k for k in self._blobs if k.startswith(prefix))[:max(limit, 0)]

    def keys(self) -> List[str]:
        return sorted(self._blobs)


class FilesystemArchiveStore(ArchiveStore):
    """
    Archive rooted at a local directory; each key maps to a relative path.

    Writes go through a temp file + fsync + rename so readers never see a
    half-written blob.
    """

    backend_name = "file-archive-store"

    def __init__(self, root: Path):
        self._root = Path(root)
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValueError(f"Archive key escapes the archive root: {key!r}")
        return self._root.joinpath(*relative.parts)

    def _put_sync(self, key: str, body: bytes) -> None:
        path = self._path_for(key)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            with open(tmp_path, "wb") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)

    def _get_sync(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def _list_sync(self, prefix: str, limit: int) -> List[str]:
        if not self._root.exists():
            return []
        keys = []
        for path in self._root.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)[:max(limit, 0)]

    async def put(self, key: str, body: bytes) -> None:
        try:
            await asyncio.to_thread(self._put_sync, key, body)
        except (OSError, ValueError) as e:
            raise StorageError(self.backend_name, "put", key, e) from e

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except (OSError, ValueError) as e:
            raise StorageError(self.backend_name, "get", key, e) from e

    async def list(self, prefix: str, limit: int = DEFAULT_LIST_LIMIT) -> List[str]:
        try:
            return await asyncio.to_thread(self._list_sync, prefix, limit)
        except OSError as e:
            raise StorageError(self.backend_name, "list", prefix, e) from e

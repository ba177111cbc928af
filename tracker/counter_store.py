"""
Counter Store - Per-Worker Rolling Counters

Key-value storage for `worker:<id>:lastSeen`, `worker:<id>:count` and
`worker:<id>:errors`. Values are decimal strings.

The contract is deliberately narrow (get / put / list by prefix) so any
key-value backend can sit behind it. There is no increment primitive:
callers read, add and write back, which is NOT atomic.
"""

import asyncio
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Dict, List

from .exceptions import StorageError

logger = logging.getLogger("counter_store")


class CounterStore(ABC):
    """Async key-value contract used by the pipeline and the reader."""

    backend_name = "counter-store"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Overwrite the value for key."""

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """Return every key starting with prefix, sorted."""


class InMemoryCounterStore(CounterStore):
    """Process-local store for tests and single-process development."""

    backend_name = "memory-counter-store"

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def list(self, prefix: str) -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class JsonFileCounterStore(CounterStore):
    """
    Counters persisted as one JSON object on disk.

    Every put rewrites the file through a temp file + fsync + rename, so a
    crash leaves either the old or the new document. The lock serializes
    file access within this process only; it does NOT make the
    read-increment-write sequence atomic.
    """

    backend_name = "file-counter-store"

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        with open(self._path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Counter file {self._path} does not hold a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self._path)

    def _get_sync(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def _put_sync(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def _list_sync(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(k for k in self._read() if k.startswith(prefix))

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except (OSError, ValueError) as e:
            raise StorageError(self.backend_name, "get", key, e) from e

    async def put(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._put_sync, key, value)
        except (OSError, ValueError) as e:
            raise StorageError(self.backend_name, "put", key, e) from e

    async def list(self, prefix: str) -> List[str]:
        try:
            return await asyncio.to_thread(self._list_sync, prefix)
        except (OSError, ValueError) as e:
            raise StorageError(self.backend_name, "list", prefix, e) from e


def parse_counter(value: Optional[str]) -> int:
    """Decode a stored counter; missing or non-numeric values count as 0."""
    if value is None:
        return 0
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Non-numeric counter value treated as 0: {value!r}")
        return 0


async def increment(store: CounterStore, key: str, by: int = 1) -> int:
    """
    Read-increment-write. NOT atomic.

    Two concurrent increments of the same key can both read N and both
    write N+1. Counters are approximate by contract.
    """
    current = parse_counter(await store.get(key))
    updated = current + by
    await store.put(key, str(updated))
    return updated

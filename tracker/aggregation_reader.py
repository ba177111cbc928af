"""
Aggregation Reader - Read-Side Summaries

Rebuilds worker summaries and global statistics from the counter store
on demand, and fetches archived failures from the archive store.

READ-ONLY: nothing here writes to any store.

Scaling note: list_workers() and compute_stats() enumerate every key under
the `worker:` prefix and fetch each value. That is fine for tens to low
thousands of workers, not for very large counter stores.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional, Dict, List, Any

from .archive_store import ArchiveStore
from .counter_store import CounterStore, parse_counter
from .event_model import (
    CounterField,
    GlobalStats,
    WorkerSummary,
    ERRORS_ARCHIVE_PREFIX,
    GITHUB_ARCHIVE_PREFIX,
    WORKER_KEY_PREFIX,
    parse_counter_key,
)

logger = logging.getLogger("aggregation_reader")

DEFAULT_ERROR_LIMIT = 20

ARCHIVE_NAMESPACES = (ERRORS_ARCHIVE_PREFIX, GITHUB_ARCHIVE_PREFIX)


@dataclass
class ErrorQuery:
    date: str
    worker: Optional[str] = None
    limit: int = DEFAULT_ERROR_LIMIT
    namespace: str = ERRORS_ARCHIVE_PREFIX

    def prefix(self) -> str:
        prefix = f"{self.namespace}/{self.date}/"
        if self.worker:
            prefix += f"{self.worker}/"
        return prefix


class AggregationReader:
    def __init__(self, counters: CounterStore, archive: ArchiveStore):
        self.counters = counters
        self.archive = archive

    async def _scan_counters(self) -> Dict[str, Dict[str, int]]:
        """worker -> {field: value} for every well-formed counter key."""
        fields: Dict[str, Dict[str, int]] = {}
        for key in await self.counters.list(WORKER_KEY_PREFIX):
            parsed = parse_counter_key(key)
            if parsed is None:
                continue
            worker, counter = parsed
            value = parse_counter(await self.counters.get(key))
            fields.setdefault(worker, {})[counter] = value
        return fields

    async def list_workers(self) -> List[WorkerSummary]:
        """
        One summary per worker, most recently seen first.

        A worker appears as soon as any of its fields exists; absent fields
        read as 0.
        """
        summaries = []
        for worker, values in (await self._scan_counters()).items():
            summaries.append(WorkerSummary(
                worker=worker,
                last_seen=values.get(CounterField.LAST_SEEN.value, 0),
                total_events=values.get(CounterField.COUNT.value, 0),
                error_count=values.get(CounterField.ERRORS.value, 0),
            ))
        summaries.sort(key=lambda s: s.last_seen, reverse=True)
        return summaries

    async def compute_stats(self) -> GlobalStats:
        scanned = await self._scan_counters()
        return GlobalStats(
            worker_count=len(scanned),
            total_events=sum(v.get(CounterField.COUNT.value, 0) for v in scanned.values()),
            total_errors=sum(v.get(CounterField.ERRORS.value, 0) for v in scanned.values()),
        )

    async def list_errors(self, query: ErrorQuery) -> List[Dict[str, Any]]:
        """
        Archived failures under `<namespace>/<date>/[<worker>/]`, at most
        query.limit keys.

        Entries that cannot be fetched or decoded are dropped from the result
        and only logged; callers get no count of what was skipped.
        """
        if query.namespace not in ARCHIVE_NAMESPACES:
            raise ValueError(f"Unknown archive namespace: {query.namespace}")

        keys = await self.archive.list(query.prefix(), query.limit)
        fetched = await asyncio.gather(*(self._fetch_entry(key) for key in keys))
        return [entry for entry in fetched if entry is not None]

    async def _fetch_entry(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            body = await self.archive.get(key)
            if body is None:
                return None
            entry = json.loads(body)
        except Exception as e:
            logger.warning(f"Skipping unreadable archive entry {key}: {e}")
            return None
        if not isinstance(entry, dict):
            logger.warning(f"Skipping non-object archive entry {key}")
            return None
        return entry

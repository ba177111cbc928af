"""
Metrics Emitter - Hot Time-Series Samples

Every ingested event produces one sample:
- doubles: [timestamp, log count, exception count]
- blobs:   [worker, label, request method, request url, preview]
- indexes: [worker]

The metrics store is queried externally. Emission is FIRE-AND-FORGET:
a failing store is logged and never reaches the caller.
"""

import asyncio
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from .event_model import CanonicalEvent, MetricsSample
from .exceptions import StorageError

logger = logging.getLogger("metrics_emitter")


class MetricsStore(ABC):
    backend_name = "metrics-store"

    @abstractmethod
    async def write_sample(self, sample: MetricsSample) -> None:
        """Append one sample."""


class InMemoryMetricsStore(MetricsStore):
    backend_name = "memory-metrics-store"

    def __init__(self):
        self.samples: List[MetricsSample] = []

    async def write_sample(self, sample: MetricsSample) -> None:
        self.samples.append(sample)


class JsonlMetricsStore(MetricsStore):
    """Append-only JSONL file, one sample per line, fsync on each write."""

    backend_name = "jsonl-metrics-store"

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    def _append_sync(self, sample: MetricsSample) -> None:
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a") as f:
                f.write(json.dumps(sample.to_dict()) + "\n")
                f.flush()
                os.fsync(f.fileno())

    async def write_sample(self, sample: MetricsSample) -> None:
        try:
            await asyncio.to_thread(self._append_sync, sample)
        except OSError as e:
            raise StorageError(self.backend_name, "write_sample", str(self._path), e) from e


def build_sample(event: CanonicalEvent) -> MetricsSample:
    return MetricsSample(
        doubles=(float(event.timestamp), float(len(event.logs)), float(len(event.exceptions))),
        blobs=(
            event.worker,
            event.label,
            event.request.method or "",
            event.request.url or "",
            event.summary,
        ),
        indexes=(event.worker,),
    )


class MetricsEmitter:
    """Wraps a MetricsStore so that emission can never fail the caller."""

    def __init__(self, store: MetricsStore):
        self._store = store

    async def emit(self, event: CanonicalEvent) -> bool:
        """Write the sample for event. Returns False (and logs) on any failure."""
        try:
            await self._store.write_sample(build_sample(event))
            return True
        except Exception as e:
            logger.error(f"Metrics emit failed for {event.worker}: {e}")
            return False

"""
Event Model - Canonical Worker Activity Records

This module defines the data structures shared by the ingestion pipeline
and the read-side aggregation layer.

Two raw shapes enter the system:
- Trace events emitted by running workers (tail stream)
- Webhook payloads delivered by the CI/CD provider (GitHub)

Both are normalized into a single CanonicalEvent before the pipeline sees
them. Everything downstream of the normalizer works on CanonicalEvent only.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List


# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
OUTCOME_OK = "ok"
OUTCOME_GITHUB_FAILURE = "github_failure"

WORKER_KEY_PREFIX = "worker:"
ERRORS_ARCHIVE_PREFIX = "errors"
GITHUB_ARCHIVE_PREFIX = "github"

PREVIEW_MAX_CHARS = 1000
PREVIEW_LOG_LINES = 3


class EventOrigin(str, Enum):
    """Where a canonical event came from."""
    TRACE = "trace"
    WEBHOOK = "webhook"


class CounterField(str, Enum):
    """Per-worker counter fields. Values are the key suffixes in the store."""
    LAST_SEEN = "lastSeen"
    COUNT = "count"
    ERRORS = "errors"


def counter_key(worker: str, counter: CounterField) -> str:
    """Build the namespaced counter key `worker:<id>:<field>`."""
    return f"{WORKER_KEY_PREFIX}{worker}:{counter.value}"


def parse_counter_key(key: str) -> Optional[tuple]:
    """
    Split a counter key into (worker, field).

    The worker id is everything between the `worker:` prefix and the last
    colon, so ids such as `github:owner/repo` survive the round trip. An
    empty id (trace events without a scriptName) is kept as "".

    Returns None for keys outside the worker namespace.
    """
    if not key.startswith(WORKER_KEY_PREFIX):
        return None
    worker, sep, counter = key[len(WORKER_KEY_PREFIX):].rpartition(":")
    if not sep or not counter:
        return None
    return worker, counter


def utc_date(timestamp_ms: int) -> str:
    """
    Return the UTC calendar date (YYYY-MM-DD) of an epoch-millis timestamp.

    Raises ValueError for timestamps outside the platform's datetime range.
    """
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"Timestamp out of range: {timestamp_ms}") from e
    return moment.strftime("%Y-%m-%d")


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def truncate(text: str, max_chars: int) -> str:
    return text[:max_chars] if len(text) > max_chars else text


# -----------------------------------------------------------------------------
# Trace Fragments
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TraceLog:
    """A single console log line captured from a worker invocation."""
    timestamp: int
    level: str
    message: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "level": self.level, "message": list(self.message)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceLog":
        message = data.get("message", [])
        if not isinstance(message, list):
            message = [message]
        return cls(
            timestamp=as_int(data.get("timestamp")),
            level=str(data.get("level") or ""),
            message=message,
        )


@dataclass(frozen=True)
class TraceException:
    """An uncaught exception reported for a worker invocation."""
    name: str
    message: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceException":
        return cls(
            name=str(data.get("name") or ""),
            message=str(data.get("message") or ""),
            timestamp=as_int(data.get("timestamp")),
        )


@dataclass(frozen=True)
class RequestInfo:
    url: Optional[str] = None
    method: Optional[str] = None


# -----------------------------------------------------------------------------
# Canonical Event (internal, never persisted as such)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class CanonicalEvent:
    """
    Normalized worker activity record.

    `outcome` is "ok" for healthy activity; any other value is a
    failure kind. `label` and `summary` are metrics tags: for trace events
    they are the outcome and a preview of the first log lines, for webhook
    events the `<event>:<action>` pair and a JSON summary.
    `detail` carries origin-specific archive fields (webhook failures).
    """
    worker: str
    timestamp: int
    outcome: str
    origin: EventOrigin = EventOrigin.TRACE
    exceptions: tuple = ()
    logs: tuple = ()
    request: RequestInfo = field(default_factory=RequestInfo)
    label: str = ""
    summary: str = ""
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_failure(self) -> bool:
        """A failure is any non-ok outcome or any reported exception."""
        return self.outcome != OUTCOME_OK or len(self.exceptions) > 0

    def logs_preview(self) -> str:
        return logs_preview(self.logs)


def logs_preview(logs) -> str:
    """JSON of the first few log lines, capped for use as a metrics tag."""
    preview = json.dumps([log.to_dict() for log in logs[:PREVIEW_LOG_LINES]])
    return truncate(preview, PREVIEW_MAX_CHARS)


# -----------------------------------------------------------------------------
# Error Entry (archived, immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ErrorEntry:
    """
    Archived failure detail for one trace event.

    One entry per failing event, stored under
    `errors/<date>/<worker>/<timestamp>.json`. Two failures for the same
    worker in the same millisecond share a key; the last write wins.
    """
    worker: str
    timestamp: int
    outcome: str
    exceptions: tuple = ()
    logs: tuple = ()
    url: Optional[str] = None
    method: Optional[str] = None

    @classmethod
    def from_event(cls, event: CanonicalEvent) -> "ErrorEntry":
        return cls(
            worker=event.worker,
            timestamp=event.timestamp,
            outcome=event.outcome,
            exceptions=event.exceptions,
            logs=event.logs,
            url=event.request.url,
            method=event.request.method,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "worker": self.worker,
            "timestamp": self.timestamp,
            "outcome": self.outcome,
            "exceptions": [e.to_dict() for e in self.exceptions],
            "logs": [log.to_dict() for log in self.logs],
        }
        # Absent request fields are omitted, matching the JSON written for
        # events without a request.
        if self.url is not None:
            result["url"] = self.url
        if self.method is not None:
            result["method"] = self.method
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorEntry":
        return cls(
            worker=data["worker"],
            timestamp=int(data["timestamp"]),
            outcome=data["outcome"],
            exceptions=tuple(TraceException.from_dict(e) for e in data.get("exceptions", [])),
            logs=tuple(TraceLog.from_dict(log) for log in data.get("logs", [])),
            url=data.get("url"),
            method=data.get("method"),
        )


# -----------------------------------------------------------------------------
# Read-Side Aggregates (never stored)
# -----------------------------------------------------------------------------
@dataclass
class WorkerSummary:
    worker: str
    last_seen: int = 0
    total_events: int = 0
    error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker": self.worker,
            "lastSeen": self.last_seen,
            "totalEvents": self.total_events,
            "errorCount": self.error_count,
        }


@dataclass
class GlobalStats:
    """Totals folded across every worker in the counter store."""
    worker_count: int
    total_events: int
    total_errors: int

    @property
    def error_rate(self) -> str:
        if self.total_events == 0:
            return "0%"
        return f"{self.total_errors / self.total_events * 100:.2f}%"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workers": self.worker_count,
            "totalEvents": self.total_events,
            "totalErrors": self.total_errors,
            "errorRate": self.error_rate,
        }


@dataclass(frozen=True)
class MetricsSample:
    """One time-series data point: numeric doubles, string blobs, index keys."""
    doubles: tuple
    blobs: tuple
    indexes: tuple

    def to_dict(self) -> Dict[str, Any]:
        return {
            "doubles": list(self.doubles),
            "blobs": list(self.blobs),
            "indexes": list(self.indexes),
        }


def as_int(value: Any) -> int:
    """Coerce a loosely typed number to int; anything unusable reads as 0."""
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0

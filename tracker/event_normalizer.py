"""
Event Normalizer - Raw Trace / Webhook -> CanonicalEvent

Maps the two raw event shapes into CanonicalEvent:

1. Trace events: worker = scriptName, outcome/timestamp/logs/exceptions
   copied verbatim, request url/method extracted when present.
2. GitHub webhooks: worker = "github:<repo full name>", failure detection
   is event-type specific, a single synthesized exception carries the
   failure detail.

Normalization is TOTAL: raw payloads are loosely typed, missing or
malformed fields fall back to empty/zero defaults and nothing is raised.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Union

from .event_model import (
    CanonicalEvent,
    EventOrigin,
    RequestInfo,
    TraceException,
    TraceLog,
    OUTCOME_OK,
    OUTCOME_GITHUB_FAILURE,
    PREVIEW_MAX_CHARS,
    as_int,
    logs_preview,
    now_ms,
    truncate,
)

logger = logging.getLogger("event_normalizer")

UNKNOWN_REPO = "unknown"
UNKNOWN_EVENT = "unknown"
GITHUB_WORKER_PREFIX = "github:"


# -----------------------------------------------------------------------------
# Raw Event Wrappers (tagged union at the boundary)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class RawTraceEvent:
    """A trace event as delivered by the worker runtime."""
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawWebhookEvent:
    """A webhook delivery: the `x-github-event` header plus the JSON body."""
    event_type: str = UNKNOWN_EVENT
    payload: Dict[str, Any] = field(default_factory=dict)
    received_at: Optional[int] = None


RawEvent = Union[RawTraceEvent, RawWebhookEvent]


def normalize(raw: RawEvent) -> CanonicalEvent:
    """Normalize any raw event. Never raises."""
    if isinstance(raw, RawWebhookEvent):
        return normalize_webhook(raw.event_type, raw.payload, raw.received_at)
    return normalize_trace(raw.payload)


# -----------------------------------------------------------------------------
# Trace Events
# -----------------------------------------------------------------------------
def normalize_trace(payload: Any) -> CanonicalEvent:
    data = _as_dict(payload)

    logs = tuple(
        TraceLog.from_dict(entry) for entry in _as_list(data.get("logs")) if isinstance(entry, dict)
    )
    exceptions = tuple(
        TraceException.from_dict(entry)
        for entry in _as_list(data.get("exceptions"))
        if isinstance(entry, dict)
    )

    request = _as_dict(_as_dict(data.get("event")).get("request"))
    url = request.get("url")
    method = request.get("method")

    outcome = str(data.get("outcome") or "")
    return CanonicalEvent(
        worker=str(data.get("scriptName") or ""),
        timestamp=as_int(data.get("eventTimestamp")),
        outcome=outcome,
        origin=EventOrigin.TRACE,
        exceptions=exceptions,
        logs=logs,
        request=RequestInfo(
            url=str(url) if url is not None else None,
            method=str(method) if method is not None else None,
        ),
        label=outcome,
        summary=logs_preview(logs),
    )


# -----------------------------------------------------------------------------
# GitHub Webhooks
# -----------------------------------------------------------------------------
def detect_github_failure(event_type: str, payload: Dict[str, Any]) -> bool:
    """
    Event-type specific failure rules.

    - workflow_run completed with conclusion "failure"
    - deployment_status with state "failure"
    - check_run completed with conclusion "failure"
    Every other event type is never a failure.
    """
    action = payload.get("action")
    if event_type == "workflow_run" and action == "completed":
        return _as_dict(payload.get("workflow_run")).get("conclusion") == "failure"
    if event_type == "deployment_status":
        return _as_dict(payload.get("deployment_status")).get("state") == "failure"
    if event_type == "check_run" and action == "completed":
        return _as_dict(payload.get("check_run")).get("conclusion") == "failure"
    return False


def extract_failure_details(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if event_type == "workflow_run":
        run = _as_dict(payload.get("workflow_run"))
        return {
            "name": run.get("name"),
            "conclusion": run.get("conclusion"),
            "url": run.get("html_url"),
        }
    if event_type == "deployment_status":
        status = _as_dict(payload.get("deployment_status"))
        return {
            "state": status.get("state"),
            "description": status.get("description"),
            "url": status.get("target_url"),
        }
    if event_type == "check_run":
        check = _as_dict(payload.get("check_run"))
        return {
            "name": check.get("name"),
            "conclusion": check.get("conclusion"),
            "url": check.get("html_url"),
        }
    return {}


def summarize_github_event(event_type: str, payload: Dict[str, Any]) -> str:
    """Human-readable JSON summary used as a metrics tag. Unbounded; callers truncate."""
    summary: Dict[str, Any] = {
        "event": event_type,
        "action": payload.get("action"),
    }

    run = payload.get("workflow_run")
    if isinstance(run, dict):
        summary["workflow"] = run.get("name")
        summary["conclusion"] = run.get("conclusion") or "pending"

    status = payload.get("deployment_status")
    if isinstance(status, dict):
        summary["state"] = status.get("state")

    check = payload.get("check_run")
    if isinstance(check, dict):
        summary["check"] = check.get("name")
        summary["conclusion"] = check.get("conclusion") or "pending"

    return json.dumps(summary)


def normalize_webhook(
    event_type: Optional[str],
    payload: Any,
    received_at: Optional[int] = None,
) -> CanonicalEvent:
    """
    Normalize a GitHub webhook delivery.

    The canonical timestamp is the receipt time; webhook payloads carry no
    single event timestamp that applies across event types.
    """
    data = _as_dict(payload)
    event_type = event_type or UNKNOWN_EVENT
    timestamp = received_at if received_at is not None else now_ms()

    repo = _as_dict(data.get("repository")).get("full_name") or UNKNOWN_REPO
    action = data.get("action")
    worker = f"{GITHUB_WORKER_PREFIX}{repo}"

    exceptions: tuple = ()
    detail: Dict[str, Any] = {}
    outcome = OUTCOME_OK

    if detect_github_failure(event_type, data):
        outcome = OUTCOME_GITHUB_FAILURE
        detail = {
            "source": "github",
            "eventType": event_type,
            "action": action,
            "repo": repo,
            **extract_failure_details(event_type, data),
            "timestamp": timestamp,
        }
        exceptions = (
            TraceException(name=event_type, message=json.dumps(detail), timestamp=timestamp),
        )
        logger.info(f"GitHub failure detected: {event_type} for {repo}")

    return CanonicalEvent(
        worker=worker,
        timestamp=timestamp,
        outcome=outcome,
        origin=EventOrigin.WEBHOOK,
        exceptions=exceptions,
        logs=(),
        request=RequestInfo(),
        label=f"{event_type}:{action if action is not None else ''}",
        summary=truncate(summarize_github_event(event_type, data), PREVIEW_MAX_CHARS),
        detail=detail,
    )


# -----------------------------------------------------------------------------
# Loose-typing helpers
# -----------------------------------------------------------------------------
def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []

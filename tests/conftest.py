"""
Pytest configuration for Tracker tests.

This module provides:
1. Async test support without pytest-asyncio
2. In-memory storage fixtures and failing fakes
3. Raw event builders shared by the test modules
"""

import asyncio
import functools
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from tracker.archive_store import InMemoryArchiveStore
from tracker.counter_store import InMemoryCounterStore
from tracker.exceptions import StorageError
from tracker.ingestion_pipeline import IngestionPipeline
from tracker.metrics_emitter import InMemoryMetricsStore, MetricsEmitter


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self, pipeline):
            report = await pipeline.ingest(event)
            assert report.ok
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


# -----------------------------------------------------------------------------
# Storage Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def counters():
    return InMemoryCounterStore()


@pytest.fixture
def archive():
    return InMemoryArchiveStore()


@pytest.fixture
def metrics_store():
    return InMemoryMetricsStore()


@pytest.fixture
def escalation():
    """Escalation client double that records every call."""
    client = AsyncMock()
    client.escalate = AsyncMock(return_value=True)
    return client


@pytest.fixture
def pipeline(counters, archive, metrics_store, escalation):
    return IngestionPipeline(
        counters=counters,
        archive=archive,
        metrics=MetricsEmitter(metrics_store),
        escalation=escalation,
    )


def failing(backend: str) -> AsyncMock:
    """An AsyncMock whose await raises StorageError."""
    return AsyncMock(side_effect=StorageError(backend, "call", cause=OSError("unavailable")))


# -----------------------------------------------------------------------------
# Raw Event Builders
# -----------------------------------------------------------------------------
# 2024-03-15T12:00:00Z
BASE_TS = 1710504000000


def trace_event(
    worker: str = "api-gateway",
    outcome: str = "ok",
    timestamp: int = BASE_TS,
    exceptions: Optional[List[Dict[str, Any]]] = None,
    logs: Optional[List[Dict[str, Any]]] = None,
    url: Optional[str] = "https://api.example.com/v1/items",
    method: Optional[str] = "GET",
) -> Dict[str, Any]:
    request = {}
    if url is not None:
        request["url"] = url
    if method is not None:
        request["method"] = method
    return {
        "scriptName": worker,
        "outcome": outcome,
        "eventTimestamp": timestamp,
        "event": {"request": request} if request else {},
        "logs": logs if logs is not None else [
            {"timestamp": timestamp, "level": "log", "message": ["handled request"]},
        ],
        "exceptions": exceptions or [],
    }


def workflow_run_payload(conclusion: Optional[str], action: str = "completed") -> Dict[str, Any]:
    return {
        "action": action,
        "workflow_run": {
            "id": 42,
            "name": "CI",
            "conclusion": conclusion,
            "html_url": "https://github.com/acme/widgets/actions/runs/42",
            "repository": {"full_name": "acme/widgets"},
        },
        "repository": {"full_name": "acme/widgets", "name": "widgets"},
    }

"""
Storage Adapter Tests

Tests for:
- JsonFileCounterStore persistence and corrupt-file handling
- increment() read-increment-write semantics
- FilesystemArchiveStore put/get/list, key safety, idempotent puts
- JsonlMetricsStore append-only output and fire-and-forget emitter
"""

import json
from unittest.mock import AsyncMock

import pytest

from tracker.archive_store import FilesystemArchiveStore, InMemoryArchiveStore
from tracker.counter_store import InMemoryCounterStore, JsonFileCounterStore, increment, parse_counter
from tracker.event_model import PREVIEW_MAX_CHARS
from tracker.event_normalizer import normalize_trace, normalize_webhook
from tracker.exceptions import StorageError
from tracker.metrics_emitter import JsonlMetricsStore, MetricsEmitter, build_sample

from tests.conftest import BASE_TS, async_test, trace_event, workflow_run_payload


class TestCounterStores:

    @async_test
    async def test_file_store_round_trip(self, tmp_path):
        path = tmp_path / "state" / "counters.json"
        store = JsonFileCounterStore(path)

        await store.put("worker:a:count", "3")
        await store.put("worker:b:count", "1")

        reopened = JsonFileCounterStore(path)
        assert await reopened.get("worker:a:count") == "3"
        assert await reopened.get("missing") is None
        assert await reopened.list("worker:") == ["worker:a:count", "worker:b:count"]

    @async_test
    async def test_file_store_missing_file_is_empty(self, tmp_path):
        store = JsonFileCounterStore(tmp_path / "nope.json")
        assert await store.list("worker:") == []

    @async_test
    async def test_corrupt_file_raises_storage_error(self, tmp_path):
        path = tmp_path / "counters.json"
        path.write_text("{truncated")
        store = JsonFileCounterStore(path)

        with pytest.raises(StorageError) as exc_info:
            await store.get("worker:a:count")
        assert exc_info.value.operation == "get"

    @async_test
    async def test_increment_from_missing(self):
        store = InMemoryCounterStore()

        assert await increment(store, "worker:a:count") == 1
        assert await increment(store, "worker:a:count") == 2
        assert store.snapshot() == {"worker:a:count": "2"}

    @async_test
    async def test_increment_is_read_then_write(self):
        store = InMemoryCounterStore({"worker:a:count": "7"})
        store.get = AsyncMock(return_value="7")

        await increment(store, "worker:a:count")
        await increment(store, "worker:a:count")

        # Both increments read the same stale value: an update is lost.
        assert store.snapshot()["worker:a:count"] == "8"

    def test_parse_counter(self):
        assert parse_counter(None) == 0
        assert parse_counter("12") == 12
        assert parse_counter("abc") == 0


class TestArchiveStores:

    @async_test
    async def test_filesystem_put_get_list(self, tmp_path):
        store = FilesystemArchiveStore(tmp_path)

        await store.put("errors/2024-03-15/a/1.json", b'{"n": 1}')
        await store.put("errors/2024-03-15/b/2.json", b'{"n": 2}')
        await store.put("github/2024-03-15/acme-x/3.json", b'{"n": 3}')

        assert await store.get("errors/2024-03-15/a/1.json") == b'{"n": 1}'
        assert await store.get("errors/2024-03-15/a/404.json") is None
        assert await store.list("errors/2024-03-15/") == [
            "errors/2024-03-15/a/1.json",
            "errors/2024-03-15/b/2.json",
        ]
        assert await store.list("errors/", limit=1) == ["errors/2024-03-15/a/1.json"]
        assert await store.list("github/") == ["github/2024-03-15/acme-x/3.json"]

    @async_test
    async def test_filesystem_list_empty_root(self, tmp_path):
        store = FilesystemArchiveStore(tmp_path / "not-created")
        assert await store.list("errors/") == []

    @async_test
    async def test_key_cannot_escape_root(self, tmp_path):
        store = FilesystemArchiveStore(tmp_path / "archive")

        with pytest.raises(StorageError):
            await store.put("../outside.json", b"{}")
        with pytest.raises(StorageError):
            await store.put("/etc/passwd", b"{}")

    @async_test
    async def test_identical_put_is_idempotent(self, tmp_path):
        for store in (FilesystemArchiveStore(tmp_path), InMemoryArchiveStore()):
            await store.put("errors/2024-03-15/a/1.json", b'{"n": 1}')
            await store.put("errors/2024-03-15/a/1.json", b'{"n": 1}')
            assert await store.list("errors/") == ["errors/2024-03-15/a/1.json"]

            await store.put("errors/2024-03-15/a/1.json", b'{"n": 2}')
            assert await store.list("errors/") == ["errors/2024-03-15/a/1.json"]
            assert await store.get("errors/2024-03-15/a/1.json") == b'{"n": 2}'


class TestMetrics:

    @async_test
    async def test_jsonl_store_appends(self, tmp_path):
        path = tmp_path / "metrics.jsonl"
        emitter = MetricsEmitter(JsonlMetricsStore(path))

        assert await emitter.emit(normalize_trace(trace_event(worker="a")))
        assert await emitter.emit(normalize_trace(trace_event(worker="b")))

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [line["indexes"] for line in lines] == [["a"], ["b"]]
        assert lines[0]["blobs"][1] == "ok"

    @async_test
    async def test_emitter_swallows_failures(self):
        store = AsyncMock()
        store.write_sample = AsyncMock(side_effect=ConnectionError("metrics down"))

        assert await MetricsEmitter(store).emit(normalize_trace(trace_event())) is False

    def test_sample_uses_empty_strings_for_missing_request(self):
        sample = build_sample(normalize_trace(trace_event(url=None, method=None)))
        assert sample.blobs[2:4] == ("", "")

    def test_webhook_summary_bounded_in_sample(self):
        payload = workflow_run_payload("failure")
        payload["workflow_run"]["name"] = "n" * 5000

        sample = build_sample(normalize_webhook("workflow_run", payload, received_at=BASE_TS))

        assert len(sample.blobs[4]) <= PREVIEW_MAX_CHARS

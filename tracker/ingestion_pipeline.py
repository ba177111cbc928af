"""
Ingestion Pipeline - Counters, Archive and Escalation per Event

For each CanonicalEvent, in order:
1. Emit a metrics sample
2. Overwrite worker:<id>:lastSeen with the event timestamp
3. Read-increment-write worker:<id>:count
4. Classify: failure = outcome != "ok" OR any exception
5. On failure: archive the detail, read-increment-write worker:<id>:errors
6. On failure: escalate to the evaluation service (if bound)

CRITICAL CONSTRAINTS:
- ingest() NEVER raises. Ingestion is a sink; producers see no result.
- STEP ISOLATION: every step runs in its own error boundary. A failing
  metrics store, counter write or escalation does not stop later steps.
- NO RETRY: a failed step is logged and recorded in the report, not retried.
- lastSeen is overwritten unconditionally. Out-of-order delivery can move
  it backwards.
- Counters are approximate (see counter_store.increment).
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Iterable, Awaitable, Callable, Any

from .archive_store import ArchiveStore
from .counter_store import CounterStore, increment
from .escalation_client import EscalationClient
from .event_model import (
    CanonicalEvent,
    CounterField,
    ErrorEntry,
    EventOrigin,
    ERRORS_ARCHIVE_PREFIX,
    GITHUB_ARCHIVE_PREFIX,
    counter_key,
    utc_date,
)
from .metrics_emitter import MetricsEmitter

logger = logging.getLogger("ingestion_pipeline")


class PipelineStep(str, Enum):
    METRICS = "metrics"
    LAST_SEEN = "last_seen"
    COUNT = "count"
    ARCHIVE = "archive"
    ERROR_COUNT = "error_count"
    ESCALATION = "escalation"


@dataclass
class IngestionReport:
    """What happened to one event. Diagnostic only; producers never see it."""
    worker: str
    timestamp: int
    failure: bool = False
    archive_key: Optional[str] = None
    escalated: Optional[bool] = None  # None = not attempted
    steps_completed: List[str] = field(default_factory=list)
    steps_failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.steps_failed


def archive_key_for(event: CanonicalEvent) -> str:
    """
    Date-partitioned archive key.

    Trace failures: errors/<date>/<worker>/<timestamp>.json
    Webhook failures: github/<date>/<owner-repo>/<timestamp>.json
    """
    date = utc_date(event.timestamp)
    if event.origin == EventOrigin.WEBHOOK:
        repo = str(event.detail.get("repo") or event.worker.split(":", 1)[-1])
        return f"{GITHUB_ARCHIVE_PREFIX}/{date}/{repo.replace('/', '-')}/{event.timestamp}.json"
    return f"{ERRORS_ARCHIVE_PREFIX}/{date}/{event.worker}/{event.timestamp}.json"


def archive_body_for(event: CanonicalEvent) -> bytes:
    if event.origin == EventOrigin.WEBHOOK:
        return json.dumps(event.detail).encode("utf-8")
    return json.dumps(ErrorEntry.from_event(event).to_dict()).encode("utf-8")


class IngestionPipeline:
    """
    Orchestrates metrics, counters, archive and escalation.

    Storage handles are long-lived and owned by the caller; the pipeline
    holds no other state.
    """

    def __init__(
        self,
        counters: CounterStore,
        archive: ArchiveStore,
        metrics: MetricsEmitter,
        escalation: Optional[EscalationClient] = None,
    ):
        self.counters = counters
        self.archive = archive
        self.metrics = metrics
        self.escalation = escalation

    async def _run_step(
        self,
        report: IngestionReport,
        step: PipelineStep,
        action: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one step inside its own error boundary."""
        try:
            result = await action()
        except Exception as e:
            logger.error(f"Ingestion step '{step.value}' failed for {report.worker}: {e}")
            report.steps_failed.append(step.value)
            return None
        report.steps_completed.append(step.value)
        return result

    async def ingest(self, event: CanonicalEvent) -> IngestionReport:
        """Process one event. Never raises."""
        report = IngestionReport(worker=event.worker, timestamp=event.timestamp)

        # The emitter has its own error boundary and reports success as a bool.
        if await self.metrics.emit(event):
            report.steps_completed.append(PipelineStep.METRICS.value)
        else:
            report.steps_failed.append(PipelineStep.METRICS.value)

        await self._run_step(
            report,
            PipelineStep.LAST_SEEN,
            lambda: self.counters.put(counter_key(event.worker, CounterField.LAST_SEEN), str(event.timestamp)),
        )
        await self._run_step(
            report,
            PipelineStep.COUNT,
            lambda: increment(self.counters, counter_key(event.worker, CounterField.COUNT)),
        )

        if not event.is_failure:
            logger.debug(f"Ingested {event.worker} @ {event.timestamp} ({event.outcome})")
            return report

        report.failure = True

        async def write_archive() -> None:
            # An out-of-range timestamp has no date partition; only this step fails.
            key = archive_key_for(event)
            await self.archive.put(key, archive_body_for(event))
            report.archive_key = key

        await self._run_step(report, PipelineStep.ARCHIVE, write_archive)
        await self._run_step(
            report,
            PipelineStep.ERROR_COUNT,
            lambda: increment(self.counters, counter_key(event.worker, CounterField.ERRORS)),
        )

        if self.escalation is not None:
            # escalate() swallows its own failures; the boundary is a backstop.
            escalated = await self._run_step(
                report, PipelineStep.ESCALATION, lambda: self.escalation.escalate(event)
            )
            report.escalated = bool(escalated)

        logger.info(
            f"Failure recorded for {event.worker} @ {event.timestamp}: outcome={event.outcome}, "
            f"exceptions={len(event.exceptions)}, archived={report.archive_key is not None}"
        )
        return report

    async def ingest_batch(self, events: Iterable[CanonicalEvent]) -> List[IngestionReport]:
        """Process a batch sequentially, in delivery order."""
        reports = []
        for event in events:
            reports.append(await self.ingest(event))
        failed = sum(1 for r in reports if not r.ok)
        if failed:
            logger.warning(f"Batch of {len(reports)} events finished with {failed} partially failed")
        return reports

"""
Tracker - Worker Observability Ingestion

Receives execution-trace events from running workers and webhook events
from GitHub, normalizes both into a canonical worker-activity record, and:
- Appends a tagged sample to the metrics store (hot, queryable)
- Maintains per-worker counters: lastSeen, count, errors
- Archives full failure detail, partitioned by date and worker (cold)
- Escalates failures to the evaluation service, best-effort

Read side:
- GET /api/v1/workers: per-worker summaries, most recently seen first
- GET /api/v1/errors: archived failures for a date (optionally one worker)
- GET /api/v1/stats: worker count, totals and error rate

Counters are APPROXIMATE: increments are read-modify-write with no
transaction, so concurrent ingestion for one worker can lose updates.
"""

__version__ = "1.0.0"

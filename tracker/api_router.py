"""
Read-Side API Router

Thin FastAPI wrapper over AggregationReader:
- GET /api/v1/workers
- GET /api/v1/errors?worker=&date=&limit=
- GET /api/v1/stats
- GET /api/v1/query (placeholder, no SQL execution)
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query, Request

from .aggregation_reader import AggregationReader, ErrorQuery

logger = logging.getLogger("api_router")

router = APIRouter(prefix="/api/v1", tags=["Read API"])


def _reader(request: Request) -> AggregationReader:
    return request.app.state.reader


@router.get("/workers")
async def get_workers(request: Request):
    workers = await _reader(request).list_workers()
    return {"workers": [w.to_dict() for w in workers], "count": len(workers)}


@router.get("/errors")
async def get_errors(
    request: Request,
    worker: Optional[str] = Query(None),
    date: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    limit: Optional[int] = Query(None, ge=1),
):
    api_config = request.app.state.config.api
    if date is None:
        date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    if limit is None:
        limit = api_config.default_error_limit
    limit = min(limit, api_config.max_error_limit)

    errors = await _reader(request).list_errors(ErrorQuery(date=date, worker=worker or None, limit=limit))
    return {
        "errors": errors,
        "count": len(errors),
        "date": date,
        "worker": worker or "all",
    }


@router.get("/stats")
async def get_stats(request: Request):
    stats = await _reader(request).compute_stats()
    return stats.to_dict()


@router.get("/query")
async def query_placeholder():
    # SQL over the metrics store needs account-level credentials; not proxied.
    return {
        "message": "Query endpoint ready. Query the metrics store directly for SQL analytics.",
        "dataset": "tracker_logs",
    }

"""
Tracker Service - FastAPI Application

Ingestion:
- POST /api/v1/tail    trace events from running workers (JSON array)
- POST /api/v1/github  GitHub webhook deliveries

Read side:
- GET /api/v1/workers, /api/v1/errors, /api/v1/stats, /api/v1/query

Service:
- GET /, GET /health, CORS preflight for every path

IMPORTANT:
- Producers always get 200 + {received: true, ...} once a delivery is
  accepted. Storage or escalation failures never reach them.
- The only rejection is 401 when a webhook secret is configured and the
  signature is missing or wrong.
- Read endpoints answer bad query parameters with 422 {error, details}.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional, Any, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .aggregation_reader import AggregationReader
from .api_router import router as api_router
from .archive_store import ArchiveStore, FilesystemArchiveStore
from .config import TrackerConfig, load_config
from .counter_store import CounterStore, JsonFileCounterStore
from .escalation_client import EscalationClient
from .event_normalizer import RawTraceEvent, RawWebhookEvent, normalize
from .exceptions import SignatureError
from .ingestion_pipeline import IngestionPipeline
from .metrics_emitter import JsonlMetricsStore, MetricsEmitter, MetricsStore
from .webhook_signature import SIGNATURE_HEADER, check_webhook_signature

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("tracker")

GITHUB_EVENT_HEADER = "x-github-event"

ENDPOINTS = [
    "GET /health",
    "GET /api/v1/workers",
    "GET /api/v1/errors?worker=&date=&limit=",
    "GET /api/v1/stats",
    "GET /api/v1/query",
    "POST /api/v1/tail",
    "POST /api/v1/github",
]


def _parse_json(body: bytes) -> Any:
    """Decode a request body; malformed JSON reads as None."""
    if not body:
        return None
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring malformed JSON body: {e}")
        return None


def create_app(
    config: Optional[TrackerConfig] = None,
    counters: Optional[CounterStore] = None,
    archive: Optional[ArchiveStore] = None,
    metrics_store: Optional[MetricsStore] = None,
    escalation: Optional[EscalationClient] = None,
) -> FastAPI:
    """
    Build the application.

    Storage handles default to the file-backed adapters under
    config.storage.data_dir; tests pass in-memory ones. Escalation defaults
    to an httpx client when the evaluation service URL is configured.
    """
    config = config or load_config()
    counters = counters or JsonFileCounterStore(config.storage.counter_path)
    archive = archive or FilesystemArchiveStore(config.storage.archive_path)
    metrics_store = metrics_store or JsonlMetricsStore(config.storage.metrics_path)
    if escalation is None and config.escalation.bound:
        escalation = EscalationClient(
            base_url=config.escalation.base_url,
            timeout=config.escalation.timeout_seconds,
            evaluate_path=config.escalation.evaluate_path,
        )

    app = FastAPI(
        title="Tracker",
        description="Worker observability ingestion",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type", "authorization"],
    )

    app.state.config = config
    app.state.pipeline = IngestionPipeline(
        counters=counters,
        archive=archive,
        metrics=MetricsEmitter(metrics_store),
        escalation=escalation,
    )
    app.state.reader = AggregationReader(counters=counters, archive=archive)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse({"error": "Not found"}, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        ]
        return JSONResponse({"error": "Invalid request", "details": problems}, status_code=422)

    @app.get("/")
    async def root():
        return {
            "service": config.service.name,
            "description": "Centralized worker observability",
            "endpoints": ENDPOINTS,
        }

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": config.service.name,
            "version": config.service.version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/api/v1/tail")
    async def receive_tail(request: Request):
        payload = _parse_json(await request.body())
        items: List[Any] = payload if isinstance(payload, list) else ([payload] if payload else [])
        events = [normalize(RawTraceEvent(item if isinstance(item, dict) else {})) for item in items]
        await app.state.pipeline.ingest_batch(events)
        return {"received": True, "count": len(events)}

    @app.post("/api/v1/github")
    async def receive_github(request: Request):
        body = await request.body()
        try:
            check_webhook_signature(body, request.headers.get(SIGNATURE_HEADER), config.webhook.secret)
        except SignatureError as e:
            logger.warning(f"Rejected GitHub webhook: {e.reason}")
            return JSONResponse({"error": e.reason}, status_code=401)

        event_type = request.headers.get(GITHUB_EVENT_HEADER) or "unknown"
        payload = _parse_json(body)
        if not isinstance(payload, dict):
            payload = {}

        await app.state.pipeline.ingest(normalize(RawWebhookEvent(event_type=event_type, payload=payload)))
        return {"received": True, "event": event_type, "action": payload.get("action")}

    app.include_router(api_router)

    logger.info(
        f"Tracker app created: escalation={'bound' if escalation else 'unbound'}, "
        f"signature_check={'on' if config.webhook.verification_enabled else 'off'}"
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

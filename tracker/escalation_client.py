"""
Escalation Client - Best-Effort Failure Forwarding

POSTs failure detail to the evaluation service:

    POST <base_url>/api/v1/evaluate
    {worker, timestamp, outcome, exceptions, logs[, url, method]}

IMPORTANT:
- Escalation is observability-only. It must never affect ingestion.
- Every failure (network, timeout, non-2xx) is caught and logged.
- No retry, no backoff, no circuit breaker.
"""

import logging
from typing import Optional, Dict, Any

import httpx

from .event_model import CanonicalEvent, EventOrigin, ErrorEntry
from .exceptions import EscalationError

logger = logging.getLogger("escalation_client")

DEFAULT_TIMEOUT_SECONDS = 10.0
EVALUATE_PATH = "/api/v1/evaluate"


def build_evaluate_request(event: CanonicalEvent) -> Dict[str, Any]:
    """
    Body for the evaluate call.

    Trace failures send the full ErrorEntry. Webhook failures send the same
    shape with the synthesized exception and no logs.
    """
    if event.origin == EventOrigin.WEBHOOK:
        return {
            "worker": event.worker,
            "timestamp": event.timestamp,
            "outcome": event.outcome,
            "exceptions": [e.to_dict() for e in event.exceptions],
            "logs": [],
        }
    return ErrorEntry.from_event(event).to_dict()


class EscalationClient:
    """
    Async client for the evaluation service.

    `transport` lets tests substitute an httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        evaluate_path: str = EVALUATE_PATH,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.evaluate_path = evaluate_path
        self._transport = transport

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}{self.evaluate_path}",
                json=body,
                headers={"content-type": "application/json"},
            )
        if response.status_code >= 300:
            raise EscalationError(f"evaluation service returned {response.status_code}")
        return response

    async def escalate(self, event: CanonicalEvent) -> bool:
        """
        Forward a failure. Returns True on a 2xx answer, False otherwise.

        Never raises; the response body is ignored.
        """
        try:
            await self._post(build_evaluate_request(event))
            logger.debug(f"Escalated failure for {event.worker} at {event.timestamp}")
            return True
        except Exception as e:
            logger.warning(f"Escalation failed for {event.worker}: {e}")
            return False

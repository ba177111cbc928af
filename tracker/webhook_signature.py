"""GitHub webhook signature verification (HMAC-SHA256, `sha256=<hex>`)."""

import hashlib
import hmac
from typing import Optional

from .exceptions import SignatureError

SIGNATURE_HEADER = "x-hub-signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(signature.encode("utf-8"), compute_signature(body, secret).encode("utf-8"))


def check_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """
    Raise SignatureError unless the delivery is acceptable.

    With no secret configured every delivery is accepted.
    """
    if not secret:
        return
    if not signature:
        raise SignatureError("Missing signature")
    if not verify_signature(body, signature, secret):
        raise SignatureError("Invalid signature")

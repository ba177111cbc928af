"""Exception hierarchy for the tracker service."""

from typing import Optional


class TrackerError(Exception):
    """Base class for all tracker errors."""


class StorageError(TrackerError):
    """A counter, archive or metrics backend failed to complete an operation."""

    def __init__(self, backend: str, operation: str, key: Optional[str] = None, cause: Optional[BaseException] = None):
        self.backend = backend
        self.operation = operation
        self.key = key
        self.cause = cause
        target = f" {key}" if key else ""
        reason = f": {cause}" if cause else ""
        super().__init__(f"{backend} {operation}{target} failed{reason}")


class EscalationError(TrackerError):
    """The evaluation service rejected or did not answer an escalation."""


class SignatureError(TrackerError):
    """Webhook signature missing or not matching the configured secret."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ConfigError(TrackerError):
    """Invalid or unreadable configuration."""

"""
Tracker Configuration

Load order:
1. Built-in defaults (the pydantic models below)
2. Optional YAML file named by TRACKER_CONFIG_FILE
3. Environment variables (always win)

Environment variables:
- SERVICE_NAME, SERVICE_VERSION
- TRACKER_DATA_DIR: root for the counter file, archive dir and metrics file
- RESOLVE_SERVICE_URL: evaluation service base URL (unset = escalation unbound)
- RESOLVE_TIMEOUT: escalation timeout in seconds
- GITHUB_WEBHOOK_SECRET: unset or empty = signature verification skipped
"""

import logging
import os
from pathlib import Path
from typing import Optional, Dict, Any

import yaml
from pydantic import BaseModel, Field

from . import __version__
from .exceptions import ConfigError

logger = logging.getLogger("tracker_config")

DEFAULT_DATA_DIR = "/tmp/tracker"


# -----------------------------------------------------------------------------
# Config Schema
# -----------------------------------------------------------------------------
class ServiceConfig(BaseModel):
    name: str = "tracker"
    version: str = __version__


class StorageConfig(BaseModel):
    data_dir: str = DEFAULT_DATA_DIR
    counter_file: str = "counters.json"
    archive_dir: str = "archive"
    metrics_file: str = "metrics.jsonl"

    @property
    def counter_path(self) -> Path:
        return Path(self.data_dir) / self.counter_file

    @property
    def archive_path(self) -> Path:
        return Path(self.data_dir) / self.archive_dir

    @property
    def metrics_path(self) -> Path:
        return Path(self.data_dir) / self.metrics_file


class EscalationConfig(BaseModel):
    base_url: Optional[str] = None
    evaluate_path: str = "/api/v1/evaluate"
    timeout_seconds: float = 10.0

    @property
    def bound(self) -> bool:
        return bool(self.base_url)


class WebhookConfig(BaseModel):
    secret: Optional[str] = None

    @property
    def verification_enabled(self) -> bool:
        return bool(self.secret)


class ApiConfig(BaseModel):
    default_error_limit: int = 20
    max_error_limit: int = 1000


class TrackerConfig(BaseModel):
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


# -----------------------------------------------------------------------------
# Loader
# -----------------------------------------------------------------------------
def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}

    def put(section: str, key: str, value: Any) -> None:
        overrides.setdefault(section, {})[key] = value

    if environ.get("SERVICE_NAME"):
        put("service", "name", environ["SERVICE_NAME"])
    if environ.get("SERVICE_VERSION"):
        put("service", "version", environ["SERVICE_VERSION"])
    if environ.get("TRACKER_DATA_DIR"):
        put("storage", "data_dir", environ["TRACKER_DATA_DIR"])
    if environ.get("RESOLVE_SERVICE_URL"):
        put("escalation", "base_url", environ["RESOLVE_SERVICE_URL"])
    if environ.get("RESOLVE_TIMEOUT"):
        try:
            put("escalation", "timeout_seconds", float(environ["RESOLVE_TIMEOUT"]))
        except ValueError as e:
            raise ConfigError(f"RESOLVE_TIMEOUT must be a number: {environ['RESOLVE_TIMEOUT']}") from e
    if "GITHUB_WEBHOOK_SECRET" in environ:
        put("webhook", "secret", environ["GITHUB_WEBHOOK_SECRET"] or None)

    return overrides


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> TrackerConfig:
    """Build the effective configuration from defaults, YAML and environment."""
    environ = dict(os.environ) if environ is None else environ

    merged: Dict[str, Any] = {}
    path = config_file or (Path(environ["TRACKER_CONFIG_FILE"]) if environ.get("TRACKER_CONFIG_FILE") else None)
    if path is not None:
        merged = _load_yaml(path)
        logger.info(f"Loaded tracker config from {path}")

    merged = _deep_merge(merged, _env_overrides(environ))
    config = TrackerConfig(**merged)

    if not config.webhook.verification_enabled:
        logger.warning("GITHUB_WEBHOOK_SECRET not set - webhook signature verification disabled")
    if not config.escalation.bound:
        logger.info("No evaluation service configured - escalation disabled")

    return config

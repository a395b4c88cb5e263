from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "config.yaml"

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "S3_BUCKET_NAME": "storage.bucket",
    "S3_REGION": "storage.region",
    "S3_ENDPOINT_URL": "storage.endpoint_url",
    "S3_PUBLIC_BASE_URL": "storage.public_base_url",
    "CHUNK_SIZE_BYTES": "uploads.chunk_size_bytes",
    "MAX_CHUNK_BYTES": "uploads.max_chunk_bytes",
    "UPLOAD_SESSION_TTL_SECONDS": "uploads.session_ttl_seconds",
    "SESSION_SWEEP_INTERVAL_SECONDS": "uploads.session_sweep_interval_seconds",
    "SUBMISSION_TTL_SECONDS": "tracking.submission_ttl_seconds",
    "SUBMISSION_SWEEP_INTERVAL_SECONDS": "tracking.submission_sweep_interval_seconds",
    "COMPRESSION_ENABLED": "compression.enabled",
    "COMPRESSION_THRESHOLD_BYTES": "compression.threshold_bytes",
    "GHOSTSCRIPT_BINARY": "compression.ghostscript_binary",
    "LAMATIC_API_URL": "workflow.api_url",
    "LAMATIC_API_KEY": "workflow.api_key",
    "LAMATIC_WORKFLOW_ID": "workflow.workflow_id",
    "LAMATIC_PROJECT_ID": "workflow.project_id",
    "WORKFLOW_SERVER_SIDE_WATCH": "workflow.server_side_watch",
    "RATE_LIMIT_MAX_REQUESTS": "rate_limit.max_requests",
    "RATE_LIMIT_WINDOW_SECONDS": "rate_limit.window_seconds",
    "LOG_LEVEL": "logging.level",
}


@dataclass
class StorageSettings:
    bucket: str = ""
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    public_base_url: Optional[str] = None
    default_namespace: str = "uploads"


@dataclass
class UploadSettings:
    chunk_size_bytes: int = 2 * 1024 * 1024
    max_chunk_bytes: int = 10 * 1024 * 1024
    session_ttl_seconds: int = 30 * 60
    session_sweep_interval_seconds: int = 5 * 60


@dataclass
class TrackingSettings:
    submission_ttl_seconds: int = 24 * 60 * 60
    submission_sweep_interval_seconds: int = 60 * 60


@dataclass
class CompressionSettings:
    enabled: bool = True
    threshold_bytes: int = 4718592
    ghostscript_binary: str = "gs"
    pdf_settings: str = "/ebook"
    timeout_seconds: int = 120


@dataclass
class WorkflowSettings:
    api_url: str = ""
    api_key: str = ""
    workflow_id: str = ""
    project_id: str = ""
    submit_timeout_seconds: float = 60.0
    poll_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 120
    server_side_watch: bool = False


@dataclass
class RateLimitSettings:
    max_requests: int = 10
    window_seconds: int = 15 * 60


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class AppSettings:
    storage: StorageSettings = field(default_factory=StorageSettings)
    uploads: UploadSettings = field(default_factory=UploadSettings)
    tracking: TrackingSettings = field(default_factory=TrackingSettings)
    compression: CompressionSettings = field(default_factory=CompressionSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def env_overrides(environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """Collect config overrides from the environment as a nested dict."""
    environ = os.environ if environ is None else environ
    overrides = OmegaConf.create({})
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        OmegaConf.update(overrides, key, value, merge=True)
    return OmegaConf.to_container(overrides)  # type: ignore[return-value]


def make_settings(overrides: Dict[str, Any] | None = None, *, use_env: bool = True) -> DictConfig:
    """
    Build a runtime settings object.

    Layers, lowest precedence first: the structured schema, the packaged
    config.yaml, environment variables, then explicit ``overrides``. The
    result is in struct mode so typos in keys fail fast.
    """
    schema = OmegaConf.structured(AppSettings)
    layers = [schema, _load_default_config()]
    if use_env:
        layers.append(OmegaConf.create(env_overrides()))
    if overrides:
        layers.append(OmegaConf.create(overrides))
    merged = OmegaConf.merge(*layers)
    OmegaConf.set_struct(merged, True)
    return merged  # type: ignore[return-value]


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    load_dotenv()
    return make_settings()

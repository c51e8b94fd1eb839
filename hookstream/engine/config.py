"""
HookStream Configuration — Load and validate hookstream.yaml.

Usage:
    from hookstream.engine.config import load_config
    config = load_config("hookstream.yaml")
    config.transforms.timeout_seconds

There is no module-level cache: the WebhookRuntime owns the loaded config.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from hookstream.engine.errors import ConfigError

CONFIG_FILENAME = "hookstream.yaml"


# ---------------------------------------------------------------------------
# Pydantic models for hookstream.yaml
# ---------------------------------------------------------------------------

class PlatformSection(BaseModel):
    name: str = "HookStream"
    environment: str = "dev"

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


class WebhooksConfig(BaseModel):
    default_buffer_capacity: int = Field(default=100, gt=0)
    default_auto_acknowledge: bool = True
    event_id_prefix: str = Field(default="evt", min_length=1)
    default_events_limit: int = Field(default=50, gt=0)


class TransformsConfig(BaseModel):
    timeout_seconds: float = Field(default=1.0, gt=0)
    max_workers: int = Field(default=4, gt=0)


class StoreConfig(BaseModel):
    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    prefix: str = "hookstream:"
    db: int = 0
    ttl: Optional[int] = None


class LogRetentionConfig(BaseModel):
    execution_days: int = 90
    performance_days: int = 30
    security_days: int = 365

    def as_dict(self) -> Dict[str, int]:
        return {
            "execution": self.execution_days,
            "performance": self.performance_days,
            "security": self.security_days,
        }


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LogRotationConfig(BaseModel):
    compress_after_days: int = 7


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".hookstream/logs"
    rotation: LogRotationConfig = LogRotationConfig()
    retention: LogRetentionConfig = LogRetentionConfig()
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{v}'")
        return v


class HookStreamConfig(BaseModel):
    """Root model for hookstream.yaml."""
    platform: PlatformSection = PlatformSection()
    webhooks: WebhooksConfig = WebhooksConfig()
    transforms: TransformsConfig = TransformsConfig()
    store: StoreConfig = StoreConfig()
    logging: LoggingConfig = LoggingConfig()

    @property
    def environment(self) -> str:
        return self.platform.environment


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------

def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Walk up from ``start`` (default CWD) looking for hookstream.yaml."""
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Optional[str] = None) -> HookStreamConfig:
    """
    Load and validate hookstream.yaml.

    Args:
        config_path: Explicit path. If None, auto-discovers from the CWD.

    Returns:
        Validated HookStreamConfig (defaults when no file exists).

    Raises:
        ConfigError: unreadable YAML or values that fail validation.
    """
    if config_path is None:
        found = find_config_file()
        if found is None:
            return HookStreamConfig()
        path = found
    else:
        path = Path(config_path)
        if not path.exists():
            return HookStreamConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", path=str(path)) from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping", path=str(path))

    try:
        return HookStreamConfig(**raw)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid configuration in {path}: {e.error_count()} error(s)",
            path=str(path),
            errors=[err["msg"] for err in e.errors()],
        ) from e

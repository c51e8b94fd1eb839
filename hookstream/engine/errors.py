"""
HookStream Error Hierarchy — Structured exceptions for the ingestion pipeline.

Every error carries the webhook_id (and transform_id / target_field where it
applies) so a failure can be traced from the JSONL logs back to the mapping
that produced it.

Hierarchy:
    HookStreamError
    ├── WebhookNotFoundError     — Unknown webhook id
    ├── WebhookInactiveError     — Ingest attempted on a non-active webhook
    ├── ValidationFailedError    — Validator rejected the payload
    ├── TransformError           — The whole transform could not be applied
    ├── MappingFailure           — One mapping failed (recovered locally)
    ├── SandboxError             — Transform code rejected or crashed
    │   └── SandboxTimeoutError  — Transform code exceeded its time budget
    ├── WebhookStatusError       — Illegal status transition
    ├── StoreError               — Persistence collaborator failure
    └── ConfigError              — Invalid hookstream.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class HookStreamError(Exception):
    """
    Base error for all HookStream engine failures.
    All context is kept serializable so it can be written to the JSONL logs.
    """

    #: Failure kind reported by ``WebhookService.ingest`` (None = not surfaced)
    kind: Optional[str] = None

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.webhook_id: Optional[str] = context.get("webhook_id")
        self.transform_id: Optional[str] = context.get("transform_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "kind": self.kind,
            "message": self.message,
            "webhook_id": self.webhook_id,
            "transform_id": self.transform_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("webhook_id", "transform_id")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.webhook_id:
            parts.append(f"webhook_id={self.webhook_id}")
        if self.transform_id:
            parts.append(f"transform_id={self.transform_id}")
        return " | ".join(parts)


class WebhookNotFoundError(HookStreamError):
    """Webhook id is not registered."""

    kind = "not_found"


class WebhookInactiveError(HookStreamError):
    """Ingest attempted while the webhook status is not ``active``."""

    kind = "inactive"

    def __init__(self, message: str, **context: Any):
        self.status: Optional[str] = context.get("status")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["status"] = self.status
        return d


class ValidationFailedError(HookStreamError):
    """The webhook's validator rejected the payload."""

    kind = "validation_failed"


class TransformError(HookStreamError):
    """
    The transform as a whole could not be applied.
    Distinct from MappingFailure, which is recovered inside the engine.
    """

    kind = "transform_error"


class MappingFailure(HookStreamError):
    """
    A single mapping failed (condition, function or timeout).
    Recovered by the TransformEngine — never surfaces past it.
    """

    def __init__(self, message: str, **context: Any):
        self.target_field: Optional[str] = context.get("target_field")
        self.source_path: Optional[str] = context.get("source_path")
        self.mapping_index: Optional[int] = context.get("mapping_index")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["target_field"] = self.target_field
        d["source_path"] = self.source_path
        d["mapping_index"] = self.mapping_index
        return d


class SandboxError(HookStreamError):
    """Transform code was rejected at compile time or raised at run time."""

    def __init__(self, message: str, **context: Any):
        self.source: Optional[str] = context.get("source")
        super().__init__(message, **context)


class SandboxTimeoutError(SandboxError):
    """Transform code exceeded its time budget."""

    def __init__(self, message: str, **context: Any):
        self.timeout_seconds: Optional[float] = context.get("timeout_seconds")
        super().__init__(message, **context)


class WebhookStatusError(HookStreamError):
    """Requested status transition is not allowed (e.g. leaving ``error``)."""

    def __init__(self, message: str, **context: Any):
        self.current_status: Optional[str] = context.get("current_status")
        self.requested_status: Optional[str] = context.get("requested_status")
        super().__init__(message, **context)


class StoreError(HookStreamError):
    """Definition store (persistence collaborator) failure."""
    pass


class ConfigError(HookStreamError):
    """Configuration error — invalid hookstream.yaml."""
    pass

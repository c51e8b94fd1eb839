"""HookStream Engine — Registry, ingestion service, transforms, sandbox, logging."""

from hookstream.engine.models import FieldMapping, Transform, WebhookDefinition, WebhookEvent, WebhookStatus  # noqa: F401
from hookstream.engine.runtime import WebhookRuntime  # noqa: F401
from hookstream.engine.service import IngestErrorKind, IngestResult, WebhookService  # noqa: F401
from hookstream.engine.transform import TransformEngine, TransformResult  # noqa: F401

__all__ = [
    "FieldMapping",
    "Transform",
    "WebhookDefinition",
    "WebhookEvent",
    "WebhookStatus",
    "WebhookRuntime",
    "IngestErrorKind",
    "IngestResult",
    "WebhookService",
    "TransformEngine",
    "TransformResult",
]

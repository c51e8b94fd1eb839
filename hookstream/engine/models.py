"""
HookStream data model — webhook definitions, events, mappings and transforms.

Definitions, mappings and transforms are pydantic models with camelCase aliases
so the persisted/transmitted shape matches the dashboard's JSON:

    WebhookDefinition: {id, name, description, endpointToken, authConfig,
                        bufferCapacity, autoAcknowledge, status, createdAt,
                        lastReceivedAt?}
    WebhookEvent:      {id, webhookId, eventType, payload, headers, timestamp,
                        processed, error?}
    FieldMapping:      {sourcePath, targetField, transformType,
                        transformFunction?, defaultValue?, condition?}
"""

from __future__ import annotations

import secrets
import uuid
from types import MappingProxyType
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from hookstream.engine.errors import SandboxError
from hookstream.engine.sandbox import COMPUTED_KIND, FUNCTION_KIND, compile_transform

TRANSFORM_TYPES = ("direct", "function", "computed", "conditional")
OUTPUT_FORMATS = ("flat", "nested", "array")

TransformType = Literal["direct", "function", "computed", "conditional"]
OutputFormat = Literal["flat", "nested", "array"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _WireModel(BaseModel):
    """Base for models exchanged with collaborators (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Webhook definitions
# ---------------------------------------------------------------------------

class WebhookStatus(str, Enum):
    """Webhook lifecycle status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class AuthConfig(_WireModel):
    """
    How the transport authenticates requests for this webhook.
    The core only stores it; verification happens before ingest().
    """

    type: Literal["none", "shared_secret", "signature", "bearer"] = "none"
    header: Optional[str] = None
    algorithm: Literal["sha256", "sha1", "md5"] = "sha256"
    secret: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        # Dashboard exports use "secret" for the shared-secret scheme
        if v == "secret":
            return "shared_secret"
        return v

    @model_validator(mode="after")
    def check_signature_header(self) -> "AuthConfig":
        if self.type == "signature" and not self.header:
            raise ValueError("signature auth requires a header name")
        return self


class WebhookDefinition(_WireModel):
    """Configuration of one inbound event source."""

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    endpoint_token: str = Field(default_factory=lambda: secrets.token_urlsafe(16))
    auth_config: AuthConfig = Field(default_factory=AuthConfig)
    buffer_capacity: int = Field(default=100, gt=0)
    auto_acknowledge: bool = True
    status: WebhookStatus = WebhookStatus.ACTIVE
    created_at: str = Field(default_factory=_now_iso)
    last_received_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == WebhookStatus.ACTIVE


# ---------------------------------------------------------------------------
# Mappings & transforms
# ---------------------------------------------------------------------------

class Condition(_WireModel):
    """Predicate ``{field, operator, value}`` evaluated against the payload."""

    field: str
    operator: str
    value: Any = None


class FieldMapping(_WireModel):
    """
    One source-path → target-path rule.

    ``transform_type`` is the variant tag:
      direct       copy the extracted value
      function     transform_function(value, payload)
      computed     transform_function(payload), extracted value ignored
      conditional  copy when ``condition`` holds, otherwise the default

    Transform code is compiled here, so a malformed mapping never reaches the
    engine.
    """

    id: Optional[str] = None
    source_path: str = ""
    target_field: str = Field(min_length=1)
    transform_type: TransformType = "direct"
    transform_function: Optional[str] = None
    default_value: Any = None
    condition: Optional[Condition] = None

    @model_validator(mode="after")
    def check_variant(self) -> "FieldMapping":
        kind = self.transform_type
        code = (self.transform_function or "").strip()

        if kind in (FUNCTION_KIND, COMPUTED_KIND):
            if not code:
                raise ValueError(f"{kind} mapping requires transform_function")
            try:
                compile_transform(self.transform_function, kind)
            except SandboxError as e:
                raise ValueError(e.message) from e
        elif code:
            raise ValueError(f"{kind} mapping does not take transform_function")

        if kind == "conditional" and self.condition is None:
            raise ValueError("conditional mapping requires a condition")
        if kind in ("direct", "function", "conditional") and not self.source_path:
            raise ValueError(f"{kind} mapping requires source_path")
        return self

    @property
    def has_default(self) -> bool:
        """True when a default was configured (an explicit None counts)."""
        return "default_value" in self.model_fields_set

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        if not self.has_default:
            d.pop("defaultValue", None)
        return d


class Transform(_WireModel):
    """Ordered mappings plus an output format tag."""

    id: str = Field(default_factory=lambda: f"tf_{uuid.uuid4().hex[:12]}")
    name: str = ""
    description: str = ""
    webhook_id: Optional[str] = None
    mappings: List[FieldMapping] = Field(default_factory=list)
    output_format: OutputFormat = "nested"
    test_payload: Any = None

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["mappings"] = [m.to_dict() for m in self.mappings]
        return d


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

def derive_event_type(payload: Any) -> str:
    """Event type from the payload's ``event`` or ``type`` string field."""
    if isinstance(payload, Mapping):
        for key in ("event", "type"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return "unknown"


def freeze(value: Any) -> Any:
    """Deep read-only copy: mappings become mapping proxies, sequences tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Plain, mutable copy of a frozen value."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    if isinstance(value, frozenset):
        return [thaw(v) for v in value]
    return value


@dataclass
class WebhookEvent:
    """
    One received event. Read-only after creation except ``processed``.

    ``payload`` and ``headers`` are frozen on construction, so every reader
    and subscriber sees the same data. ``to_dict()`` returns plain copies.
    """

    id: str
    webhook_id: str
    event_type: str
    payload: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    timestamp: int = 0
    processed: bool = False
    error: Optional[str] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name != "processed" and name in self.__dict__:
            raise AttributeError(f"WebhookEvent.{name} is read-only")
        object.__setattr__(self, name, value)

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", freeze(self.payload))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def sequence(self) -> int:
        """Counter part of the id (``evt_<n>_<ms>``)."""
        try:
            return int(self.id.split("_")[1])
        except (IndexError, ValueError):
            return -1

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "webhookId": self.webhook_id,
            "eventType": self.event_type,
            "payload": thaw(self.payload),
            "headers": dict(self.headers),
            "timestamp": self.timestamp,
            "processed": self.processed,
        }
        if self.error:
            d["error"] = self.error
        return d

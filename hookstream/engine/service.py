"""
HookStream Webhook Service — ingestion entry point for the transport layer.

    service = WebhookService()
    service.register(WebhookDefinition(id="stripe", name="Stripe Webhook"))
    unsubscribe = service.subscribe("stripe", on_event)
    result = service.ingest("stripe", payload, headers)
    if not result.success:
        print(result.error, result.message)

ingest() never raises for expected failures; it returns an IngestResult with
one of: not_found, inactive, validation_failed, transform_error. A failed
ingest leaves the buffer and subscriber set untouched.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from hookstream.engine.errors import (
    HookStreamError,
    TransformError,
    ValidationFailedError,
    WebhookInactiveError,
    WebhookNotFoundError,
)
from hookstream.engine.logging import log_webhook_ingest, log_webhook_security
from hookstream.engine.models import (
    Transform,
    WebhookDefinition,
    WebhookEvent,
    WebhookStatus,
    derive_event_type,
)
from hookstream.engine.registry import Validator, WebhookRegistry
from hookstream.engine.subscribers import Subscription
from hookstream.engine.templates import find_template_for
from hookstream.engine.transform import TransformEngine, TransformResult

logger = logging.getLogger("hookstream.engine.service")

SIMULATOR_HEADERS = {
    "content-type": "application/json",
    "user-agent": "webhook-simulator",
}


class IngestErrorKind(str, Enum):
    """Failure kinds surfaced to the caller of ingest()."""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    VALIDATION_FAILED = "validation_failed"
    TRANSFORM_ERROR = "transform_error"


@dataclass
class IngestResult:
    """Outcome of one ingest() call."""

    success: bool
    error: Optional[IngestErrorKind] = None
    message: Optional[str] = None
    event: Optional[WebhookEvent] = None
    subscribers_notified: int = 0

    @classmethod
    def failure(cls, exc: HookStreamError) -> "IngestResult":
        return cls(success=False, error=IngestErrorKind(exc.kind), message=exc.message)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            d["error"] = self.error.value
            d["message"] = self.message
        if self.event is not None:
            d["event"] = self.event.to_dict()
        return d


class WebhookService:
    """
    Orchestrates validation, transformation, buffering and fan-out.

    The service owns no global state: construct one per process (the
    WebhookRuntime does) and hand it to the transport and dashboard.
    """

    def __init__(
        self,
        registry: Optional[WebhookRegistry] = None,
        engine: Optional[TransformEngine] = None,
        log_queue: Any = None,
        event_id_prefix: str = "evt",
        default_events_limit: int = 50,
    ):
        self.registry = registry or WebhookRegistry(log_queue=log_queue)
        self.engine = engine or TransformEngine(log_queue=log_queue)
        self._log_queue = log_queue
        self._event_id_prefix = event_id_prefix
        self._default_events_limit = default_events_limit
        self._counter = 0
        self._counter_lock = threading.Lock()

    def _log(self, entry) -> None:
        if self._log_queue is not None:
            self._log_queue.push(entry)

    def _next_event_id(self) -> str:
        with self._counter_lock:
            self._counter += 1
            n = self._counter
        return f"{self._event_id_prefix}_{n}_{int(time.time() * 1000)}"

    # -----------------------------------------------------------------------
    # Registry surface (persistence collaborator)
    # -----------------------------------------------------------------------

    def register(
        self,
        definition: WebhookDefinition,
        transform: Optional[Transform] = None,
        validator: Optional[Validator] = None,
    ) -> None:
        self.registry.register(definition, transform=transform, validator=validator)

    def unregister(self, webhook_id: str) -> bool:
        return self.registry.unregister(webhook_id)

    def get(self, webhook_id: str) -> Optional[WebhookDefinition]:
        return self.registry.get(webhook_id)

    def list_all(self) -> List[WebhookDefinition]:
        return self.registry.list_all()

    def set_status(self, webhook_id: str, status: Any) -> WebhookStatus:
        return self.registry.set_status(webhook_id, status)

    def toggle(self, webhook_id: str) -> WebhookStatus:
        return self.registry.toggle(webhook_id)

    def set_transform(self, webhook_id: str, transform: Optional[Transform]) -> None:
        self.registry.set_transform(webhook_id, transform)

    def get_transform(self, webhook_id: str) -> Optional[Transform]:
        slot = self.registry.resolve(webhook_id)
        return slot.transform if slot else None

    def set_validator(self, webhook_id: str, validator: Optional[Validator]) -> None:
        self.registry.set_validator(webhook_id, validator)

    # -----------------------------------------------------------------------
    # Ingest
    # -----------------------------------------------------------------------

    def ingest(
        self,
        webhook_id: str,
        payload: Any,
        headers: Optional[Mapping[str, Any]] = None,
    ) -> IngestResult:
        """
        Receive one payload for ``webhook_id``.

        Steps: lookup → status check → validator → transform → buffer push
        (sets processed = auto_acknowledge) → last_received_at → notify.
        """
        start = time.monotonic()
        headers = {str(k): str(v) for k, v in (headers or {}).items()}

        try:
            slot = self.registry.resolve_or_raise(webhook_id)
            with slot.lock:
                definition = slot.definition
                status = definition.status
                auto_ack = definition.auto_acknowledge
                transform = slot.transform
                validator = slot.validator

            self._check_active(webhook_id, status)
            self._validate(webhook_id, validator, payload, headers)
            result = self._transform(webhook_id, transform, payload)

            with slot.lock:
                if self.registry.resolve(webhook_id) is not slot:
                    raise WebhookNotFoundError(
                        f"Webhook not found: {webhook_id}", webhook_id=webhook_id,
                    )
                self._check_active(webhook_id, slot.definition.status)

                # WebhookEvent freezes a private copy of the payload and headers
                event = WebhookEvent(
                    id=self._next_event_id(),
                    webhook_id=webhook_id,
                    event_type=derive_event_type(payload),
                    payload=result.output,
                    headers=headers,
                    timestamp=int(time.time() * 1000),
                    processed=auto_ack,
                    error=result.error_summary(),
                )
                slot.buffer.push(event)
                slot.definition.last_received_at = datetime.now(timezone.utc).isoformat()

        except HookStreamError as e:
            if e.kind is None:
                raise
            logger.info(f"Ingest rejected for {webhook_id}: {e.kind} ({e.message})")
            self._log(log_webhook_ingest(
                webhook_id=webhook_id,
                success=False,
                duration_ms=(time.monotonic() - start) * 1000,
                error_kind=e.kind,
                error=e.message,
            ))
            return IngestResult.failure(e)

        notified = self._notify(slot, event)

        self._log(log_webhook_ingest(
            webhook_id=webhook_id,
            success=True,
            duration_ms=(time.monotonic() - start) * 1000,
            event_id=event.id,
            event_type=event.event_type,
            mapping_failures=len(result.failures),
            subscribers_notified=notified,
        ))
        return IngestResult(success=True, event=event, subscribers_notified=notified)

    @staticmethod
    def _check_active(webhook_id: str, status: WebhookStatus) -> None:
        if status != WebhookStatus.ACTIVE:
            raise WebhookInactiveError(
                f"Webhook {webhook_id} is not active",
                webhook_id=webhook_id,
                status=status.value,
            )

    def _validate(
        self,
        webhook_id: str,
        validator: Optional[Validator],
        payload: Any,
        headers: Dict[str, str],
    ) -> None:
        if validator is None:
            return
        try:
            accepted = validator(payload, headers)
        except Exception as e:
            reason = f"validator raised {type(e).__name__}: {e}"
            accepted = False
        else:
            reason = "validator rejected payload"
        if not accepted:
            self._log(log_webhook_security("webhook_validation_failed", webhook_id, reason))
            raise ValidationFailedError(
                f"Webhook validation failed: {reason}",
                webhook_id=webhook_id,
            )

    def _transform(
        self,
        webhook_id: str,
        transform: Optional[Transform],
        payload: Any,
    ) -> TransformResult:
        try:
            return self.engine.preview(transform, payload, webhook_id=webhook_id)
        except TransformError:
            raise
        except Exception as e:
            raise TransformError(
                f"Transform failed: {e}",
                webhook_id=webhook_id,
                transform_id=getattr(transform, "id", None),
            ) from e

    def _notify(self, slot, event: WebhookEvent) -> int:
        try:
            return slot.subscribers.notify(event)
        except Exception as e:
            logger.error(f"Notification fan-out failed for {event.webhook_id}: {e}")
            return 0

    # -----------------------------------------------------------------------
    # Presentation surface
    # -----------------------------------------------------------------------

    def subscribe(self, webhook_id: str, callback: Callable[[WebhookEvent], Any]) -> Subscription:
        """Register a live listener. Raises WebhookNotFoundError."""
        slot = self.registry.resolve_or_raise(webhook_id)
        with slot.lock:
            return slot.subscribers.subscribe(callback)

    def events(self, webhook_id: str, limit: Optional[int] = None) -> List[WebhookEvent]:
        """Last ``limit`` events (default from config); [] for unknown ids."""
        slot = self.registry.resolve(webhook_id)
        if slot is None:
            return []
        with slot.lock:
            return slot.buffer.slice(self._default_events_limit if limit is None else limit)

    def latest(self, webhook_id: str) -> Optional[WebhookEvent]:
        slot = self.registry.resolve(webhook_id)
        if slot is None:
            return None
        with slot.lock:
            return slot.buffer.latest()

    def clear_events(self, webhook_id: str) -> None:
        slot = self.registry.resolve(webhook_id)
        if slot is None:
            return
        with slot.lock:
            slot.buffer.clear()

    def acknowledge(self, webhook_id: str, event_id: str) -> bool:
        """Mark a buffered event as processed. False if it is not buffered."""
        slot = self.registry.resolve_or_raise(webhook_id)
        with slot.lock:
            event = slot.buffer.find(lambda e: e.id == event_id)
            if event is None:
                return False
            event.processed = True
            return True

    def subscriber_count(self, webhook_id: str) -> int:
        slot = self.registry.resolve(webhook_id)
        return slot.subscribers.count if slot else 0

    # -----------------------------------------------------------------------
    # Simulation
    # -----------------------------------------------------------------------

    def simulate(self, webhook_id: str, payload: Any = None) -> IngestResult:
        """
        Ingest a test payload with simulator headers.

        Without ``payload`` the provider template's sample payload is used
        (provider = first word of the webhook name), else a generic test event.
        """
        definition = self.registry.get(webhook_id)
        if definition is None:
            return IngestResult.failure(
                WebhookNotFoundError(f"Webhook not found: {webhook_id}", webhook_id=webhook_id)
            )

        if payload is None:
            template = find_template_for(definition)
            if template is not None:
                payload = copy.deepcopy(template.sample_payload)
            else:
                payload = {"event": "test", "data": {"message": "Test webhook event"}}

        return self.ingest(webhook_id, payload, dict(SIMULATOR_HEADERS))

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Per-webhook buffer / subscriber figures."""
        webhooks: Dict[str, Any] = {}
        for webhook_id in sorted(self.registry.get_all_ids()):
            slot = self.registry.resolve(webhook_id)
            if slot is None:
                continue
            with slot.lock:
                webhooks[webhook_id] = {
                    "status": slot.definition.status.value,
                    "buffered": len(slot.buffer),
                    "capacity": slot.buffer.capacity,
                    "evicted": slot.buffer.evicted_count,
                    "subscribers": slot.subscribers.count,
                    "last_received_at": slot.definition.last_received_at,
                }
        return {
            "webhooks": webhooks,
            "by_status": self.registry.to_summary(),
            "events_received": self._counter,
        }

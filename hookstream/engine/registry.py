"""
HookStream Webhook Registry — definitions plus their per-webhook state.

Each registered webhook owns a slot:
    definition   WebhookDefinition (status, capacity, auth, ...)
    buffer       EventBuffer sized by definition.buffer_capacity
    subscribers  SubscriberRegistry
    transform    optional Transform applied on ingest
    validator    optional ``validator(payload, headers) -> bool``
    lock         serializes buffer / subscriber / status mutations

Status machine: active <-> inactive, active/inactive -> error. Leaving error
requires re-registration.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from hookstream.engine.buffer import EventBuffer
from hookstream.engine.errors import WebhookNotFoundError, WebhookStatusError
from hookstream.engine.logging import log_webhook_lifecycle
from hookstream.engine.models import Transform, WebhookDefinition, WebhookEvent, WebhookStatus
from hookstream.engine.subscribers import SubscriberRegistry

logger = logging.getLogger("hookstream.engine.registry")

Validator = Callable[[Any, Mapping[str, str]], bool]


@dataclass
class WebhookSlot:
    """Everything the registry keeps for one webhook id."""

    definition: WebhookDefinition
    buffer: EventBuffer[WebhookEvent]
    subscribers: SubscriberRegistry
    transform: Optional[Transform] = None
    validator: Optional[Validator] = None
    lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def webhook_id(self) -> str:
        return self.definition.id


class WebhookRegistry:
    """
    In-memory webhook registry.

    Usage:
        registry = WebhookRegistry()
        registry.register(WebhookDefinition(id="gh", name="GitHub"))
        slot = registry.resolve_or_raise("gh")
        registry.set_status("gh", "inactive")
    """

    def __init__(self, log_queue: Any = None):
        self._slots: Dict[str, WebhookSlot] = {}
        self._lock = threading.RLock()
        self._log_queue = log_queue

    def _log(self, entry) -> None:
        if self._log_queue is not None:
            self._log_queue.push(entry)

    # -----------------------------------------------------------------------
    # Registration
    # -----------------------------------------------------------------------

    def register(
        self,
        definition: WebhookDefinition,
        transform: Optional[Transform] = None,
        validator: Optional[Validator] = None,
    ) -> WebhookSlot:
        """
        Insert or overwrite a webhook definition.

        On an id collision the new definition wins, but the existing buffer
        (resized to the new capacity) and subscribers are kept, as are the
        transform and validator unless new ones are given.
        """
        definition = definition.model_copy(deep=True)
        with self._lock:
            slot = self._slots.get(definition.id)
            if slot is None:
                slot = WebhookSlot(
                    definition=definition,
                    buffer=EventBuffer(definition.buffer_capacity),
                    subscribers=SubscriberRegistry(definition.id, log_queue=self._log_queue),
                    transform=transform,
                    validator=validator,
                )
                self._slots[definition.id] = slot
                created = True
            else:
                created = False

        if not created:
            with slot.lock:
                previous = slot.definition
                slot.definition = definition
                if slot.buffer.capacity != definition.buffer_capacity:
                    dropped = slot.buffer.resize(definition.buffer_capacity)
                    if dropped:
                        logger.info(f"Resized buffer of {definition.id}: evicted {dropped}")
                if transform is not None:
                    slot.transform = transform
                if validator is not None:
                    slot.validator = validator
            if previous == definition:
                logger.debug(f"Re-registered {definition.id} (unchanged)")
                return slot

        logger.info(f"Registered webhook: {definition.id} ({definition.status.value})")
        self._log(log_webhook_lifecycle(
            "webhook_registered" if created else "webhook_updated",
            webhook_id=definition.id,
            status=definition.status.value,
        ))
        return slot

    def unregister(self, webhook_id: str) -> bool:
        """Remove a webhook with its buffer and subscribers."""
        with self._lock:
            slot = self._slots.pop(webhook_id, None)
        if slot is None:
            return False

        with slot.lock:
            slot.subscribers.clear()
            slot.buffer.clear()

        logger.info(f"Unregistered webhook: {webhook_id}")
        self._log(log_webhook_lifecycle("webhook_unregistered", webhook_id=webhook_id))
        return True

    # -----------------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------------

    def resolve(self, webhook_id: str) -> Optional[WebhookSlot]:
        with self._lock:
            return self._slots.get(webhook_id)

    def resolve_or_raise(self, webhook_id: str) -> WebhookSlot:
        slot = self.resolve(webhook_id)
        if slot is None:
            raise WebhookNotFoundError(
                f"Webhook not found: {webhook_id}",
                webhook_id=webhook_id,
            )
        return slot

    def get(self, webhook_id: str) -> Optional[WebhookDefinition]:
        """Copy of the current definition, or None."""
        slot = self.resolve(webhook_id)
        if slot is None:
            return None
        with slot.lock:
            return slot.definition.model_copy(deep=True)

    def list_all(self) -> List[WebhookDefinition]:
        """Copies of all definitions, in registration order."""
        with self._lock:
            slots = list(self._slots.values())
        result = []
        for slot in slots:
            with slot.lock:
                result.append(slot.definition.model_copy(deep=True))
        return result

    def get_all_ids(self) -> Set[str]:
        with self._lock:
            return set(self._slots.keys())

    def contains(self, webhook_id: str) -> bool:
        with self._lock:
            return webhook_id in self._slots

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._slots)

    def clear(self) -> None:
        with self._lock:
            ids = list(self._slots.keys())
        for webhook_id in ids:
            self.unregister(webhook_id)

    # -----------------------------------------------------------------------
    # Mutation
    # -----------------------------------------------------------------------

    def set_status(self, webhook_id: str, status: Any) -> WebhookStatus:
        """
        Move a webhook to ``status``. Idempotent.

        Raises WebhookStatusError when leaving ``error`` (re-register instead).
        """
        new_status = WebhookStatus(status)
        slot = self.resolve_or_raise(webhook_id)
        with slot.lock:
            current = slot.definition.status
            if current == new_status:
                return current
            if current == WebhookStatus.ERROR:
                raise WebhookStatusError(
                    f"Webhook {webhook_id} is in error; re-register it to recover",
                    webhook_id=webhook_id,
                    current_status=current.value,
                    requested_status=new_status.value,
                )
            slot.definition.status = new_status

        logger.info(f"Webhook {webhook_id}: {current.value} -> {new_status.value}")
        self._log(log_webhook_lifecycle(
            "webhook_status_changed",
            webhook_id=webhook_id,
            status=new_status.value,
            previous_status=current.value,
        ))
        return new_status

    def toggle(self, webhook_id: str) -> WebhookStatus:
        """active -> inactive, inactive -> active."""
        slot = self.resolve_or_raise(webhook_id)
        with slot.lock:
            current = slot.definition.status
        target = WebhookStatus.INACTIVE if current == WebhookStatus.ACTIVE else WebhookStatus.ACTIVE
        return self.set_status(webhook_id, target)

    def set_transform(self, webhook_id: str, transform: Optional[Transform]) -> None:
        slot = self.resolve_or_raise(webhook_id)
        with slot.lock:
            slot.transform = transform

    def set_validator(self, webhook_id: str, validator: Optional[Validator]) -> None:
        slot = self.resolve_or_raise(webhook_id)
        with slot.lock:
            slot.validator = validator

    def to_summary(self) -> Dict[str, int]:
        """Webhook counts by status."""
        summary: Dict[str, int] = {}
        for definition in self.list_all():
            key = definition.status.value
            summary[key] = summary.get(key, 0) + 1
        return summary

"""
HookStream Webhook Manager — persistence-aware CRUD over a WebhookService.

Every mutation is applied to the live service first, then written to the
DefinitionStore. A failed store write is logged (and pushed to the system
log) but does not undo the in-memory change; the next successful save
catches the store up.

    manager = WebhookManager(service, InMemoryDefinitionStore())
    manager.load()
    manager.create_webhook(WebhookDefinition(id="gh", name="GitHub Webhook"))
    manager.update_webhook("gh", buffer_capacity=500)
    manager.toggle_webhook("gh")
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from hookstream.engine.config import WebhooksConfig
from hookstream.engine.errors import WebhookNotFoundError
from hookstream.engine.logging import log_system_event
from hookstream.engine.models import Transform, WebhookDefinition, WebhookStatus
from hookstream.engine.service import WebhookService
from hookstream.engine.store import DefinitionStore, InMemoryDefinitionStore

logger = logging.getLogger("hookstream.engine.manager")


class WebhookManager:
    """Keeps the live service and the definition store in step."""

    def __init__(
        self,
        service: WebhookService,
        store: Optional[DefinitionStore] = None,
        defaults: Optional[WebhooksConfig] = None,
        log_queue: Any = None,
    ):
        self.service = service
        self.store = store if store is not None else InMemoryDefinitionStore()
        self._defaults = defaults or WebhooksConfig()
        self._log_queue = log_queue
        self._transforms: Dict[str, Transform] = {}
        self._lock = threading.RLock()

    def _persisted(self, ok: bool, action: str, object_id: str) -> bool:
        if not ok:
            logger.warning(f"Store write failed: {action} {object_id}")
            if self._log_queue is not None:
                self._log_queue.push(log_system_event(
                    "store_write_failed",
                    level="WARNING",
                    details={"action": action, "id": object_id},
                ))
        return ok

    def _apply_defaults(self, definition: WebhookDefinition) -> WebhookDefinition:
        """Fill capacity / auto-ack from config when the caller left them unset."""
        updates: Dict[str, Any] = {}
        if "buffer_capacity" not in definition.model_fields_set:
            updates["buffer_capacity"] = self._defaults.default_buffer_capacity
        if "auto_acknowledge" not in definition.model_fields_set:
            updates["auto_acknowledge"] = self._defaults.default_auto_acknowledge
        if not updates:
            return definition
        data = definition.model_dump()
        data.update(updates)
        return WebhookDefinition.model_validate(data)

    # -----------------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------------

    def load(self) -> int:
        """
        Register every stored definition that is not live yet and attach
        stored transforms to their webhooks.

        Returns the number of webhooks registered.
        """
        with self._lock:
            for transform in self.store.load_transforms():
                self._transforms[transform.id] = transform

            by_webhook: Dict[str, Transform] = {}
            for transform in self._transforms.values():
                if transform.webhook_id:
                    by_webhook[transform.webhook_id] = transform

            registered = 0
            for definition in self.store.load_definitions():
                if self.service.registry.contains(definition.id):
                    continue
                self.service.register(definition, transform=by_webhook.get(definition.id))
                registered += 1

        logger.info(f"Loaded {registered} webhook(s), {len(self._transforms)} transform(s) from store")
        return registered

    # -----------------------------------------------------------------------
    # Webhooks
    # -----------------------------------------------------------------------

    @property
    def webhooks(self) -> List[WebhookDefinition]:
        return self.service.list_all()

    def create_webhook(
        self,
        definition: WebhookDefinition,
        transform: Optional[Transform] = None,
    ) -> WebhookDefinition:
        """Register and persist a definition (overwrites an existing id)."""
        definition = self._apply_defaults(definition)
        if transform is not None and transform.webhook_id != definition.id:
            # load() re-attaches transforms by webhook_id
            transform = transform.model_copy(update={"webhook_id": definition.id})
        with self._lock:
            self.service.register(definition, transform=transform)
            self._persisted(self.store.save_definition(definition), "save_definition", definition.id)
            if transform is not None:
                self._store_transform(transform)
        return self.service.get(definition.id)

    def delete_webhook(self, webhook_id: str) -> bool:
        """Unregister and forget a webhook. False if it was unknown to both."""
        with self._lock:
            live = self.service.unregister(webhook_id)
            stored = self.store.delete_definition(webhook_id)
        return live or stored

    def update_webhook(self, webhook_id: str, **updates: Any) -> WebhookDefinition:
        """
        Merge ``updates`` (snake_case field names) into the definition and
        re-register it. Buffer and subscribers survive; a status in ``error``
        may be reset here.

        Raises WebhookNotFoundError, ValueError for unknown or immutable fields.
        """
        unknown = set(updates) - set(WebhookDefinition.model_fields)
        if unknown:
            raise ValueError(f"Unknown webhook field(s): {', '.join(sorted(unknown))}")
        if "id" in updates and updates["id"] != webhook_id:
            raise ValueError("Webhook id cannot be changed")

        with self._lock:
            current = self.service.get(webhook_id)
            if current is None:
                raise WebhookNotFoundError(
                    f"Webhook not found: {webhook_id}",
                    webhook_id=webhook_id,
                )
            data = current.model_dump()
            data.update(updates)
            merged = WebhookDefinition.model_validate(data)

            self.service.register(merged)
            self._persisted(self.store.save_definition(merged), "save_definition", webhook_id)
        return self.service.get(webhook_id)

    def toggle_webhook(self, webhook_id: str) -> WebhookStatus:
        """Flip active/inactive and persist the new status."""
        with self._lock:
            status = self.service.toggle(webhook_id)
            definition = self.service.get(webhook_id)
            if definition is not None:
                self._persisted(self.store.save_definition(definition), "save_definition", webhook_id)
        return status

    # -----------------------------------------------------------------------
    # Transforms
    # -----------------------------------------------------------------------

    @property
    def transforms(self) -> List[Transform]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._transforms.values()]

    def _store_transform(self, transform: Transform) -> None:
        self._transforms[transform.id] = transform.model_copy(deep=True)
        self._persisted(self.store.save_transform(transform), "save_transform", transform.id)

    def save_transform(self, transform: Transform) -> Transform:
        """Persist a transform and attach it to its webhook when that is live."""
        with self._lock:
            self._store_transform(transform)
            if transform.webhook_id and self.service.registry.contains(transform.webhook_id):
                self.service.set_transform(transform.webhook_id, transform)
                logger.info(f"Attached transform {transform.id} to {transform.webhook_id}")
        return transform

    def get_transform(self, transform_id: str) -> Optional[Transform]:
        with self._lock:
            transform = self._transforms.get(transform_id)
            return transform.model_copy(deep=True) if transform else None

    def delete_transform(self, transform_id: str) -> bool:
        """Forget a transform and detach it from the webhook using it."""
        with self._lock:
            transform = self._transforms.pop(transform_id, None)
            stored = self.store.delete_transform(transform_id)
            if transform is not None and transform.webhook_id:
                attached = self.service.get_transform(transform.webhook_id)
                if attached is not None and attached.id == transform_id:
                    self.service.set_transform(transform.webhook_id, None)
        return transform is not None or stored

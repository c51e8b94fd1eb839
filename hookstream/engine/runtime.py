"""
HookStream Runtime — the process object that owns every engine component.

Ties together:
- HookStreamConfig (hookstream.yaml)
- AsyncLogQueue + LogRetentionManager (JSONL logs)
- DefinitionStore (memory / Redis)
- Sandbox + TransformEngine
- WebhookService + WebhookManager

Lifecycle:
    with WebhookRuntime(load_config()) as runtime:
        runtime.manager.create_webhook(definition)
        runtime.service.ingest("gh", payload, headers)

Nothing here is module-global; two runtimes in one process are independent.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from hookstream.engine.config import HookStreamConfig
from hookstream.engine.logging import (
    AsyncLogQueue,
    LogRetentionManager,
    create_log_queue,
    log_system_event,
)
from hookstream.engine.manager import WebhookManager
from hookstream.engine.registry import WebhookRegistry
from hookstream.engine.sandbox import Sandbox
from hookstream.engine.service import WebhookService
from hookstream.engine.store import DefinitionStore, create_store
from hookstream.engine.transform import TransformEngine

logger = logging.getLogger("hookstream.engine.runtime")


class WebhookRuntime:
    """
    Owns config, logging, store, sandbox, engine, service and manager.

    Lifecycle:
        runtime = WebhookRuntime(config)
        runtime.startup()   # build subsystems, load stored webhooks
        ...
        runtime.shutdown()  # stop sandbox workers, flush logs
    """

    def __init__(
        self,
        config: Optional[HookStreamConfig] = None,
        store: Optional[DefinitionStore] = None,
        enable_file_logs: bool = True,
    ):
        self.config = config or HookStreamConfig()
        self._store_override = store
        self._enable_file_logs = enable_file_logs

        # Subsystems (initialized in startup())
        self.log_queue: Optional[AsyncLogQueue] = None
        self.retention_manager: Optional[LogRetentionManager] = None
        self.store: Optional[DefinitionStore] = None
        self.sandbox: Optional[Sandbox] = None
        self.engine: Optional[TransformEngine] = None
        self.service: Optional[WebhookService] = None
        self.manager: Optional[WebhookManager] = None

        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def startup(self) -> None:
        """Initialize all subsystems."""
        if self._started:
            logger.warning("Runtime already started")
            return

        logger.info("Starting HookStream runtime...")
        logging.getLogger("hookstream").setLevel(self.config.logging.level)
        log_cfg = self.config.logging

        # 1. Logging
        if self._enable_file_logs:
            self.log_queue = create_log_queue(
                log_dir=log_cfg.directory,
                flush_interval_ms=log_cfg.async_queue.flush_interval_ms,
                flush_batch_size=log_cfg.async_queue.flush_batch_size,
                max_queue_size=log_cfg.async_queue.max_queue_size,
            )
        self.retention_manager = LogRetentionManager(
            log_dir=log_cfg.directory,
            retention_days=log_cfg.retention.as_dict(),
            compress_after_days=log_cfg.rotation.compress_after_days,
        )

        # 2. Store
        self.store = self._store_override or create_store(self.config.store)

        # 3. Transform engine
        self.sandbox = Sandbox(
            timeout_seconds=self.config.transforms.timeout_seconds,
            max_workers=self.config.transforms.max_workers,
        )
        self.engine = TransformEngine(sandbox=self.sandbox, log_queue=self.log_queue)

        # 4. Service + manager
        self.service = WebhookService(
            registry=WebhookRegistry(log_queue=self.log_queue),
            engine=self.engine,
            log_queue=self.log_queue,
            event_id_prefix=self.config.webhooks.event_id_prefix,
            default_events_limit=self.config.webhooks.default_events_limit,
        )
        self.manager = WebhookManager(
            self.service,
            self.store,
            defaults=self.config.webhooks,
            log_queue=self.log_queue,
        )
        loaded = self.manager.load()

        self._started = True
        self._log(log_system_event("runtime_started", details={"webhooks_loaded": loaded}))
        logger.info(f"HookStream runtime started ({loaded} webhook(s) loaded)")

    def shutdown(self) -> None:
        """Stop the sandbox pool and flush logs."""
        if not self._started:
            return

        logger.info("Shutting down HookStream runtime...")

        if self.sandbox is not None:
            self.sandbox.shutdown(wait=False)

        store_cache = getattr(self.store, "cache", None)
        if store_cache is not None:
            store_cache.close()

        self._log(log_system_event("runtime_shutdown"))
        if self.log_queue is not None:
            self.log_queue.stop()

        self._started = False
        logger.info("HookStream runtime shut down")

    def __enter__(self) -> "WebhookRuntime":
        self.startup()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def _log(self, entry) -> None:
        if self.log_queue is not None:
            self.log_queue.push(entry)

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def cleanup_logs(self) -> Dict[str, int]:
        """Apply log retention. Returns {"deleted": N, "compressed": M}."""
        manager = self.retention_manager or LogRetentionManager(
            log_dir=self.config.logging.directory,
            retention_days=self.config.logging.retention.as_dict(),
            compress_after_days=self.config.logging.rotation.compress_after_days,
        )
        return manager.cleanup()

    def status(self) -> Dict[str, Any]:
        """Summary of all subsystems."""
        status: Dict[str, Any] = {
            "started": self._started,
            "environment": self.config.environment,
            "store": type(self.store).__name__ if self.store is not None else None,
            "log_queue": None,
            "sandbox": None,
            "webhooks": None,
        }

        if self.log_queue is not None:
            status["log_queue"] = {
                "pending": self.log_queue.pending_count,
                "dropped": self.log_queue.dropped_count,
            }

        if self.sandbox is not None:
            status["sandbox"] = {
                "timeout_seconds": self.sandbox.timeout_seconds,
                "timeouts": self.sandbox.timeout_count,
                "stuck_workers": self.sandbox.stuck_workers,
            }

        if self.service is not None:
            status["webhooks"] = self.service.stats()

        return status

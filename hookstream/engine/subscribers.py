"""
SubscriberRegistry — live listeners for one webhook.

Each subscribe() returns a Subscription: a first-class, revocable handle.
notify() fans an event out to every current listener; a listener that raises is
logged and skipped, never propagated.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Set

from hookstream.engine.logging import log_subscriber_error

logger = logging.getLogger("hookstream.engine.subscribers")

Callback = Callable[[Any], Any]


class Subscription:
    """
    Handle returned by ``SubscriberRegistry.subscribe``.

    Calling it (or ``unsubscribe()``) removes exactly this listener. Repeat
    calls are no-ops, as are calls after the webhook was unregistered.
    """

    __slots__ = ("_registry", "_handle_id", "webhook_id")

    def __init__(self, registry: "SubscriberRegistry", handle_id: int):
        self._registry = registry
        self._handle_id = handle_id
        self.webhook_id = registry.webhook_id

    @property
    def handle_id(self) -> int:
        return self._handle_id

    @property
    def active(self) -> bool:
        return self._registry.has(self._handle_id)

    def unsubscribe(self) -> bool:
        """Revoke the listener. Returns True if it was still registered."""
        return self._registry.remove(self._handle_id)

    def __call__(self) -> bool:
        return self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self.active else "revoked"
        return f"<Subscription {self.webhook_id}#{self._handle_id} {state}>"


class SubscriberRegistry:
    """Set of listener callbacks keyed by subscription handle."""

    _handle_ids = itertools.count(1)

    def __init__(self, webhook_id: str, log_queue: Any = None):
        self.webhook_id = webhook_id
        self._log_queue = log_queue
        self._callbacks: Dict[int, Callback] = {}
        self._lock = threading.Lock()
        self._failures = 0
        # Strong references to scheduled async deliveries until they finish
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, callback: Callback) -> Subscription:
        if not callable(callback):
            raise TypeError("subscriber callback must be callable")
        handle_id = next(self._handle_ids)
        with self._lock:
            self._callbacks[handle_id] = callback
        logger.debug(f"Subscribed #{handle_id} to {self.webhook_id}")
        return Subscription(self, handle_id)

    def remove(self, handle_id: int) -> bool:
        with self._lock:
            return self._callbacks.pop(handle_id, None) is not None

    def has(self, handle_id: int) -> bool:
        with self._lock:
            return handle_id in self._callbacks

    def snapshot(self) -> List[Callback]:
        with self._lock:
            return list(self._callbacks.values())

    def notify(self, event: Any) -> int:
        """
        Deliver ``event`` to every current listener.

        Returns the number of listeners that completed without raising.
        """
        delivered = 0
        for callback in self.snapshot():
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    self._drain_awaitable(result)
                delivered += 1
            except Exception as e:
                self._failures += 1
                logger.error(
                    f"Subscriber error on {self.webhook_id} "
                    f"(event {getattr(event, 'id', '?')}): {e}"
                )
                if self._log_queue is not None:
                    self._log_queue.push(log_subscriber_error(
                        webhook_id=self.webhook_id,
                        event_id=getattr(event, "id", None),
                        error=str(e),
                        callback=getattr(callback, "__qualname__", repr(callback)),
                    ))
        return delivered

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._callbacks)

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def pending_tasks(self) -> int:
        """Async deliveries scheduled on a running loop and not yet finished."""
        with self._lock:
            return len(self._tasks)

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def _drain_awaitable(self, awaitable: Any) -> None:
        """Run a coroutine returned by an async subscriber."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            asyncio.run(_await(awaitable))
            return

        task = loop.create_task(_await(awaitable))
        with self._lock:
            self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task") -> None:
        with self._lock:
            self._tasks.discard(task)
        _log_task_failure(task)


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _log_task_failure(task: "asyncio.Task") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Async subscriber error: {exc}")

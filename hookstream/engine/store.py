"""
HookStream Definition Store — persistence collaborator for webhook definitions
and transforms.

The core never talks to a database. It loads and saves definitions through a
DefinitionStore:

  InMemoryDefinitionStore  — process-local dicts (tests, CLI, dev)
  RedisDefinitionStore     — JSON documents in Redis, one key per object

Redis key layout (prefix defaults to "hookstream:"):
  {prefix}webhook:{id}       WebhookDefinition (camelCase JSON)
  {prefix}transform:{id}     Transform (camelCase JSON)
  {prefix}index:webhooks     set of webhook ids
  {prefix}index:transforms   set of transform ids
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Set

from pydantic import ValidationError

from hookstream.engine.config import StoreConfig
from hookstream.engine.errors import StoreError
from hookstream.engine.models import Transform, WebhookDefinition

logger = logging.getLogger("hookstream.engine.store")


_FAILED = object()


class CircuitBreaker:
    """
    Opens after ``threshold`` failures within ``window_seconds`` of the first
    one; once open, allows a retry after another ``window_seconds``.
    """

    def __init__(self, threshold: int = 5, window_seconds: float = 30.0):
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.failure_count = 0
        self._first_failure_at = 0.0
        self._opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def ready_to_retry(self) -> bool:
        return self.is_open and time.monotonic() - self._opened_at > self.window_seconds

    def record_failure(self) -> bool:
        """Count a failure. True when this failure opened the breaker."""
        now = time.monotonic()
        if self.failure_count == 0 or now - self._first_failure_at > self.window_seconds:
            self.failure_count = 0
            self._first_failure_at = now
        self.failure_count += 1
        if not self.is_open and self.failure_count >= self.threshold:
            self._opened_at = now
            return True
        return False

    def reset(self) -> None:
        self.failure_count = 0
        self._opened_at = None


class RedisCache:
    """
    Thin redis-py wrapper: prefixed keys, JSON documents, id sets.

    Calls degrade to a neutral result (None / False / empty set) while Redis
    is unreachable or the circuit breaker is open.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "hookstream:",
        default_ttl: Optional[int] = None,
        db: int = 0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.redis_url = redis_url
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.db = db
        self.breaker = breaker or CircuitBreaker()
        self._client = None
        self._available = False

    def connect(self) -> bool:
        """Open the client and ping it. False (and unavailable) on any error."""
        import redis

        try:
            client = redis.Redis.from_url(
                self.redis_url,
                db=self.db,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
            )
            client.ping()
        except Exception as e:
            logger.warning(f"Redis unavailable at {self.redis_url} (db {self.db}): {e}")
            self._available = False
            return False

        self._client = client
        self._available = True
        self.breaker.reset()
        logger.info(f"Redis store connected: db {self.db}, prefix '{self.prefix}'")
        return True

    def _usable(self) -> bool:
        if self.breaker.is_open:
            if not self.breaker.ready_to_retry():
                return False
            self.breaker.reset()
            return self.connect()
        return self._available and self._client is not None

    def _call(self, command: str, key: str, *args: Any, **kwargs: Any) -> Any:
        """Run one client command on a prefixed key; _FAILED when skipped or failed."""
        if not self._usable():
            return _FAILED
        try:
            return getattr(self._client, command)(f"{self.prefix}{key}", *args, **kwargs)
        except Exception as e:
            logger.debug(f"Redis {command.upper()} {key} failed: {e}")
            if self.breaker.record_failure():
                logger.error(
                    f"Redis circuit breaker open after {self.breaker.failure_count} failures"
                )
            return _FAILED

    # ── Keys ──

    def get(self, key: str) -> Optional[str]:
        value = self._call("get", key)
        return None if value is _FAILED else value

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Store ``value``; expires only when a TTL is given or configured."""
        return self._call("set", key, value, ex=ttl or self.default_ttl) is not _FAILED

    def delete(self, key: str) -> bool:
        return self._call("delete", key) is not _FAILED

    def exists(self, key: str) -> bool:
        found = self._call("exists", key)
        return found is not _FAILED and bool(found)

    # ── JSON documents ──

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring non-JSON value at {self.prefix}{key}")
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return self.set(key, json.dumps(value, default=str), ttl=ttl)

    # ── Id sets ──

    def sadd(self, key: str, *members: str) -> bool:
        return self._call("sadd", key, *members) is not _FAILED

    def srem(self, key: str, *members: str) -> bool:
        return self._call("srem", key, *members) is not _FAILED

    def smembers(self, key: str) -> Set[str]:
        members = self._call("smembers", key)
        return set() if members is _FAILED else set(members)

    # ── Connection ──

    def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(self._client.ping())
        except Exception:
            return False

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug(f"Redis close failed: {e}")
        self._client = None
        self._available = False
        self.breaker.reset()

    @property
    def is_available(self) -> bool:
        return self._available and not self.breaker.is_open

    @property
    def is_circuit_open(self) -> bool:
        return self.breaker.is_open


# ---------------------------------------------------------------------------
# Definition stores
# ---------------------------------------------------------------------------

class DefinitionStore(Protocol):
    """What the WebhookManager needs from a persistence collaborator."""

    def load_definitions(self) -> List[WebhookDefinition]: ...

    def save_definition(self, definition: WebhookDefinition) -> bool: ...

    def delete_definition(self, webhook_id: str) -> bool: ...

    def load_transforms(self) -> List[Transform]: ...

    def save_transform(self, transform: Transform) -> bool: ...

    def delete_transform(self, transform_id: str) -> bool: ...


class InMemoryDefinitionStore:
    """Process-local store. Objects are copied on the way in and out."""

    def __init__(self):
        self._definitions: Dict[str, Dict[str, Any]] = {}
        self._transforms: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def load_definitions(self) -> List[WebhookDefinition]:
        with self._lock:
            docs = copy.deepcopy(list(self._definitions.values()))
        return [WebhookDefinition.from_dict(d) for d in docs]

    def save_definition(self, definition: WebhookDefinition) -> bool:
        with self._lock:
            self._definitions[definition.id] = definition.to_dict()
        return True

    def delete_definition(self, webhook_id: str) -> bool:
        with self._lock:
            return self._definitions.pop(webhook_id, None) is not None

    def load_transforms(self) -> List[Transform]:
        with self._lock:
            docs = copy.deepcopy(list(self._transforms.values()))
        return [Transform.from_dict(d) for d in docs]

    def save_transform(self, transform: Transform) -> bool:
        with self._lock:
            self._transforms[transform.id] = transform.to_dict()
        return True

    def delete_transform(self, transform_id: str) -> bool:
        with self._lock:
            return self._transforms.pop(transform_id, None) is not None


class RedisDefinitionStore:
    """
    Redis-backed store on top of RedisCache.

    Writes return False (and reads return nothing) while Redis is down;
    stored documents that no longer validate are skipped with a warning.
    """

    WEBHOOK_INDEX = "index:webhooks"
    TRANSFORM_INDEX = "index:transforms"

    def __init__(self, cache: RedisCache):
        self._cache = cache

    @property
    def cache(self) -> RedisCache:
        return self._cache

    def load_definitions(self) -> List[WebhookDefinition]:
        result = []
        for webhook_id in sorted(self._cache.smembers(self.WEBHOOK_INDEX)):
            doc = self._cache.get_json(f"webhook:{webhook_id}")
            if doc is None:
                continue
            try:
                result.append(WebhookDefinition.from_dict(doc))
            except ValidationError as e:
                logger.warning(f"Skipping invalid stored webhook '{webhook_id}': {e.error_count()} error(s)")
        return result

    def save_definition(self, definition: WebhookDefinition) -> bool:
        if not self._cache.set_json(f"webhook:{definition.id}", definition.to_dict()):
            return False
        return self._cache.sadd(self.WEBHOOK_INDEX, definition.id)

    def delete_definition(self, webhook_id: str) -> bool:
        existed = self._cache.exists(f"webhook:{webhook_id}")
        self._cache.delete(f"webhook:{webhook_id}")
        self._cache.srem(self.WEBHOOK_INDEX, webhook_id)
        return existed

    def load_transforms(self) -> List[Transform]:
        result = []
        for transform_id in sorted(self._cache.smembers(self.TRANSFORM_INDEX)):
            doc = self._cache.get_json(f"transform:{transform_id}")
            if doc is None:
                continue
            try:
                result.append(Transform.from_dict(doc))
            except ValidationError as e:
                logger.warning(f"Skipping invalid stored transform '{transform_id}': {e.error_count()} error(s)")
        return result

    def save_transform(self, transform: Transform) -> bool:
        if not self._cache.set_json(f"transform:{transform.id}", transform.to_dict()):
            return False
        return self._cache.sadd(self.TRANSFORM_INDEX, transform.id)

    def delete_transform(self, transform_id: str) -> bool:
        existed = self._cache.exists(f"transform:{transform_id}")
        self._cache.delete(f"transform:{transform_id}")
        self._cache.srem(self.TRANSFORM_INDEX, transform_id)
        return existed


def create_store(config: Optional[StoreConfig] = None) -> DefinitionStore:
    """Build the store selected by ``store.backend``."""
    config = config or StoreConfig()
    if config.backend == "memory":
        return InMemoryDefinitionStore()
    if config.backend == "redis":
        cache = RedisCache(
            redis_url=config.redis_url,
            prefix=config.prefix,
            default_ttl=config.ttl,
            db=config.db,
        )
        cache.connect()
        return RedisDefinitionStore(cache)
    raise StoreError(f"Unknown store backend: {config.backend}", backend=config.backend)

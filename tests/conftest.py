"""
HookStream Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

from hookstream.engine.models import FieldMapping, Transform, WebhookDefinition
from hookstream.engine.sandbox import Sandbox
from hookstream.engine.service import WebhookService
from hookstream.engine.transform import TransformEngine


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a clean temp directory."""
    return tmp_path


@pytest.fixture
def project_root(tmp_path):
    """
    Create a minimal project tree with hookstream.yaml.
    Returns the root Path.
    """
    root = tmp_path / "project"
    root.mkdir()
    log_dir = root / "logs"

    (root / "hookstream.yaml").write_text(
        "platform:\n"
        "  name: TestHooks\n"
        "  environment: staging\n"
        "webhooks:\n"
        "  default_buffer_capacity: 25\n"
        "  event_id_prefix: evt\n"
        "  default_events_limit: 10\n"
        "transforms:\n"
        "  timeout_seconds: 0.5\n"
        "  max_workers: 2\n"
        "store:\n"
        "  backend: memory\n"
        "logging:\n"
        "  level: debug\n"
        f"  directory: {log_dir.as_posix()}\n"
        "  async_queue:\n"
        "    flush_interval_ms: 10\n",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def mock_redis():
    """Return a mock Redis client."""
    client = MagicMock()
    client.ping.return_value = True
    client.get.return_value = None
    client.set.return_value = True
    client.delete.return_value = 1
    client.exists.return_value = 0
    client.smembers.return_value = set()
    return client


@pytest.fixture
def mock_log_queue():
    """A log queue double; read back with the ``pushed_events`` fixture."""
    return MagicMock()


@pytest.fixture
def pushed_events():
    """Return a helper listing the ``event`` names pushed to a mocked queue."""
    def _events(queue: MagicMock) -> list:
        return [c.args[0].data["event"] for c in queue.push.call_args_list]
    return _events


@pytest.fixture
def sandbox():
    sb = Sandbox(timeout_seconds=0.5, max_workers=2)
    yield sb
    sb.shutdown()


@pytest.fixture
def engine(sandbox):
    return TransformEngine(sandbox=sandbox)


@pytest.fixture
def service(engine):
    return WebhookService(engine=engine)


@pytest.fixture
def github_definition() -> WebhookDefinition:
    return WebhookDefinition(
        id="gh",
        name="GitHub Webhook",
        description="Repository events",
        buffer_capacity=5,
    )


@pytest.fixture
def stripe_definition() -> WebhookDefinition:
    return WebhookDefinition(
        id="stripe",
        name="Stripe Webhook",
        auth_config={"type": "signature", "header": "Stripe-Signature"},
    )


@pytest.fixture
def order_payload() -> Dict[str, Any]:
    return {
        "event": "order.created",
        "order": {"id": "o-1", "status": "paid", "customer": {"name": "Ada"}},
        "quantity": 3,
        "price": 10,
        "tags": ["new", "priority"],
    }


@pytest.fixture
def order_transform() -> Transform:
    return Transform(
        id="tf_orders",
        name="Orders",
        webhook_id="orders",
        mappings=[
            FieldMapping(source_path="order.id", target_field="id"),
            FieldMapping(source_path="order.customer.name", target_field="customer.name"),
            FieldMapping(
                target_field="total",
                transform_type="computed",
                transform_function="return payload.quantity * payload.price",
            ),
            FieldMapping(
                source_path="order.status",
                target_field="status",
                transform_type="function",
                transform_function="return value.upper()",
            ),
        ],
    )

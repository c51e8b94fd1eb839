"""
Integration test fixtures — full runtime with file logs and a store.

Run: pytest tests/integration/ -v -m integration
"""

from __future__ import annotations

import pytest

from hookstream.engine.config import HookStreamConfig
from hookstream.engine.runtime import WebhookRuntime
from hookstream.engine.store import InMemoryDefinitionStore


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: exercises the full runtime end to end")


@pytest.fixture
def runtime_config(tmp_path) -> HookStreamConfig:
    return HookStreamConfig(
        platform={"name": "IntegrationHooks", "environment": "dev"},
        webhooks={"default_buffer_capacity": 3, "default_events_limit": 10},
        transforms={"timeout_seconds": 0.5, "max_workers": 2},
        logging={"directory": str(tmp_path / "logs"), "async_queue": {"flush_interval_ms": 10}},
    )


@pytest.fixture
def shared_store() -> InMemoryDefinitionStore:
    return InMemoryDefinitionStore()


@pytest.fixture
def runtime(runtime_config, shared_store):
    rt = WebhookRuntime(runtime_config, store=shared_store)
    rt.startup()
    yield rt
    rt.shutdown()

"""Unit tests for hookstream.engine.registry — WebhookRegistry."""

import pytest

from hookstream.engine.errors import WebhookNotFoundError, WebhookStatusError
from hookstream.engine.models import Transform, WebhookDefinition, WebhookStatus
from hookstream.engine.registry import WebhookRegistry, WebhookSlot


class TestRegistration:
    def setup_method(self):
        self.reg = WebhookRegistry()

    def test_register_and_resolve(self, github_definition):
        slot = self.reg.register(github_definition)
        assert isinstance(slot, WebhookSlot)
        assert self.reg.resolve("gh") is slot
        assert slot.buffer.capacity == 5
        assert slot.webhook_id == "gh"

    def test_resolve_missing(self):
        assert self.reg.resolve("nope") is None
        with pytest.raises(WebhookNotFoundError):
            self.reg.resolve_or_raise("nope")

    def test_register_copies_definition(self, github_definition):
        self.reg.register(github_definition)
        github_definition.name = "changed"
        assert self.reg.get("gh").name == "GitHub Webhook"

    def test_get_returns_copy(self, github_definition):
        self.reg.register(github_definition)
        self.reg.get("gh").status = "inactive"
        assert self.reg.get("gh").status == WebhookStatus.ACTIVE

    def test_overwrite_keeps_buffer_and_subscribers(self, github_definition):
        slot = self.reg.register(github_definition)
        for i in range(5):
            slot.buffer.push(i)
        handle = slot.subscribers.subscribe(lambda e: None)

        updated = github_definition.model_copy(update={"name": "GH", "buffer_capacity": 2})
        again = self.reg.register(updated)

        assert again is slot
        assert self.reg.get("gh").name == "GH"
        assert list(slot.buffer) == [3, 4]
        assert handle.active

    def test_identical_reregistration_is_a_no_op(self, github_definition, mock_log_queue, pushed_events):
        reg = WebhookRegistry(log_queue=mock_log_queue)
        slot = reg.register(github_definition)
        slot.buffer.push("e1")
        slot.subscribers.subscribe(lambda e: None)

        reg.register(github_definition)

        assert list(slot.buffer) == ["e1"]
        assert slot.subscribers.count == 1
        assert pushed_events(mock_log_queue) == ["webhook_registered"]

    def test_transform_kept_unless_replaced(self, github_definition):
        t1 = Transform(id="tf_1")
        t2 = Transform(id="tf_2")
        slot = self.reg.register(github_definition, transform=t1)
        self.reg.register(github_definition)
        assert slot.transform is t1
        self.reg.register(github_definition, transform=t2)
        assert slot.transform is t2

    def test_unregister(self, github_definition):
        slot = self.reg.register(github_definition)
        slot.buffer.push("e1")
        handle = slot.subscribers.subscribe(lambda e: None)

        assert self.reg.unregister("gh") is True
        assert self.reg.unregister("gh") is False
        assert self.reg.resolve("gh") is None
        assert len(slot.buffer) == 0
        assert handle.unsubscribe() is False

    def test_listing(self):
        for wid in ("a", "b", "c"):
            self.reg.register(WebhookDefinition(id=wid))
        assert [d.id for d in self.reg.list_all()] == ["a", "b", "c"]
        assert self.reg.get_all_ids() == {"a", "b", "c"}
        assert self.reg.count == 3
        assert self.reg.contains("b")
        self.reg.clear()
        assert self.reg.count == 0


class TestStatus:
    def setup_method(self):
        self.reg = WebhookRegistry()
        self.reg.register(WebhookDefinition(id="gh"))

    def test_set_status(self):
        assert self.reg.set_status("gh", "inactive") == WebhookStatus.INACTIVE
        assert self.reg.get("gh").status == WebhookStatus.INACTIVE

    def test_idempotent(self, mock_log_queue, pushed_events):
        reg = WebhookRegistry(log_queue=mock_log_queue)
        reg.register(WebhookDefinition(id="gh"))
        reg.set_status("gh", WebhookStatus.INACTIVE)
        reg.set_status("gh", WebhookStatus.INACTIVE)
        assert pushed_events(mock_log_queue) == ["webhook_registered", "webhook_status_changed"]

    def test_toggle(self):
        assert self.reg.toggle("gh") == WebhookStatus.INACTIVE
        assert self.reg.toggle("gh") == WebhookStatus.ACTIVE

    def test_error_is_sticky(self):
        self.reg.set_status("gh", "error")
        with pytest.raises(WebhookStatusError) as exc:
            self.reg.set_status("gh", "active")
        assert exc.value.current_status == "error"
        with pytest.raises(WebhookStatusError):
            self.reg.toggle("gh")

    def test_reregistration_leaves_error(self):
        self.reg.set_status("gh", "error")
        self.reg.register(WebhookDefinition(id="gh"))
        assert self.reg.get("gh").status == WebhookStatus.ACTIVE

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            self.reg.set_status("gh", "paused")

    def test_unknown_webhook(self):
        with pytest.raises(WebhookNotFoundError):
            self.reg.set_status("nope", "inactive")
        with pytest.raises(WebhookNotFoundError):
            self.reg.set_transform("nope", None)
        with pytest.raises(WebhookNotFoundError):
            self.reg.set_validator("nope", None)

    def test_summary(self):
        self.reg.register(WebhookDefinition(id="b", status="inactive"))
        assert self.reg.to_summary() == {"active": 1, "inactive": 1}

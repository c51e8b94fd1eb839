"""Unit tests for hookstream.engine.subscribers — revocable listeners."""

import asyncio

import pytest

from hookstream.engine.subscribers import SubscriberRegistry, Subscription


class TestSubscriberRegistry:
    def setup_method(self):
        self.subs = SubscriberRegistry("gh")

    def test_subscribe_and_notify(self):
        received = []
        handle = self.subs.subscribe(received.append)
        assert isinstance(handle, Subscription)
        assert handle.webhook_id == "gh"
        assert self.subs.notify("evt") == 1
        assert received == ["evt"]
        assert self.subs.count == 1

    def test_unsubscribed_listener_never_called(self):
        received = []
        handle = self.subs.subscribe(received.append)
        assert handle.unsubscribe() is True
        self.subs.notify("evt")
        assert received == []
        assert handle.active is False

    def test_revoke_is_idempotent(self):
        handle = self.subs.subscribe(lambda e: None)
        assert handle() is True
        assert handle() is False
        assert handle.unsubscribe() is False

    def test_same_callback_twice_gets_two_handles(self):
        received = []
        first = self.subs.subscribe(received.append)
        second = self.subs.subscribe(received.append)
        assert first.handle_id != second.handle_id
        first.unsubscribe()
        self.subs.notify("evt")
        assert received == ["evt"]

    def test_callback_error_isolated(self, mock_log_queue, pushed_events):
        subs = SubscriberRegistry("gh", log_queue=mock_log_queue)
        received = []

        def broken(event):
            raise RuntimeError("listener down")

        subs.subscribe(broken)
        subs.subscribe(received.append)
        assert subs.notify("evt") == 1
        assert received == ["evt"]
        assert subs.failure_count == 1
        assert pushed_events(mock_log_queue) == ["subscriber_failed"]

    def test_async_callback_awaited(self):
        received = []

        async def listener(event):
            received.append(event)

        self.subs.subscribe(listener)
        assert self.subs.notify("evt") == 1
        assert received == ["evt"]

    def test_async_callback_on_running_loop_is_held_until_done(self):
        received = []

        async def listener(event):
            await asyncio.sleep(0)
            received.append(event)

        async def deliver():
            self.subs.subscribe(listener)
            assert self.subs.notify("evt") == 1
            assert self.subs.pending_tasks == 1
            for _ in range(5):
                await asyncio.sleep(0)
            return self.subs.pending_tasks

        assert asyncio.run(deliver()) == 0
        assert received == ["evt"]

    def test_rejects_non_callable(self):
        with pytest.raises(TypeError):
            self.subs.subscribe("not callable")

    def test_clear_revokes_everything(self):
        handle = self.subs.subscribe(lambda e: None)
        self.subs.clear()
        assert self.subs.count == 0
        assert handle.active is False
        assert handle.unsubscribe() is False

    def test_listener_may_unsubscribe_during_notify(self):
        calls = []
        handle = None

        def once(event):
            calls.append(event)
            handle.unsubscribe()

        handle = self.subs.subscribe(once)
        self.subs.notify(1)
        self.subs.notify(2)
        assert calls == [1]

    def test_repr(self):
        handle = self.subs.subscribe(lambda e: None)
        assert "active" in repr(handle)
        handle()
        assert "revoked" in repr(handle)

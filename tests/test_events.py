"""Tests for the event bus."""
import asyncio

import pytest

from pixelsingularity.errors import EventTimeoutError


# ─────────────────────────────────────────────────────
# Subscribe and publish
# ─────────────────────────────────────────────────────

class TestPublish:
    def test_handlers_receive_payload(self, bus):
        seen = []
        bus.subscribe('tick', seen.append)
        bus.publish('tick', {'deltaTime': 0.05})
        assert seen == [{'deltaTime': 0.05}]

    def test_priority_order_then_registration_order(self, bus):
        calls = []
        bus.subscribe('t', lambda p: calls.append('low'), priority=-1)
        bus.subscribe('t', lambda p: calls.append('first'))
        bus.subscribe('t', lambda p: calls.append('high'), priority=10)
        bus.subscribe('t', lambda p: calls.append('second'))
        bus.publish('t')
        assert calls == ['high', 'first', 'second', 'low']

    def test_unsubscribe_callable(self, bus):
        seen = []
        unsubscribe = bus.subscribe('t', seen.append)
        unsubscribe()
        bus.publish('t', 1)
        assert seen == []
        assert bus.listener_count('t') == 0

    def test_once_runs_a_single_time(self, bus):
        seen = []
        bus.once('t', seen.append)
        bus.publish('t', 1)
        bus.publish('t', 2)
        assert seen == [1]

    def test_failing_handler_does_not_stop_dispatch(self, bus):
        seen = []

        def broken(payload):
            raise RuntimeError("boom")

        bus.subscribe('t', broken, priority=5)
        bus.subscribe('t', seen.append)
        bus.publish('t', 'ok')
        assert seen == ['ok']

    def test_subscribe_during_dispatch_waits_for_next_publish(self, bus):
        seen = []

        def add_another(payload):
            bus.subscribe('t', lambda p: seen.append(('late', p)))

        bus.subscribe('t', add_another, once=True)
        bus.publish('t', 1)
        assert seen == []
        bus.publish('t', 2)
        assert seen == [('late', 2)]

    def test_unsubscribe_during_dispatch_keeps_current_dispatch(self, bus):
        seen = []
        handles = {}

        def remove_later(payload):
            seen.append(('first', payload))
            handles['later']()

        bus.subscribe('t', remove_later, priority=1)
        handles['later'] = bus.subscribe('t', lambda p: seen.append(('later', p)))
        bus.publish('t', 1)
        assert seen == [('first', 1), ('later', 1)]
        bus.publish('t', 2)
        assert seen == [('first', 1), ('later', 1), ('first', 2)]
        assert bus.listener_count('t') == 1

    def test_publish_counts_and_topics(self, bus):
        bus.subscribe('a', lambda p: None)
        bus.publish('a')
        bus.publish('a')
        bus.publish('b')
        assert bus.publish_count('a') == 2
        assert bus.publish_count('b') == 1
        assert bus.registered_topics() == ['a']

    def test_clear_removes_everything(self, bus):
        bus.subscribe('a', lambda p: None)
        bus.subscribe('b', lambda p: None)
        bus.clear()
        assert bus.listener_count() == 0


# ─────────────────────────────────────────────────────
# wait_for
# ─────────────────────────────────────────────────────

class TestWaitFor:
    def test_resolves_with_next_payload(self, bus):
        async def scenario():
            waiter = asyncio.ensure_future(bus.wait_for('saved', timeout=1000))
            await asyncio.sleep(0)
            bus.publish('saved', {'timestamp': 1})
            return await waiter

        assert asyncio.run(scenario()) == {'timestamp': 1}
        assert bus.listener_count('saved') == 0

    def test_times_out(self, bus):
        async def scenario():
            await bus.wait_for('never', timeout=10)

        with pytest.raises(EventTimeoutError) as excinfo:
            asyncio.run(scenario())
        assert str(excinfo.value) == "Timeout waiting for event: never"
        assert bus.listener_count('never') == 0

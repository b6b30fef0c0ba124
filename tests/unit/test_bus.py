"""Unit tests for DispatchBus.

Test Strategy:
- Exact and wildcard channel routing
- Trigger namespace isolated from outcome routing
- Removal by subscription identity
- Sync and async handlers, error isolation
- Draining of in-flight handler tasks
"""

import asyncio

import pytest

from hookrelay.bus import DispatchBus, Subscription, is_wildcard
from hookrelay.errors import InvalidArgumentError


@pytest.fixture
def bus(mock_logger):
    return DispatchBus(logger=mock_logger)


# =============================================================================
# Subscription Tests
# =============================================================================

class TestSubscribe:
    """Test subscription bookkeeping."""

    def test_subscribe_returns_handle(self, bus):
        handler = lambda event: None
        handle = bus.subscribe("deploy", handler)

        assert isinstance(handle, Subscription)
        assert handle.channel == "deploy"
        assert handle.handler is handler
        assert bus.listener_count("deploy") == 1

    def test_subscribe_rejects_empty_channel(self, bus):
        with pytest.raises(InvalidArgumentError) as exc_info:
            bus.subscribe("", lambda event: None)
        assert exc_info.value.argument == "channel"

    def test_subscribe_rejects_non_callable(self, bus):
        with pytest.raises(InvalidArgumentError) as exc_info:
            bus.subscribe("deploy", "not-callable")
        assert exc_info.value.argument == "handler"

    def test_same_handler_twice_yields_distinct_handles(self, bus):
        """Identical handler/channel pairs are still separate subscriptions."""
        handler = lambda event: None
        first = bus.subscribe("deploy", handler)
        second = bus.subscribe("deploy", handler)

        assert first is not second
        assert first != second
        assert bus.listener_count("deploy") == 2

    def test_is_wildcard(self):
        assert is_wildcard("*.success")
        assert is_wildcard("*.failure")
        assert not is_wildcard("*.")
        assert not is_wildcard("deploy.success")
        assert not is_wildcard("deploy")
        assert not is_wildcard("*.failure.success")


# =============================================================================
# Publish Tests
# =============================================================================

class TestPublish:
    """Test routing of published events."""

    def test_exact_channel_delivery(self, bus):
        received = []
        bus.subscribe("deploy", received.append)

        invoked = bus.publish("deploy", "event")

        assert invoked == 1
        assert received == ["event"]

    def test_other_channels_not_invoked(self, bus):
        received = []
        bus.subscribe("deploy", received.append)

        assert bus.publish("release", "event") == 0
        assert received == []

    def test_wildcard_matches_suffix(self, bus):
        successes = []
        failures = []
        bus.subscribe("*.success", successes.append)
        bus.subscribe("*.failure", failures.append)

        bus.publish("deploy.success", "a")
        bus.publish("release.success", "b")
        bus.publish("deploy.failure", "c")

        assert successes == ["a", "b"]
        assert failures == ["c"]

    def test_wildcard_requires_exact_suffix(self, bus):
        received = []
        bus.subscribe("*.success", received.append)

        bus.publish("deploy.successful", "x")
        bus.publish("success", "y")
        bus.publish("deploy", "z")

        assert received == []

    def test_exact_subscribers_before_wildcards(self, bus):
        order = []
        bus.subscribe("*.success", lambda e: order.append("wildcard"))
        bus.subscribe("deploy.success", lambda e: order.append("exact"))

        invoked = bus.publish("deploy.success", None)

        assert invoked == 2
        assert order == ["exact", "wildcard"]

    def test_subscription_order_preserved(self, bus):
        order = []
        for i in range(3):
            bus.subscribe("deploy", lambda e, i=i: order.append(i))

        bus.publish("deploy", None)

        assert order == [0, 1, 2]

    def test_handler_error_is_isolated(self, bus, mock_logger):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("deploy", broken)
        bus.subscribe("deploy", received.append)

        invoked = bus.publish("deploy", "event")

        assert invoked == 1
        assert received == ["event"]
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args[0][0] == "bus_handler_error"
        assert mock_logger.error.call_args[1]["error_type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_async_handler_runs_as_task(self, bus):
        received = []

        async def handler(event):
            await asyncio.sleep(0)
            received.append(event)

        bus.subscribe("deploy", handler)
        bus.publish("deploy", "event")

        # Not awaited by publish
        assert received == []
        assert bus.pending == 1

        assert await bus.drain(timeout=1.0) is True
        assert received == ["event"]
        assert bus.pending == 0

    @pytest.mark.asyncio
    async def test_async_handler_error_logged(self, bus, mock_logger):
        async def handler(event):
            raise ValueError("bad payload")

        bus.subscribe("deploy", handler)
        bus.publish("deploy", "event")
        await bus.drain(timeout=1.0)

        mock_logger.error.assert_called_once()
        kwargs = mock_logger.error.call_args[1]
        assert kwargs["channel"] == "deploy"
        assert kwargs["error"] == "bad payload"

    def test_async_handler_without_loop_raises(self, bus):
        async def handler(event):
            return None

        bus.subscribe("deploy", handler)

        with pytest.raises(RuntimeError, match="running event loop"):
            bus.publish("deploy", "event")


# =============================================================================
# Removal Tests
# =============================================================================

class TestRemoval:
    """Test unsubscribe and remove_all_listeners."""

    def test_unsubscribe_by_identity(self, bus):
        received = []
        handler = received.append
        first = bus.subscribe("deploy", handler)
        bus.subscribe("deploy", handler)

        assert bus.unsubscribe(first) is True
        assert bus.unsubscribe(first) is False

        bus.publish("deploy", "event")
        assert received == ["event"]

    def test_unsubscribe_wildcard(self, bus):
        received = []
        handle = bus.subscribe("*.failure", received.append)

        assert bus.unsubscribe(handle) is True
        bus.publish("deploy.failure", "event")
        assert received == []

    def test_remove_all_listeners_on_channel(self, bus):
        bus.subscribe("deploy", lambda e: None)
        bus.subscribe("deploy", lambda e: None)
        bus.subscribe("deploy.success", lambda e: None)
        bus.subscribe("*.success", lambda e: None)

        removed = bus.remove_all_listeners("deploy")

        assert removed == 2
        assert bus.listener_count("deploy") == 0
        assert bus.listener_count("deploy.success") == 1
        assert bus.listener_count("*.success") == 1

    def test_remove_all_listeners_on_wildcard(self, bus):
        bus.subscribe("*.success", lambda e: None)
        bus.subscribe("deploy.success", lambda e: None)

        assert bus.remove_all_listeners("*.success") == 1
        assert bus.listener_count("*.success") == 0
        assert bus.listener_count("deploy.success") == 1

    def test_remove_all_listeners_everywhere(self, bus):
        bus.subscribe("deploy", lambda e: None)
        bus.subscribe("*.failure", lambda e: None)

        assert bus.remove_all_listeners() == 2
        assert bus.publish("deploy", None) == 0
        assert bus.publish("deploy.failure", None) == 0

    def test_listeners_returns_copy(self, bus):
        handle = bus.subscribe("deploy", lambda e: None)

        listeners = bus.listeners("deploy")
        listeners.clear()

        assert bus.listeners("deploy") == [handle]


# =============================================================================
# Trigger Namespace Tests
# =============================================================================

class TestTriggerNamespace:
    """Trigger subscriptions are reached only by publish_trigger."""

    def test_publish_trigger_delivers(self, bus):
        received = []
        handle = bus.subscribe("deploy", received.append, trigger=True)

        assert bus.publish_trigger("deploy", "ctx") == 1

        assert received == ["ctx"]
        assert handle.trigger is True
        assert bus.listeners("deploy", trigger=True) == [handle]
        assert bus.listener_count("deploy") == 0

    def test_publish_skips_trigger_subscriptions(self, bus):
        actions = []
        bus.subscribe("deploy.success", actions.append, trigger=True)

        assert bus.publish("deploy.success", "outcome") == 0
        assert actions == []

    @pytest.mark.parametrize("shortname", ["*.success", "*.failure", "a.success"])
    def test_outcome_shaped_shortname_stays_literal(self, bus, shortname):
        actions = []
        observed = []
        bus.subscribe(shortname, actions.append, trigger=True)
        bus.subscribe("*.success", observed.append)
        bus.subscribe("*.failure", observed.append)

        assert bus.publish_trigger(shortname, "ctx") == 1
        assert bus.publish_trigger("other.success", "ctx") == 0

        assert actions == ["ctx"]
        assert observed == []

    def test_wildcard_shortname_outcomes_reach_wildcards(self, bus):
        observed = []
        exact = []
        bus.subscribe("*.success", observed.append)
        bus.subscribe("*.failure.success", exact.append)

        assert bus.publish("*.failure.success", "outcome") == 2

        assert exact == ["outcome"]
        assert observed == ["outcome"]

    def test_unsubscribe_trigger_handle(self, bus):
        outcome = bus.subscribe("deploy", lambda e: None)
        action = bus.subscribe("deploy", lambda e: None, trigger=True)

        assert bus.unsubscribe(action) is True
        assert bus.unsubscribe(action) is False

        assert bus.listener_count("deploy", trigger=True) == 0
        assert bus.listeners("deploy") == [outcome]

    def test_remove_trigger_channel_keeps_outcome_subscribers(self, bus):
        bus.subscribe("deploy", lambda e: None, trigger=True)
        bus.subscribe("deploy", lambda e: None, trigger=True)
        bus.subscribe("deploy", lambda e: None)
        bus.subscribe("deploy.success", lambda e: None)
        bus.subscribe("*.success", lambda e: None)

        assert bus.remove_all_listeners("deploy", trigger=True) == 2

        assert bus.listener_count("deploy") == 1
        assert bus.listener_count("deploy.success") == 1
        assert bus.listener_count("*.success") == 1

    def test_remove_everything_clears_triggers(self, bus):
        bus.subscribe("deploy", lambda e: None, trigger=True)
        bus.subscribe("deploy.success", lambda e: None)

        assert bus.remove_all_listeners() == 2
        assert bus.publish_trigger("deploy", "ctx") == 0

    def test_trigger_handler_error_is_isolated(self, bus, mock_logger):
        received = []

        def broken(event):
            raise ValueError("boom")

        bus.subscribe("deploy", broken, trigger=True)
        bus.subscribe("deploy", received.append, trigger=True)

        assert bus.publish_trigger("deploy", "ctx") == 1

        assert received == ["ctx"]
        assert mock_logger.error.call_args[0][0] == "bus_handler_error"


# =============================================================================
# Drain Tests
# =============================================================================

class TestDrain:
    """Test waiting for in-flight handlers."""

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self, bus):
        assert await bus.drain() is True

    @pytest.mark.asyncio
    async def test_drain_waits_for_chained_tasks(self, bus):
        """Handlers spawned by other handlers are drained too."""
        received = []

        async def outcome_handler(event):
            received.append(event)

        async def trigger_handler(event):
            await asyncio.sleep(0)
            bus.publish("deploy.success", event)

        bus.subscribe("deploy", trigger_handler)
        bus.subscribe("*.success", outcome_handler)

        bus.publish("deploy", "payload")
        assert await bus.drain(timeout=1.0) is True
        assert received == ["payload"]

    @pytest.mark.asyncio
    async def test_drain_timeout(self, bus):
        release = asyncio.Event()

        async def slow(event):
            await release.wait()

        bus.subscribe("deploy", slow)
        bus.publish("deploy", None)

        assert await bus.drain(timeout=0.01) is False
        assert bus.pending == 1

        release.set()
        assert await bus.drain(timeout=1.0) is True

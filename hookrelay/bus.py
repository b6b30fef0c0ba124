"""Dispatch Bus - name-addressed pub/sub for triggers and delivery outcomes.

Trigger channels (``trigger=True``):
- ``<shortname>``          delivery actions subscribe here; reached only by
                           ``publish_trigger``, never by outcome routing

Outcome channels:
- ``<shortname>.success``  outcome channel for successful deliveries
- ``<shortname>.failure``  outcome channel for failed deliveries
- ``*.success`` / ``*.failure``  wildcard channels matching any shortname

The two namespaces never mix, so any string is a valid shortname, including
``deploy.success`` or ``*.failure``. On the outcome side wildcards are
matched by exact suffix comparison: ``*.failure`` receives
every event published on a channel ending in ``.failure``. No other glob
syntax is supported. The outcome channel of shortname ``*.failure`` is the
exact channel ``*.failure.success``, which ``*.success`` also matches.

Usage:
    bus = DispatchBus()
    handle = bus.subscribe("*.failure", on_failure)
    bus.publish("deploy.failure", outcome)
    bus.unsubscribe(handle)
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from hookrelay.errors import InvalidArgumentError
from hookrelay.logging import get_component_logger
from hookrelay.protocols import LoggerProtocol

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]

WILDCARD_PREFIX = "*."


def is_wildcard(channel: str) -> bool:
    """True for ``*.<suffix>`` channels whose suffix holds no dot."""
    suffix = channel[len(WILDCARD_PREFIX):]
    return channel.startswith(WILDCARD_PREFIX) and bool(suffix) and "." not in suffix


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``subscribe``.

    Compared by identity: two subscriptions wrapping the same handler on
    the same channel are still distinct.
    """
    channel: str
    handler: EventHandler
    trigger: bool = False


class DispatchBus:
    """Async-aware event bus.

    Features:
    - Separate trigger namespace for delivery actions
    - Exact-channel and ``*.<suffix>`` wildcard outcome subscriptions
    - Sync or async handlers; coroutines run as detached tasks
    - Fire-and-forget publishing (handler errors logged, not propagated)
    """

    def __init__(self, logger: Optional[LoggerProtocol] = None):
        self._logger = get_component_logger("DispatchBus", logger)
        self._channels: Dict[str, List[Subscription]] = {}
        # suffix (e.g. "success") -> subscriptions on "*.<suffix>"
        self._wildcards: Dict[str, List[Subscription]] = {}
        # shortname -> action subscriptions; no wildcard matching
        self._triggers: Dict[str, List[Subscription]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(
        self,
        channel: str,
        handler: EventHandler,
        *,
        trigger: bool = False,
    ) -> Subscription:
        """Subscribe a handler to a channel.

        Args:
            channel: Exact channel name or ``*.<suffix>`` wildcard; with
                ``trigger=True`` a shortname, taken literally
            handler: Callable receiving the published event; may be async
            trigger: Subscribe in the trigger namespace

        Returns:
            Subscription handle used for removal
        """
        if not isinstance(channel, str) or not channel:
            raise InvalidArgumentError("channel", "channel must be a non-empty string")
        if not callable(handler):
            raise InvalidArgumentError("handler", "handler must be callable")

        handle = Subscription(channel=channel, handler=handler, trigger=trigger)
        index, slot = self._locate(channel, trigger)
        index.setdefault(slot, []).append(handle)
        self._logger.debug("bus_subscribed", channel=channel, trigger=trigger)
        return handle

    def unsubscribe(self, handle: Subscription) -> bool:
        """Remove exactly this subscription.

        Returns:
            True if the handle was registered and has been removed
        """
        index, slot = self._locate(handle.channel, handle.trigger)
        handles = index.get(slot)
        if not handles:
            return False

        for i, candidate in enumerate(handles):
            if candidate is handle:
                del handles[i]
                if not handles:
                    del index[slot]
                return True
        return False

    def remove_all_listeners(
        self,
        channel: Optional[str] = None,
        *,
        trigger: bool = False,
    ) -> int:
        """Detach every subscription on a channel (or on all channels).

        Only the named channel is affected: clearing the ``deploy`` trigger
        channel leaves ``deploy.success`` and wildcard subscribers in place.

        Returns:
            Number of subscriptions removed
        """
        if channel is None:
            indexes = (self._channels, self._wildcards, self._triggers)
            removed = sum(len(h) for index in indexes for h in index.values())
            for index in indexes:
                index.clear()
            return removed

        index, slot = self._locate(channel, trigger)
        return len(index.pop(slot, []))

    def listeners(self, channel: str, *, trigger: bool = False) -> List[Subscription]:
        """Subscriptions registered under exactly this channel."""
        index, slot = self._locate(channel, trigger)
        return list(index.get(slot, []))

    def listener_count(self, channel: str, *, trigger: bool = False) -> int:
        index, slot = self._locate(channel, trigger)
        return len(index.get(slot, []))

    def publish(self, channel: str, event: Any) -> int:
        """Publish an event to exact and matching wildcard subscribers.

        Handlers are invoked in subscription order, exact channel first.
        Awaitables returned by handlers are scheduled on the running loop
        and not awaited here. Trigger subscriptions are never reached.

        Returns:
            Number of handlers invoked
        """
        handles = list(self._channels.get(channel, []))
        if not is_wildcard(channel) and "." in channel:
            suffix = channel.rsplit(".", 1)[1]
            handles.extend(self._wildcards.get(suffix, []))
        return self._dispatch(channel, handles, event)

    def publish_trigger(self, shortname: str, event: Any) -> int:
        """Publish an event to the actions subscribed under ``shortname``.

        The shortname is matched literally; outcome and wildcard
        subscribers are never reached.

        Returns:
            Number of handlers invoked
        """
        handles = list(self._triggers.get(shortname, []))
        return self._dispatch(shortname, handles, event)

    @property
    def pending(self) -> int:
        """Number of handler tasks still running."""
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until no handler tasks are in flight.

        Tasks spawned while draining (e.g. outcome handlers scheduled by a
        delivery) are waited for as well.

        Returns:
            False if the timeout elapsed first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(set(self._tasks), timeout=remaining)
        return True

    def _dispatch(self, channel: str, handles: List[Subscription], event: Any) -> int:
        invoked = 0
        for handle in handles:
            try:
                result = handle.handler(event)
            except Exception as e:
                self._logger.error(
                    "bus_handler_error",
                    channel=channel,
                    subscription=handle.channel,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if inspect.isawaitable(result):
                self._spawn(result, channel, handle.channel)
            invoked += 1

        return invoked

    def _spawn(self, awaitable: Awaitable[Any], channel: str, subscription: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError(
                f"Publishing to {channel!r} requires a running event loop"
            ) from None

        task = loop.create_task(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._logger.error(
                    "bus_handler_error",
                    channel=channel,
                    subscription=subscription,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

        task.add_done_callback(_done)

    def _locate(self, channel: str, trigger: bool) -> Tuple[Dict[str, List[Subscription]], str]:
        """Index and slot a channel lives in."""
        if trigger:
            return self._triggers, channel
        if is_wildcard(channel):
            return self._wildcards, channel[len(WILDCARD_PREFIX):]
        return self._channels, channel


__all__ = [
    "DispatchBus",
    "EventHandler",
    "Subscription",
    "is_wildcard",
]

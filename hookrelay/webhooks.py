"""WebHooks - public registry API.

Composes the storage port, dispatch bus, delivery executor and registry.

Usage:
    from hookrelay import create_webhooks

    async with create_webhooks() as hooks:
        await hooks.add("deploy", "https://ci.example.com/hook")
        hooks.on("*.failure", lambda outcome: print(outcome.to_dict()))
        hooks.trigger("deploy", {"ref": "main"}, {"X-Source": "cli"})
        await hooks.drain()
"""

from typing import Any, Iterable, List, Mapping, Optional

from hookrelay.bus import DispatchBus, EventHandler, Subscription
from hookrelay.delivery import DeliveryExecutor, HttpxTransport
from hookrelay.errors import InvalidArgumentError
from hookrelay.logging import get_component_logger
from hookrelay.protocols import (
    ActionKey,
    LoggerProtocol,
    StorageProtocol,
    TransportProtocol,
    TriggerContext,
)
from hookrelay.registry import Dictionary, Registry
from hookrelay.settings import Settings, get_settings
from hookrelay.storage import InMemoryStorage, create_storage


class WebHooks:
    """Webhook registry and dispatcher.

    Call ``start()`` (or use ``async with``) before triggering so actions
    for persisted shortnames are bound. Mutations and reads start the
    instance lazily.
    """

    def __init__(
        self,
        storage: Optional[StorageProtocol] = None,
        *,
        http_success_codes: Optional[Iterable[int]] = None,
        transport: Optional[TransportProtocol] = None,
        bus: Optional[DispatchBus] = None,
        max_concurrent_deliveries: Optional[int] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        """Initialize the registry.

        Args:
            storage: Storage port; in-memory when omitted
            http_success_codes: Statuses counted as success (default [200])
            transport: Outbound transport; httpx without TLS verification by default
            bus: Dispatch bus to publish on
            max_concurrent_deliveries: Cap on in-flight requests (None = unbounded)
            logger: Logger for DI (uses context logger if not provided)

        Raises:
            InvalidArgumentError: http_success_codes is not a non-empty list,
                or max_concurrent_deliveries is not a positive integer
        """
        self._logger = get_component_logger("WebHooks", logger)
        self._storage = storage if storage is not None else InMemoryStorage(logger=logger)
        self._bus = bus or DispatchBus(logger=logger)
        self._executor = DeliveryExecutor(
            self._bus,
            transport=transport,
            success_codes=http_success_codes,
            max_concurrency=max_concurrent_deliveries,
            logger=logger,
        )
        self._registry = Registry(self._storage, self._bus, self._executor, logger=logger)
        self._started = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> "WebHooks":
        """Open storage and bind actions for the persisted Dictionary."""
        if self._started:
            return self
        await self._storage.open()
        await self._registry.load()
        self._started = True
        self._logger.info("webhooks_started", backend=self._storage.backend)
        return self

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight deliveries and outcome handlers."""
        return await self._bus.drain(timeout)

    async def aclose(self, timeout: Optional[float] = None) -> None:
        """Finish in-flight work, then close transport and storage.

        Deliveries still running after ``timeout`` seconds fail once the
        transport is closed.
        """
        if not await self._bus.drain(timeout):
            self._logger.warning("webhooks_closed_with_pending", pending=self._bus.pending)
        await self._executor.aclose()
        await self._storage.close()
        self._started = False
        self._logger.info("webhooks_closed")

    async def __aenter__(self) -> "WebHooks":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    @property
    def http_success_codes(self) -> List[int]:
        return self._executor.success_codes

    @http_success_codes.setter
    def http_success_codes(self, codes: Iterable[int]) -> None:
        self._executor.success_codes = codes

    @property
    def bus(self) -> DispatchBus:
        return self._bus

    @property
    def storage(self) -> StorageProtocol:
        return self._storage

    # =========================================================================
    # REGISTRY
    # =========================================================================

    async def add(self, shortname: str, url: str) -> bool:
        await self._ensure_started()
        return await self._registry.add(shortname, url)

    async def remove(self, shortname: str, url: Optional[str] = None) -> bool:
        await self._ensure_started()
        return await self._registry.remove(shortname, url)

    async def multi(self, entries: Iterable[Any]) -> bool:
        """Add several ``{"name", "url"}`` entries in order.

        Not transactional: entries applied before a failure stay applied.
        """
        await self._ensure_started()
        return await self._registry.multi(entries)

    async def exists(self, shortname: str) -> bool:
        await self._ensure_started()
        return await self._registry.exists(shortname)

    async def get_db(self) -> Dictionary:
        await self._ensure_started()
        return await self._registry.get_db()

    async def get_webhook(self, shortname: str) -> List[str]:
        await self._ensure_started()
        return await self._registry.get_webhook(shortname)

    def actions(self) -> List[ActionKey]:
        return self._registry.action_keys()

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def trigger(
        self,
        shortname: str,
        payload: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Fire-and-forget delivery to every URL bound to ``shortname``.

        Returns immediately; results arrive on ``<shortname>.success`` /
        ``<shortname>.failure``. Must be called from a running event loop.
        """
        if not isinstance(shortname, str) or not shortname:
            raise InvalidArgumentError("shortname", "shortname required!")
        if headers is not None and not isinstance(headers, Mapping):
            raise InvalidArgumentError("headers", "headers must be a mapping")

        context = TriggerContext(shortname, payload, dict(headers or {}))
        invoked = self._bus.publish_trigger(shortname, context)
        self._logger.debug("trigger_published", shortname=shortname, actions=invoked)

    def on(self, channel: str, handler: EventHandler, *, trigger: bool = False) -> Subscription:
        """Subscribe to an outcome channel (``deploy.failure``, ``*.success``).

        With ``trigger=True`` the handler receives the TriggerContext of
        every ``trigger(channel, ...)`` call instead.
        """
        return self._bus.subscribe(channel, handler, trigger=trigger)

    def off(self, handle: Subscription) -> bool:
        return self._bus.unsubscribe(handle)

    async def _ensure_started(self) -> None:
        if not self._started:
            await self.start()


def create_webhooks(
    settings: Optional[Settings] = None,
    logger: Optional[LoggerProtocol] = None,
    **overrides: Any,
) -> WebHooks:
    """Build a WebHooks instance from Settings.

    Args:
        settings: Settings to use (global settings if None)
        logger: Logger for DI
        **overrides: Settings fields to override, validated like env values
    """
    settings = settings or get_settings()
    if overrides:
        settings = Settings(**{**settings.model_dump(), **overrides})

    storage = create_storage(settings, logger=logger)
    transport = HttpxTransport(
        timeout=settings.delivery_timeout,
        verify_tls=settings.verify_tls,
    )
    return WebHooks(
        storage,
        http_success_codes=settings.http_success_codes,
        transport=transport,
        max_concurrent_deliveries=settings.max_concurrent_deliveries,
        logger=logger,
    )


__all__ = [
    "WebHooks",
    "create_webhooks",
]

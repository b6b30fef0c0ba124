"""Registry - shortname -> URLs dictionary and its bound delivery actions.

The registry owns two pieces of state that must never diverge:
- the Dictionary, persisted through the storage port under DICTIONARY_KEY
- the action table, ActionKey(shortname, url fingerprint) -> (Action, Subscription)

Every mutation reads the full Dictionary, writes the updated copy, and only
then touches the action table, so a failed write leaves both unchanged.
Mutations are serialized by a per-registry lock; reads are not.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple

from hookrelay.bus import DispatchBus, Subscription
from hookrelay.delivery import Action, DeliveryExecutor, url_fingerprint
from hookrelay.errors import HookRelayError, InvalidArgumentError, StorageError
from hookrelay.logging import get_component_logger
from hookrelay.protocols import (
    DICTIONARY_KEY,
    ActionKey,
    LoggerProtocol,
    StorageProtocol,
)

Dictionary = Dict[str, List[str]]


def _validate_shortname(shortname: Any) -> None:
    if not isinstance(shortname, str) or not shortname:
        raise InvalidArgumentError("shortname", "shortname required!")


def _validate_url(url: Any) -> None:
    if not isinstance(url, str) or not url:
        raise InvalidArgumentError("url", "Url must be a string")


def _validate_dictionary(value: Any) -> Dictionary:
    if not isinstance(value, dict):
        raise StorageError("Persisted dictionary is not a JSON object")
    for shortname, urls in value.items():
        if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
            raise StorageError(f"Persisted entry {shortname!r} is not a list of URLs")
    return {name: list(urls) for name, urls in value.items()}


class Registry:
    """Keeps the Dictionary and the dispatch bus consistent.

    Usage:
        registry = Registry(storage, bus, executor)
        await registry.load()
        await registry.add("deploy", "https://ci.example.com/hook")
    """

    def __init__(
        self,
        storage: StorageProtocol,
        bus: DispatchBus,
        executor: DeliveryExecutor,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._storage = storage
        self._bus = bus
        self._executor = executor
        self._logger = get_component_logger("Registry", logger)
        self._actions: Dict[ActionKey, Tuple[Action, Subscription]] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def load(self) -> int:
        """Bind an action for every persisted (shortname, URL) pair.

        Returns:
            Number of actions bound
        """
        async with self._lock:
            dictionary = await self._read()
            bound = 0
            for shortname, urls in dictionary.items():
                for url in urls:
                    if self._bind(shortname, url):
                        bound += 1

        self._logger.info("registry_loaded", shortnames=len(dictionary), actions=bound)
        return bound

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def add(self, shortname: str, url: str) -> bool:
        """Register ``url`` under ``shortname``.

        Returns:
            True if the Dictionary changed, False if the pair already existed

        Raises:
            InvalidArgumentError: shortname or url missing / not a string
            StorageError: reading or writing the Dictionary failed
        """
        _validate_shortname(shortname)
        _validate_url(url)

        async with self._lock:
            dictionary = await self._read()
            urls = dictionary.get(shortname, [])
            if url in urls:
                self._logger.debug("webhook_already_registered", shortname=shortname, url=url)
                return False

            dictionary[shortname] = [*urls, url]
            await self._write(dictionary)
            self._bind(shortname, url)

        self._logger.info(
            "webhook_added",
            shortname=shortname,
            url=url,
            new_shortname=not urls,
        )
        return True

    async def remove(self, shortname: str, url: Optional[str] = None) -> bool:
        """Remove one URL, or the whole shortname when ``url`` is None.

        Returns:
            True if something was removed, False if it was not registered
        """
        _validate_shortname(shortname)
        if url is not None:
            _validate_url(url)

        async with self._lock:
            dictionary = await self._read()
            if shortname not in dictionary:
                self._logger.debug("webhook_not_found", shortname=shortname, url=url)
                return False

            if url is None:
                urls = dictionary.pop(shortname)
                await self._write(dictionary)
                for registered in urls:
                    self._unbind(shortname, registered)
                self._logger.info("webhook_removed", shortname=shortname, urls=len(urls))
                return True

            urls = dictionary[shortname]
            if url not in urls:
                self._logger.debug("webhook_not_found", shortname=shortname, url=url)
                return False

            remaining = [u for u in urls if u != url]
            if remaining:
                dictionary[shortname] = remaining
            else:
                del dictionary[shortname]
            await self._write(dictionary)
            self._unbind(shortname, url)

        self._logger.info("webhook_url_removed", shortname=shortname, url=url)
        return True

    async def multi(self, entries: Iterable[Any]) -> bool:
        """Apply ``add`` for each ``{"name": ..., "url": ...}`` entry in order.

        Not transactional: if an entry fails, the error propagates and the
        entries already applied stay registered.
        """
        if entries is None or isinstance(entries, (str, bytes, dict)):
            raise InvalidArgumentError("entries", "entries must be a list of {name, url}")

        for entry in entries:
            if isinstance(entry, dict):
                name, url = entry.get("name"), entry.get("url")
            else:
                name, url = getattr(entry, "name", None), getattr(entry, "url", None)
            await self.add(name, url)
        return True

    # =========================================================================
    # READS
    # =========================================================================

    async def exists(self, shortname: str) -> bool:
        dictionary = await self._read()
        return shortname in dictionary

    async def get_webhook(self, shortname: str) -> List[str]:
        """URLs registered under ``shortname`` (empty if absent)."""
        dictionary = await self._read()
        return list(dictionary.get(shortname, []))

    async def get_db(self) -> Dictionary:
        """Full shortname -> URLs Dictionary."""
        return await self._read()

    def action_keys(self) -> List[ActionKey]:
        """Snapshot of the live action table keys."""
        return list(self._actions)

    def get_action(self, shortname: str, url: str) -> Optional[Action]:
        entry = self._actions.get(ActionKey(shortname, url_fingerprint(url)))
        return entry[0] if entry else None

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _read(self) -> Dictionary:
        try:
            value, found = await self._storage.get(DICTIONARY_KEY)
        except HookRelayError:
            raise
        except Exception as e:
            raise StorageError(f"Reading {DICTIONARY_KEY} failed: {e}") from e

        if not found or value is None:
            return {}
        return _validate_dictionary(value)

    async def _write(self, dictionary: Dictionary) -> None:
        try:
            await self._storage.set(DICTIONARY_KEY, dictionary)
        except StorageError as e:
            self._logger.error("storage_write_failed", error=str(e))
            raise
        except Exception as e:
            self._logger.error("storage_write_failed", error=str(e))
            raise StorageError(f"Writing {DICTIONARY_KEY} failed: {e}") from e

    def _bind(self, shortname: str, url: str) -> bool:
        action = self._executor.create_action(shortname, url)
        if action.key in self._actions:
            return False
        handle = self._bus.subscribe(shortname, action, trigger=True)
        self._actions[action.key] = (action, handle)
        return True

    def _unbind(self, shortname: str, url: str) -> bool:
        entry = self._actions.pop(ActionKey(shortname, url_fingerprint(url)), None)
        if entry is None:
            return False
        return self._bus.unsubscribe(entry[1])

"""Storage port realizations.

Provides three StorageProtocol implementations, selected statically from
Settings.storage_backend:
- memory: InMemoryStorage (nothing persisted)
- file:   JsonFileStorage (single JSON document on disk)
- redis:  RedisStorage (JSON values in Redis)
"""

from typing import Optional

from hookrelay.logging import get_component_logger
from hookrelay.protocols import DICTIONARY_KEY, LoggerProtocol, StorageProtocol
from hookrelay.settings import Settings
from hookrelay.storage.file_store import JsonFileStorage
from hookrelay.storage.memory_store import InMemoryStorage
from hookrelay.storage.redis_store import RedisStorage
from hookrelay.utils.strings import redact_url


def create_storage(
    settings: Settings,
    logger: Optional[LoggerProtocol] = None,
) -> StorageProtocol:
    """Build the storage backend named by ``settings.storage_backend``."""
    log = get_component_logger("storage", logger)

    if settings.storage_backend == "file":
        log.info("initializing_storage", backend="file", path=settings.db_path)
        return JsonFileStorage(settings.db_path, logger=logger)

    if settings.storage_backend == "redis":
        log.info("initializing_storage", backend="redis", url=redact_url(settings.redis_url))
        return RedisStorage(
            settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            logger=logger,
        )

    log.info("initializing_storage", backend="memory")
    return InMemoryStorage(logger=logger)


__all__ = [
    "DICTIONARY_KEY",
    "StorageProtocol",
    "InMemoryStorage",
    "JsonFileStorage",
    "RedisStorage",
    "create_storage",
]

"""In-memory storage for the in-memory-only mode.

Nothing survives the process; useful for tests and ephemeral registries.
"""

import copy
from typing import Any, Dict, Optional, Tuple

from hookrelay.logging import get_component_logger
from hookrelay.protocols import LoggerProtocol


class InMemoryStorage:
    """Dict-backed StorageProtocol implementation."""

    def __init__(
        self,
        initial: Optional[Dict[str, Any]] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._logger = get_component_logger("InMemoryStorage", logger)
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    @property
    def backend(self) -> str:
        return "memory"

    async def open(self) -> None:
        self._logger.debug("storage_opened", backend=self.backend)

    async def close(self) -> None:
        pass

    async def get(self, key: str) -> Tuple[Any, bool]:
        if key not in self._data:
            return None, False
        # Callers mutate what they read; hand out a copy
        return copy.deepcopy(self._data[key]), True

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

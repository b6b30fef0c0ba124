"""JSON file storage.

The file holds a single document: the registry dictionary itself.

    {
      "shortname1": ["url1", "url2"],
      "shortname2": ["url3"]
    }

The whole document is read once, cached, and written back in full on every
``set``.
"""

import asyncio
import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from hookrelay.errors import StorageError
from hookrelay.logging import get_component_logger
from hookrelay.protocols import DICTIONARY_KEY, LoggerProtocol


class JsonFileStorage:
    """File-backed StorageProtocol implementation.

    Only ``document_key`` is addressable; it maps to the top-level JSON
    object. A missing file is initialized to ``{}`` on ``open()``. Writes go
    through a temporary file and ``os.replace`` so a failed write never
    leaves a truncated document behind.
    """

    def __init__(
        self,
        path: Union[str, Path],
        document_key: str = DICTIONARY_KEY,
        logger: Optional[LoggerProtocol] = None,
    ):
        self.path = Path(path)
        self.document_key = document_key
        self._logger = get_component_logger("JsonFileStorage", logger)
        self._cache: Optional[Dict[str, Any]] = None
        self._write_lock = asyncio.Lock()

    @property
    def backend(self) -> str:
        return "file"

    async def open(self) -> None:
        """Load the document, creating an empty one if the file is missing."""
        if not self.path.exists():
            await asyncio.to_thread(self._write_document, {})
            self._cache = {}
            self._logger.info("storage_file_initialized", path=str(self.path))
            return
        self._cache = await asyncio.to_thread(self._read_document)
        self._logger.debug("storage_opened", backend=self.backend, path=str(self.path))

    async def close(self) -> None:
        self._cache = None

    async def get(self, key: str) -> Tuple[Any, bool]:
        self._check_key(key)
        if self._cache is None:
            await self.open()
        return copy.deepcopy(self._cache), True

    async def set(self, key: str, value: Any) -> None:
        self._check_key(key)
        if not isinstance(value, dict):
            raise StorageError(f"{self.path} can only hold a JSON object")
        document = copy.deepcopy(value)
        async with self._write_lock:
            await asyncio.to_thread(self._write_document, document)
        self._cache = document

    def _check_key(self, key: str) -> None:
        if key != self.document_key:
            raise StorageError(
                f"{self.path} holds a single document under {self.document_key!r}, not {key!r}"
            )

    def _read_document(self) -> Dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e

        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Malformed JSON document in {self.path}: {e}") from e
        if not isinstance(document, dict):
            raise StorageError(f"Expected a JSON object in {self.path}")
        return document

    def _write_document(self, document: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            self._logger.error("storage_write_failed", path=str(self.path), error=str(e))
            raise StorageError(f"Cannot write {self.path}: {e}") from e

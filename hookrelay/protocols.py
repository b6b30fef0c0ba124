"""Protocol definitions - interfaces for dependency injection.

These are typing.Protocol classes for static type checking. Concrete
implementations live in hookrelay.storage, hookrelay.delivery and
hookrelay.logging.

Value types that travel over the dispatch bus are plain dataclasses:
- TriggerContext: published on the ``<shortname>`` channel
- DeliveryOutcome: published on ``<shortname>.success`` / ``<shortname>.failure``
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

# Logical key the registry persists its shortname -> URLs mapping under
DICTIONARY_KEY = "dictionary"


# =============================================================================
# LOGGING
# =============================================================================

@runtime_checkable
class LoggerProtocol(Protocol):
    """Structured logging interface."""

    def info(self, message: str, **kwargs: Any) -> None: ...
    def debug(self, message: str, **kwargs: Any) -> None: ...
    def warning(self, message: str, **kwargs: Any) -> None: ...
    def error(self, message: str, **kwargs: Any) -> None: ...
    def bind(self, **kwargs: Any) -> "LoggerProtocol": ...


# =============================================================================
# STORAGE
# =============================================================================

@runtime_checkable
class StorageProtocol(Protocol):
    """Key/value storage port used by the registry.

    Lifecycle: open/close
    Data: get/set of whole JSON-compatible values under a logical key
    Identity: backend property
    """

    @property
    def backend(self) -> str: ...

    async def open(self) -> None: ...
    async def close(self) -> None: ...
    async def get(self, key: str) -> Tuple[Any, bool]: ...
    async def set(self, key: str, value: Any) -> None: ...


# =============================================================================
# TRANSPORT
# =============================================================================

@runtime_checkable
class TransportProtocol(Protocol):
    """Outbound delivery capability.

    ``post`` returns ``(status_code, response_text)`` and raises on
    transport-level failure (connection refused, timeout, TLS).
    """

    async def post(
        self,
        url: str,
        body: str,
        headers: Dict[str, str],
    ) -> Tuple[int, str]: ...

    async def aclose(self) -> None: ...


# =============================================================================
# BUS EVENTS
# =============================================================================

@dataclass(frozen=True)
class ActionKey:
    """Composite identity of a bound delivery action."""
    shortname: str
    fingerprint: str


@dataclass(frozen=True)
class TriggerContext:
    """Transient request to deliver a payload to every URL of a shortname."""
    shortname: str
    payload: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one delivery attempt.

    ``status`` and ``body`` are None when the request failed at the
    transport level; ``error`` is set in that case. An empty response
    body is also reported as None, so ``body`` is either non-empty text
    or None.
    """
    shortname: str
    url: str
    success: bool
    status: Optional[int] = None
    body: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def channel(self) -> str:
        """Outcome channel this result is published on."""
        suffix = "success" if self.success else "failure"
        return f"{self.shortname}.{suffix}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "shortname": self.shortname,
            "url": self.url,
            "success": self.success,
            "status": self.status,
            "body": self.body,
            "error": str(self.error) if self.error else None,
        }


__all__ = [
    "DICTIONARY_KEY",
    "LoggerProtocol",
    "StorageProtocol",
    "TransportProtocol",
    "ActionKey",
    "TriggerContext",
    "DeliveryOutcome",
]

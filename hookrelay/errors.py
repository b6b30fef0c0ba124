"""Error hierarchy for the webhook registry.

- InvalidArgumentError: raised synchronously before any state mutation
- StorageError: backing store unreachable, malformed or failed write
- DeliveryError: transport failure; only ever carried by a failure outcome
"""

from typing import Optional


class HookRelayError(Exception):
    """Base error for hookrelay."""

    code = "hookrelay_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class InvalidArgumentError(HookRelayError, ValueError):
    """A caller-supplied argument is missing or has the wrong type.

    ``argument`` names the offending parameter so callers can tell
    a bad shortname from a bad URL.
    """

    code = "invalid_argument"

    def __init__(self, argument: str, message: str):
        super().__init__(message)
        self.argument = argument


class StorageError(HookRelayError):
    """Persistence read or write failed."""

    code = "storage_error"


class DeliveryError(HookRelayError):
    """Outbound delivery failed at the transport level."""

    code = "delivery_error"

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


__all__ = [
    "HookRelayError",
    "InvalidArgumentError",
    "StorageError",
    "DeliveryError",
]

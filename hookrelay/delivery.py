"""Delivery Executor - one outbound POST per bound action.

For every trigger an Action POSTs the JSON payload to its URL, classifies
the response against the configured success codes and publishes a
DeliveryOutcome on ``<shortname>.success`` or ``<shortname>.failure``.

Delivery never raises: transport errors and non-success statuses surface
only as failure outcomes.

TLS certificates are not verified by default. Registered URLs are trusted
as configured; set ``verify_tls=True`` on the transport to tighten this.
"""

import asyncio
import contextlib
import hashlib
import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from hookrelay.bus import DispatchBus
from hookrelay.errors import DeliveryError, InvalidArgumentError
from hookrelay.logging import get_component_logger
from hookrelay.protocols import (
    ActionKey,
    DeliveryOutcome,
    LoggerProtocol,
    TransportProtocol,
    TriggerContext,
)
from hookrelay.settings import DEFAULT_SUCCESS_CODES, validate_success_codes
from hookrelay.utils.strings import truncate_string


def url_fingerprint(url: str) -> str:
    """Content hash identifying a URL within a shortname."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class HttpxTransport:
    """TransportProtocol implementation on httpx.AsyncClient.

    The client is created lazily so a transport can be built outside a
    running event loop.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        verify_tls: bool = False,
    ):
        """Initialize transport.

        Args:
            client: Pre-built client (caller keeps ownership)
            timeout: Request timeout in seconds; None keeps httpx's default
            verify_tls: Verify server certificates
        """
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._verify_tls = verify_tls

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: Dict[str, Any] = {"verify": self._verify_tls}
            if self._timeout is not None:
                kwargs["timeout"] = self._timeout
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def post(self, url: str, body: str, headers: Dict[str, str]) -> Tuple[int, str]:
        response = await self._get_client().post(url, content=body, headers=headers)
        return response.status_code, response.text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class Action:
    """Delivery unit bound to one (shortname, URL) pair.

    Subscribed on the ``<shortname>`` channel; calling it with a
    TriggerContext returns the delivery coroutine.
    """

    __slots__ = ("key", "url", "_executor")

    def __init__(self, key: ActionKey, url: str, executor: "DeliveryExecutor"):
        self.key = key
        self.url = url
        self._executor = executor

    @property
    def shortname(self) -> str:
        return self.key.shortname

    async def __call__(self, context: TriggerContext) -> DeliveryOutcome:
        return await self._executor.deliver(
            self.shortname, self.url, context.payload, context.headers
        )

    def __repr__(self) -> str:
        return f"Action(shortname={self.shortname!r}, url={self.url!r})"


def build_headers(headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """JSON content type merged with caller headers (caller wins)."""
    merged = {"Content-Type": "application/json"}
    for key, value in (headers or {}).items():
        if key.lower() == "content-type":
            merged.pop("Content-Type", None)
        merged[key] = value
    return merged


def serialize_payload(payload: Any) -> str:
    """Compact JSON body; a missing payload becomes ``{}``."""
    return json.dumps({} if payload is None else payload, separators=(",", ":"))


class DeliveryExecutor:
    """Performs deliveries and republishes their outcomes.

    Fan-out is unbounded unless ``max_concurrency`` is given, in which case
    at most that many requests are in flight at once.
    """

    def __init__(
        self,
        bus: DispatchBus,
        transport: Optional[TransportProtocol] = None,
        success_codes: Optional[Iterable[int]] = None,
        max_concurrency: Optional[int] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._bus = bus
        self._transport = transport or HttpxTransport()
        self._logger = get_component_logger("DeliveryExecutor", logger)
        self._success_codes = frozenset(
            validate_success_codes(
                list(DEFAULT_SUCCESS_CODES) if success_codes is None else success_codes
            )
        )
        self._semaphore: Optional[asyncio.Semaphore] = None
        if max_concurrency is not None:
            valid = isinstance(max_concurrency, int) and not isinstance(max_concurrency, bool)
            if not valid or max_concurrency < 1:
                raise InvalidArgumentError(
                    "max_concurrency", "max_concurrency must be a positive integer or None"
                )
            self._semaphore = asyncio.Semaphore(max_concurrency)

    @property
    def success_codes(self) -> List[int]:
        return sorted(self._success_codes)

    @success_codes.setter
    def success_codes(self, codes: Iterable[int]) -> None:
        self._success_codes = frozenset(validate_success_codes(codes))
        self._logger.info("success_codes_updated", codes=self.success_codes)

    @property
    def transport(self) -> TransportProtocol:
        return self._transport

    def create_action(self, shortname: str, url: str) -> Action:
        return Action(ActionKey(shortname, url_fingerprint(url)), url, self)

    async def deliver(
        self,
        shortname: str,
        url: str,
        payload: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> DeliveryOutcome:
        """POST ``payload`` to ``url`` and publish the outcome.

        Returns:
            The published DeliveryOutcome
        """
        status: Optional[int] = None
        body: Optional[str] = None
        error: Optional[Exception] = None

        try:
            request_body = serialize_payload(payload)
            request_headers = build_headers(headers)
            self._logger.debug("delivery_started", shortname=shortname, url=url)
            async with self._semaphore or contextlib.nullcontext():
                status, body = await self._transport.post(url, request_body, request_headers)
        except Exception as e:
            error = DeliveryError(url, f"{type(e).__name__}: {e}")
            error.__cause__ = e

        success = error is None and status in self._success_codes
        if error is None and not success:
            error = DeliveryError(url, f"Unexpected status {status}")

        outcome = DeliveryOutcome(
            shortname=shortname,
            url=url,
            success=success,
            status=status,
            body=body or None,
            error=error,
        )

        if success:
            self._logger.info("delivery_succeeded", shortname=shortname, url=url, status=status)
        else:
            self._logger.warning(
                "delivery_failed",
                shortname=shortname,
                url=url,
                status=status,
                body=truncate_string(outcome.body),
                error=str(error) if error else None,
            )

        self._bus.publish(outcome.channel, outcome)
        return outcome

    async def aclose(self) -> None:
        await self._transport.aclose()


__all__ = [
    "Action",
    "DeliveryExecutor",
    "HttpxTransport",
    "build_headers",
    "serialize_payload",
    "url_fingerprint",
]

"""HTTP delivery of event batches to the collector.

Three ways to send a batch:
- ``send``: awaited POST on an ``httpx.AsyncClient``
- ``send_blocking``: the same POST on an ``httpx.Client``, for callers
  without a running event loop
- ``send_beacon``: best-effort POST used while the host is hidden or
  unloading; its outcome is never observed

Any HTTP response, whatever its status, completes the attempt. Only a
request that never completed counts as a failure.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

HEADERS = {"Content-Type": "application/json"}


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of a delivery attempt."""

    ok: bool
    status: Optional[int] = None
    error: Optional[BaseException] = None
    beacon: bool = False


class Transport(Protocol):
    """What the engine needs from a transport."""

    async def send(self, url: str, payload: Dict[str, Any]) -> DeliveryOutcome: ...

    def send_blocking(self, url: str, payload: Dict[str, Any]) -> DeliveryOutcome: ...

    def send_beacon(self, url: str, payload: Dict[str, Any]) -> DeliveryOutcome: ...


def encode_payload(payload: Dict[str, Any]) -> bytes:
    """Serialize a batch payload; values JSON cannot represent become strings."""
    return json.dumps(payload, default=str).encode("utf-8")


class HttpTransport:
    """Collector transport over httpx.

    Args:
        client: Client for blocking and beacon sends. Created lazily.
        async_client: Client for awaited sends. Created lazily.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        async_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client
        self._async_client = async_client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(headers=HEADERS)
        return self._client

    @property
    def async_client(self) -> httpx.AsyncClient:
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(headers=HEADERS)
        return self._async_client

    async def send(self, url: str, payload: Dict[str, Any]) -> DeliveryOutcome:
        try:
            response = await self.async_client.post(
                url, content=encode_payload(payload), headers=HEADERS
            )
        except httpx.HTTPError as e:
            return DeliveryOutcome(ok=False, error=e)
        return self._completed(response)

    def send_blocking(self, url: str, payload: Dict[str, Any]) -> DeliveryOutcome:
        try:
            response = self.client.post(url, content=encode_payload(payload), headers=HEADERS)
        except httpx.HTTPError as e:
            return DeliveryOutcome(ok=False, error=e)
        return self._completed(response)

    def send_beacon(self, url: str, payload: Dict[str, Any]) -> DeliveryOutcome:
        """Fire a batch without observing the outcome.

        Always reports success; transmission errors are only logged.
        """
        try:
            self.client.post(url, content=encode_payload(payload), headers=HEADERS)
        except httpx.HTTPError as e:
            logger.debug("Beacon send to %s failed: %s", url, e)
        return DeliveryOutcome(ok=True, beacon=True)

    def _completed(self, response: httpx.Response) -> DeliveryOutcome:
        if response.is_success:
            logger.debug("Collector accepted batch with status %d", response.status_code)
        else:
            logger.warning("Collector answered %d; batch discarded", response.status_code)
        return DeliveryOutcome(ok=True, status=response.status_code)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def aclose(self) -> None:
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None
        self.close()

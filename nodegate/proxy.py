"""
NodeGate - Device Proxy
=========================
Forwards API calls to a remote device of the fleet.

    /api/proxy/<path>?deviceId=<id>  ->  http://<ip>:<port>/api/<path>

The caller's session token is NOT passed on. The forwarded request carries
the device's own credential instead:

    X-Device-ID: <device id>
    X-API-Key:   <device api key>

Outcomes:
    - device id missing        -> 400
    - device unknown           -> 404
    - device marked inactive   -> 503 "Device is offline"
    - device unreachable       -> 503 "Device is unreachable", and the
                                  device is marked inactive
    - otherwise                -> the device's JSON answer and status, and
                                  the device's last_seen is refreshed

Nothing is retried.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Mapping, TypeVar

import httpx
from fastapi import Request

from nodegate.devices import DeviceRegistry
from nodegate.errors import (
    DeviceOffline,
    DeviceTransportError,
    NodeGateError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# Headers that must not travel to the device.
STRIPPED_HEADERS = {
    "host",
    "authorization",
    "content-length",
    "connection",
    "transfer-encoding",
    "x-device-id",
    "x-api-key",
}

T = TypeVar("T")


@dataclass
class ProxyResult:
    status: int
    data: Any
    device_id: str
    device_name: str


class DeviceProxy:
    """
    Re-issues HTTP calls against a device with the device's credential.

    Attributes:
        registry: Device registry used to resolve ids and record liveness.
        client:   Shared httpx.AsyncClient for outbound calls.
        timeout:  Per-call timeout in seconds.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.client = client or httpx.AsyncClient()
        self.timeout = timeout

    async def forward(
        self,
        method: str,
        path: str,
        device_id: str | None,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        params: Mapping[str, str] | None = None,
    ) -> ProxyResult:
        """
        Forward one call to a device.

        Args:
            method:    HTTP method.
            path:      API path below /api on the device.
            device_id: Target device.
            headers:   Incoming request headers.
            body:      Raw request body (ignored for GET).
            params:    Query parameters to pass on (deviceId excluded).

        Raises:
            ValidationError:      No device id.
            NotFoundError:        Unknown device.
            DeviceOffline:        The device is marked inactive.
            DeviceTransportError: The device could not be reached.
            NodeGateError:        The device answered with something that
                                  is not JSON.
        """
        if not device_id:
            raise ValidationError("Device ID is required", code="DEVICE_ID_REQUIRED")

        device = await self.registry.get(device_id)
        if device is None:
            raise NotFoundError("Device not found", code="DEVICE_NOT_FOUND")
        if not device.is_active:
            raise DeviceOffline()

        url = f"{device.base_url}/api/{path.lstrip('/')}"

        outgoing = {
            key: value for key, value in (headers or {}).items()
            if key.lower() not in STRIPPED_HEADERS
        }
        credentials = device.credentials
        outgoing["X-Device-ID"] = credentials.device_id
        outgoing["X-API-Key"] = credentials.api_key

        query = {k: v for k, v in (params or {}).items() if k != "deviceId"}

        try:
            response = await self.client.request(
                method,
                url,
                headers=outgoing,
                content=body if method.upper() != "GET" else None,
                params=query or None,
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            logger.warning("Device %s unreachable at %s: %s", device.id, url, e)
            await self.registry.mark_unreachable(device.id)
            raise DeviceTransportError(extra={"details": str(e) or type(e).__name__}) from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Device %s answered %s with non-JSON body", device.id, response.status_code)
            raise NodeGateError(
                "Failed to proxy request",
                code="PROXY_ERROR",
                extra={"details": f"non-JSON response ({response.status_code})"},
            ) from e

        await self.registry.mark_seen(device.id)

        return ProxyResult(
            status=response.status_code,
            data=data,
            device_id=device.id,
            device_name=device.name,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


async def cancel_on_disconnect(
    request: Request,
    awaitable: Awaitable[T],
    poll_interval: float = 0.5,
) -> T:
    """
    Await a forwarded call, cancelling it if the inbound client goes away.

    The request body must already have been read; the watcher only looks
    for the http.disconnect message.
    """
    task = asyncio.ensure_future(awaitable)

    async def _watch() -> None:
        while not task.done():
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling forwarded call")
                task.cancel()
                return
            await asyncio.sleep(poll_interval)

    watcher = asyncio.ensure_future(_watch())
    try:
        return await task
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

"""
NodeGate - API Client with Device Routing
===========================================
Client used by operator tooling to call the control plane, either on this
node or on another device of the fleet.

    router = RequestRouter(httpx.AsyncClient(base_url="http://main:3000"))

    # Runs on the main node: GET /api/devices
    await router.call("/devices", token=token)

    # Runs on device d2: GET /api/proxy/devices?deviceId=d2
    await router.call("/devices", device_id="d2", token=token)

The bearer token is always the caller's own. Translating it into the
device's credential is the proxy endpoint's job (see proxy.py).

Failures:
    RequestFailed        - the target answered with a non-2xx status
    DeviceTransportError - the target could not be reached at all
"""

import logging
from typing import Any

import httpx

from nodegate.errors import DeviceTransportError, RequestFailed

logger = logging.getLogger(__name__)


def route_url(path: str, device_id: str | None = None) -> str:
    """
    Build the URL path for a logical API path.

    Args:
        path:      "/devices", "devices" or "/api/devices".
        device_id: Remote device to route to, None for the local node.

    Returns:
        "/api/devices" locally, "/api/proxy/devices?deviceId=<id>" remotely.
    """
    api_path, _, query = path.strip().partition("?")
    if api_path.startswith("/api/") or api_path == "/api":
        api_path = api_path[4:]
    api_path = api_path.lstrip("/")

    params = httpx.QueryParams(query)
    if device_id:
        params = params.set("deviceId", device_id)
        url = f"/api/proxy/{api_path}"
    else:
        url = f"/api/{api_path}"

    return f"{url}?{params}" if params else url


class RequestRouter:
    """
    Sends API calls to the local handler or through the device proxy.

    The underlying httpx.AsyncClient decides what "local" is: a base URL of
    a running server, or an ASGI app mounted with httpx.ASGITransport.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def call(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        device_id: str | None = None,
        token: str = "",
    ) -> Any:
        """
        Perform one API call.

        Args:
            path:      Logical API path.
            method:    GET, POST, PUT or DELETE.
            body:      JSON-serializable payload, sent when not None.
            device_id: Route through the proxy to this device.
            token:     Caller's session token.

        Returns:
            Decoded JSON body of the answer (None for an empty body).

        Raises:
            RequestFailed:        Non-2xx answer. Carries the remote "error"
                                  message when there is one.
            DeviceTransportError: Network-level failure.
        """
        url = route_url(path, device_id)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }

        try:
            response = await self.client.request(
                method.upper(),
                url,
                headers=headers,
                json=body,
            )
        except httpx.TransportError as e:
            logger.error("API call to %s failed: %s", url, e)
            raise DeviceTransportError(extra={"details": str(e) or type(e).__name__}) from e

        if not response.is_success:
            payload = _json_or_none(response)
            message = None
            if isinstance(payload, dict):
                message = payload.get("error")
            message = message or f"request failed: {response.status_code}"
            logger.error("API call to %s failed: %s", url, message)
            raise RequestFailed(message, status=response.status_code, body=payload)

        if not response.content:
            return None
        return response.json()

    async def aclose(self) -> None:
        await self.client.aclose()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None

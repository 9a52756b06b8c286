"""
NodeGate - REST API Routes
============================
All HTTP API endpoints of the control plane.

Route groups:
    /api/wallet          - Wallet login, token verify / refresh, logout
    /api/auth/*          - Allow-list mode and address checks (public)
    /api/devices         - Device list / registration / main device
    /api/devices/ping    - Device heartbeat (device API key, no session)
    /api/proxy/<path>    - Forward a call to a device of the fleet

Error bodies are produced by the NodeGateError handler in main.py:
    {"error": "...", "code": "..."}

See auth.py for session resolution and devices.py for device credentials.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from nodegate.allowlist import AllowList
from nodegate.auth import SessionManager, bearer_token, require_principal
from nodegate.devices import DeviceRegistry, HeartbeatHandler
from nodegate.errors import NodeGateError, ValidationError
from nodegate.models import Principal
from nodegate.proxy import DeviceProxy, cancel_on_disconnect
from nodegate.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


# =============================================================================
# Request Models (Pydantic)
# =============================================================================
# Fields are optional: missing values are reported by the
# services as 400 {"error": ...} rather than FastAPI's 422.

class WalletLoginRequest(BaseModel):
    """Signed login message from a wallet extension."""
    address: str | None = Field(None, description="SS58 wallet address")
    signature: str | None = Field(None, description="Hex signature of the message")
    message: str | None = Field(None, description="The message that was signed")

class AddressRequest(BaseModel):
    address: str | None = None

class DeviceCreateRequest(BaseModel):
    """Register a remote device."""
    name: str | None = Field(None, description="Display name")
    ipAddress: str | None = Field(None, description="IP address of the device API")
    port: int | None = Field(None, ge=1, le=65535, description="HTTP port (default 3000)")

class DevicePingRequest(BaseModel):
    """Heartbeat sent by a device with its own credential."""
    deviceId: str | None = None
    apiKey: str | None = None


# =============================================================================
# Router Factory
# =============================================================================

def create_router(
    session_manager: SessionManager,
    allow_list: AllowList,
    registry: DeviceRegistry,
    heartbeat: HeartbeatHandler,
    proxy: DeviceProxy,
    rate_limiter: RateLimiter,
    debug: bool = False,
) -> APIRouter:
    """
    Create and configure the API router with all endpoints.

    Args:
        session_manager: Wallet session lifecycle.
        allow_list:      Wallet allow-list.
        registry:        Device records.
        heartbeat:       Device liveness pings.
        proxy:           Forwarding to remote devices.
        rate_limiter:    Limiter applied to wallet login.
        debug:           Expose diagnostic fields (address count).

    Returns:
        Configured APIRouter with all endpoints registered.
    """
    router = APIRouter(prefix="/api")

    # Shorthands for the session dependencies
    principal = Depends(require_principal(session_manager))
    admin = Depends(require_principal(session_manager, require_admin=True))
    login_limit = Depends(rate_limiter.dependency("wallet-auth"))

    # =========================================================================
    # WALLET SESSION ROUTES
    # =========================================================================

    @router.post("/wallet", dependencies=[login_limit])
    async def wallet_login(req: WalletLoginRequest):
        """
        Log in with a wallet signature. Returns a JWT on success.
        """
        token, user = await session_manager.login(req.address, req.signature, req.message)
        return {
            "token": token,
            "user": user.to_dict(),
            "allowed": allow_list.is_address_allowed(user.address),
        }

    @router.get("/wallet/verify")
    async def wallet_verify(token: str | None = Depends(bearer_token)):
        """Resolve the bearer token to its principal."""
        resolved = await session_manager.resolve(token)
        return resolved.to_dict()

    @router.post("/wallet/refresh")
    async def wallet_refresh(token: str | None = Depends(bearer_token)):
        """Trade a valid token for a new one. The old token stops working."""
        new_token = await session_manager.refresh(token)
        return {"success": True, "token": new_token}

    @router.post("/wallet/logout")
    async def wallet_logout(token: str | None = Depends(bearer_token)):
        """
        Invalidate the session of the bearer token.
        Logging out twice is not an error.
        """
        try:
            await session_manager.logout(token)
        except NodeGateError:
            raise
        except Exception as e:
            logger.exception("Logout failed: %s", e)
            raise NodeGateError("SERVER_ERROR", code="SERVER_ERROR")
        return {"success": True, "message": "Logout successful"}

    # =========================================================================
    # ALLOW-LIST ROUTES - No authentication required
    # =========================================================================

    @router.get("/auth/check-mode")
    async def check_mode():
        """
        Tell the frontend whether the allow-list is empty (public mode).
        The address count is only exposed in debug mode.
        """
        result: dict[str, Any] = {"isPublicMode": allow_list.is_public_mode()}
        if debug:
            result["addressCount"] = len(allow_list)
        return result

    @router.post("/auth/validate-address")
    async def validate_address(req: AddressRequest):
        """Check one address against the allow-list."""
        if not req.address:
            raise ValidationError("Address is required", code="ADDRESS_REQUIRED")
        return {
            "isAllowed": allow_list.is_address_allowed(req.address),
            "isPublicMode": allow_list.is_public_mode(),
        }

    # =========================================================================
    # DEVICE ROUTES
    # =========================================================================

    @router.get("/devices", dependencies=[principal])
    async def list_devices():
        """All devices, most recently updated first."""
        devices = await registry.list()
        return [d.to_dict() for d in devices]

    @router.post("/devices", dependencies=[admin])
    async def create_device(req: DeviceCreateRequest):
        """
        Register a remote device. The response contains the generated API
        key; it is the device's only credential.
        """
        device = await registry.create(req.name, req.ipAddress, req.port)
        return device.to_dict()

    @router.get("/devices/current", dependencies=[principal])
    async def current_device():
        """The record of this node, created on first request."""
        device = await registry.current()
        return device.to_dict()

    @router.post("/devices/ping")
    async def ping_device(req: DevicePingRequest):
        """
        Heartbeat from a device. Authenticated by the device API key,
        never by a session token.
        """
        await heartbeat.ping(req.deviceId, req.apiKey)
        return {"success": True}

    # =========================================================================
    # PROXY ROUTE
    # =========================================================================

    @router.api_route("/proxy/{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
    async def proxy_request(path: str, request: Request, caller: Principal = principal):
        """
        Forward a call to /api/<path> on the device given by ?deviceId=.
        """
        body = await request.body()
        result = await cancel_on_disconnect(
            request,
            proxy.forward(
                request.method,
                path,
                request.query_params.get("deviceId"),
                headers=request.headers,
                body=body,
                params=request.query_params,
            ),
        )
        logger.info(
            "Proxied %s /api/%s to device %s for %s -> %s",
            request.method, path, result.device_id, caller.address or "public", result.status,
        )
        return JSONResponse(
            result.data,
            status_code=result.status,
            headers={"X-Proxied-From": result.device_name},
        )

    return router

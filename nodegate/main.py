"""
NodeGate - FastAPI Application
================================
Creates and configures the FastAPI application that serves the NodeGate
control plane.

Responsibilities:
    - Create the FastAPI app instance with CORS and metadata
    - Load configuration, secrets and the wallet allow-list
    - Build the stores (SQLite, or in-memory for throwaway nodes)
    - Initialize the session, device and proxy services
    - Register the API routes and the error handlers

Architecture:
    Every service is created once here and stored on app.state. Routes get
    them through the create_router() closure, never through globals.
    API endpoints are prefixed with /api/.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Mapping

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nodegate.allowlist import AllowList
from nodegate.auth import SessionManager
from nodegate.config import ConfigManager
from nodegate.devices import DeviceRegistry, HeartbeatHandler
from nodegate.errors import NodeGateError, RateLimitExceeded
from nodegate.persistence import (
    SQLiteDatabase,
    SQLiteDeviceStore,
    SQLiteSessionStore,
    SQLiteUserStore,
)
from nodegate.proxy import DeviceProxy
from nodegate.ratelimit import RateLimiter
from nodegate.routes import create_router
from nodegate.stores import MemoryDeviceStore, MemorySessionStore, MemoryUserStore
from nodegate.token_cache import TokenCache
from nodegate.wallet import WalletVerifier

logger = logging.getLogger(__name__)


def create_app(
    project_dir: str | None = None,
    environ: Mapping[str, str] | None = None,
    proxy_client: httpx.AsyncClient | None = None,
    verifier: WalletVerifier | None = None,
) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        project_dir:  Root directory of the NodeGate project.
                      If None, auto-detected from this file's location.
        environ:      Environment to read secrets and the allow-list from.
                      Defaults to os.environ.
        proxy_client: httpx client used to reach remote devices.
        verifier:     Wallet signature verifier.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    # -- Resolve directories ---------------------------------------------------
    if project_dir is None:
        project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    # -- Configuration ---------------------------------------------------------
    config_manager = ConfigManager(project_dir, environ=environ)
    config = config_manager.load()
    if "_config_error" in config:
        logger.error("config.yaml could not be parsed, using defaults: %s", config["_config_error"])

    auth_cfg = config["auth"]
    allow_list = AllowList(config_manager.get_allowed_wallets())
    if allow_list.is_public_mode():
        logger.warning("ALLOWED_WALLETS is empty: running in public mode")
    else:
        logger.info("Wallet allow-list loaded (%d addresses)", len(allow_list))

    # -- Stores ----------------------------------------------------------------
    backend = config["storage"].get("backend", "sqlite")
    if backend == "memory":
        sessions, users, devices = MemorySessionStore(), MemoryUserStore(), MemoryDeviceStore()
    else:
        db = SQLiteDatabase(config_manager.storage_path(config))
        sessions, users, devices = SQLiteSessionStore(db), SQLiteUserStore(db), SQLiteDeviceStore(db)
        logger.info("Using SQLite storage at %s", db.path)

    # -- Services --------------------------------------------------------------
    token_cache = TokenCache(
        ttl=float(auth_cfg["cache_ttl_seconds"]),
        max_entries=int(auth_cfg["cache_max_entries"]),
    )
    session_manager = SessionManager(
        secret=config_manager.get_jwt_secret(),
        allow_list=allow_list,
        sessions=sessions,
        users=users,
        cache=token_cache,
        verifier=verifier,
        expiration_hours=float(auth_cfg["jwt_expiration_hours"]),
    )
    registry = DeviceRegistry(devices, web_port=int(config["web"]["port"]))
    heartbeat = HeartbeatHandler(registry)
    proxy = DeviceProxy(
        registry,
        client=proxy_client,
        timeout=float(config["proxy"]["timeout_seconds"]),
    )
    rate_limiter = RateLimiter(
        window=float(auth_cfg["login_rate_window_seconds"]),
        max_requests=int(auth_cfg["login_rate_limit"]),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await proxy.aclose()

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="NodeGate",
        description="Control plane for a fleet of Polkadot nodes",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    # -- CORS middleware -------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Store managers on app state -------------------------------------------
    app.state.config = config
    app.state.config_manager = config_manager
    app.state.allow_list = allow_list
    app.state.token_cache = token_cache
    app.state.session_manager = session_manager
    app.state.registry = registry
    app.state.heartbeat = heartbeat
    app.state.proxy = proxy

    # -- Error handlers --------------------------------------------------------

    @app.exception_handler(NodeGateError)
    async def nodegate_error_handler(request: Request, exc: NodeGateError):
        if exc.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        headers = None
        if isinstance(exc, RateLimitExceeded):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(exc.to_dict(), status_code=exc.status, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "Invalid request body", "code": "INVALID_REQUEST"},
            status_code=400,
        )

    # -- Register API routes ---------------------------------------------------
    api_router = create_router(
        session_manager=session_manager,
        allow_list=allow_list,
        registry=registry,
        heartbeat=heartbeat,
        proxy=proxy,
        rate_limiter=rate_limiter,
        debug=bool(config.get("debug")),
    )
    app.include_router(api_router)

    return app

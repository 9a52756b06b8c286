"""
NodeGate - Control Plane Package
================================
Wallet-authenticated control plane for a small fleet of Polkadot nodes.

This package provides:
- Wallet signature login against an address allow-list
- JWT sessions backed by a session store and a short-lived token cache
- A device registry with per-device API keys and heartbeats
- A proxy that forwards operator calls to a chosen device

Architecture:
    main.py        -> FastAPI app creation, service wiring, error handlers
    routes.py      -> All REST API endpoint handlers
    auth.py        -> Session manager, JWT tokens, route protection
    allowlist.py   -> ALLOWED_WALLETS parsing and public mode
    wallet.py      -> sr25519 / ed25519 / ecdsa signature verification
    token_cache.py -> In-memory token resolution cache (60 s TTL)
    devices.py     -> Device registry and heartbeat handler
    proxy.py       -> Forwarding calls to remote devices
    client.py      -> Client-side routing between local and proxied calls
    ratelimit.py   -> Login rate limiting
    stores.py      -> Store interfaces and in-memory implementations
    persistence.py -> SQLite stores
    config.py      -> Read config.yaml, .env and the JWT secret
    errors.py      -> Error taxonomy and HTTP status mapping
"""

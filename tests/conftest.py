from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from nodegate.allowlist import AllowList
from nodegate.auth import SessionManager
from nodegate.devices import DeviceRegistry, HeartbeatHandler
from nodegate.stores import MemoryDeviceStore, MemorySessionStore, MemoryUserStore
from nodegate.token_cache import TokenCache
from nodegate.wallet import VerificationResult

ADMIN = "5" + "A" * 47
OPERATOR = "5" + "B" * 47
STRANGER = "5" + "C" * 47
GOOD_SIGNATURE = "0x" + "ab" * 64


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """utcnow() replacement that can be moved forward."""

    def __init__(self) -> None:
        self.offset = timedelta(0)

    def __call__(self) -> datetime:
        return datetime.now(timezone.utc) + self.offset

    def advance(self, **kwargs: float) -> None:
        self.offset += timedelta(**kwargs)


class FakeVerifier:
    """Accepts GOOD_SIGNATURE for any address."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def verify(self, message: str, signature: str, address: str) -> VerificationResult:
        self.calls.append(address)
        if signature == GOOD_SIGNATURE:
            return VerificationResult(True, "sr25519")
        return VerificationResult(False, "none")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def sessions() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def cache(clock: FakeClock) -> TokenCache:
    return TokenCache(ttl=60, clock=clock)


@pytest.fixture
def make_manager(sessions, cache, wall_clock):
    def _make(allowed: str = f"{ADMIN},{OPERATOR}", session_store=None) -> SessionManager:
        return SessionManager(
            secret="test-secret",
            allow_list=AllowList(allowed),
            sessions=session_store if session_store is not None else sessions,
            users=MemoryUserStore(),
            cache=cache,
            verifier=FakeVerifier(),
            now=wall_clock,
        )
    return _make


@pytest.fixture
def device_store() -> MemoryDeviceStore:
    return MemoryDeviceStore()


@pytest.fixture
def registry(device_store) -> DeviceRegistry:
    return DeviceRegistry(device_store, web_port=3000)


@pytest.fixture
def heartbeat(registry) -> HeartbeatHandler:
    return HeartbeatHandler(registry)

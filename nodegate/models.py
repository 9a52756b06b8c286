"""
NodeGate - Domain Records
===========================
Plain records shared by the session and device subsystems.

    Principal         - resolved identity behind a session token
    User              - operator account keyed by wallet address
    SessionRecord     - server-side record of an issued token
    Device            - a registered node of the fleet
    DeviceCredentials - what a device presents instead of a session token
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Principal:
    """Identity resolved from a session token. Never persisted."""
    address: str
    user_id: str
    is_admin: bool
    allowed: bool
    valid: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "address": self.address,
            "userId": self.user_id,
            "allowed": self.allowed,
            "isAdmin": self.is_admin,
        }


@dataclass
class User:
    id: str
    address: str
    name: str
    is_admin: bool = False
    created_at: datetime = field(default_factory=utcnow)
    last_login_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "name": self.name,
            "isAdmin": self.is_admin,
            "createdAt": _iso(self.created_at),
            "lastLoginAt": _iso(self.last_login_at),
        }


@dataclass(frozen=True)
class SessionRecord:
    token: str
    user_id: str
    address: str
    is_admin: bool
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


@dataclass
class Device:
    """
    A node of the fleet.

    The api_key is generated once by the registry and never changes.
    is_active and last_seen are liveness fields owned by the heartbeat
    handler and the proxy boundary.
    """
    id: str
    name: str
    ip_address: str
    api_key: str
    port: int = 3000
    is_main: bool = False
    is_active: bool = False
    last_seen: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def base_url(self) -> str:
        return f"http://{self.ip_address}:{self.port}"

    @property
    def credentials(self) -> "DeviceCredentials":
        return DeviceCredentials(device_id=self.id, api_key=self.api_key)

    def copy(self) -> "Device":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "ipAddress": self.ip_address,
            "port": self.port,
            "apiKey": self.api_key,
            "isMain": self.is_main,
            "isActive": self.is_active,
            "lastSeen": _iso(self.last_seen),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class DeviceCredentials:
    """Capability to heartbeat as one device. Unrelated to session tokens."""
    device_id: str
    api_key: str

"""
NodeGate - Store Interfaces and In-Memory Stores
==================================================
The session, user and device records live behind three narrow async
interfaces. The core never talks to a database directly; it only calls the
methods below. Two implementations ship with NodeGate:

    stores.py       - in-memory stores (tests, single-shot tools)
    persistence.py  - SQLite stores (the default for the web server)

Store methods raise nodegate.errors.PersistenceError when the backing
storage fails. They never retry.

Every mutation is a single step: in memory it runs without an await in the
middle, so it cannot interleave with another coroutine; in SQLite it is a
single statement.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime

from nodegate.models import Device, SessionRecord, User, utcnow


# =============================================================================
# Interfaces
# =============================================================================

class SessionStore(ABC):
    """Server-side session records, keyed by the opaque token."""

    @abstractmethod
    async def create(self, record: SessionRecord) -> str:
        """Persist a record and return its token."""

    @abstractmethod
    async def find(self, token: str) -> SessionRecord | None:
        ...

    @abstractmethod
    async def delete(self, token: str) -> bool:
        """Remove a record. Returns False when there was nothing to remove."""

    @abstractmethod
    async def replace(self, old_token: str, record: SessionRecord) -> str:
        """Swap the record of old_token for a new one (token refresh)."""


class UserStore(ABC):
    """Operator accounts, unique by wallet address."""

    @abstractmethod
    async def find_by_address(self, address: str) -> User | None:
        ...

    @abstractmethod
    async def create(self, user: User) -> User:
        ...

    @abstractmethod
    async def update_login(
        self, user_id: str, is_admin: bool, last_login_at: datetime
    ) -> User | None:
        ...


class DeviceStore(ABC):
    """Device records, unique by id."""

    @abstractmethod
    async def find_by_id(self, device_id: str) -> Device | None:
        ...

    @abstractmethod
    async def find_main(self) -> Device | None:
        ...

    @abstractmethod
    async def list_devices(self) -> list[Device]:
        """All devices, most recently updated first."""

    @abstractmethod
    async def create(self, device: Device) -> Device:
        ...

    @abstractmethod
    async def touch(
        self,
        device_id: str,
        last_seen: datetime | None = None,
        is_active: bool | None = None,
    ) -> bool:
        """
        Update liveness fields of one device in a single step.

        Only the fields that are not None are written; updated_at always
        moves. Returns False when the device does not exist.
        """


# =============================================================================
# In-memory implementations
# =============================================================================

class MemorySessionStore(SessionStore):

    def __init__(self):
        self._records: dict[str, SessionRecord] = {}

    async def create(self, record: SessionRecord) -> str:
        self._records[record.token] = record
        return record.token

    async def find(self, token: str) -> SessionRecord | None:
        return self._records.get(token)

    async def delete(self, token: str) -> bool:
        return self._records.pop(token, None) is not None

    async def replace(self, old_token: str, record: SessionRecord) -> str:
        self._records.pop(old_token, None)
        self._records[record.token] = record
        return record.token

    def __len__(self) -> int:
        return len(self._records)


class MemoryUserStore(UserStore):

    def __init__(self):
        self._users: dict[str, User] = {}

    async def find_by_address(self, address: str) -> User | None:
        user = self._users.get(address)
        return replace(user) if user else None

    async def create(self, user: User) -> User:
        self._users[user.address] = replace(user)
        return user

    async def update_login(
        self, user_id: str, is_admin: bool, last_login_at: datetime
    ) -> User | None:
        for address, user in self._users.items():
            if user.id == user_id:
                updated = replace(user, is_admin=is_admin, last_login_at=last_login_at)
                self._users[address] = updated
                return replace(updated)
        return None


class MemoryDeviceStore(DeviceStore):
    """Devices kept in a dict. Callers always receive copies."""

    def __init__(self):
        self._devices: dict[str, Device] = {}

    async def find_by_id(self, device_id: str) -> Device | None:
        device = self._devices.get(device_id)
        return device.copy() if device else None

    async def find_main(self) -> Device | None:
        for device in self._devices.values():
            if device.is_main:
                return device.copy()
        return None

    async def list_devices(self) -> list[Device]:
        devices = sorted(self._devices.values(), key=lambda d: d.updated_at, reverse=True)
        return [d.copy() for d in devices]

    async def create(self, device: Device) -> Device:
        self._devices[device.id] = device.copy()
        return device

    async def touch(
        self,
        device_id: str,
        last_seen: datetime | None = None,
        is_active: bool | None = None,
    ) -> bool:
        device = self._devices.get(device_id)
        if device is None:
            return False
        changes = {"updated_at": last_seen or utcnow()}
        if last_seen is not None:
            changes["last_seen"] = last_seen
        if is_active is not None:
            changes["is_active"] = is_active
        self._devices[device_id] = replace(device, **changes)
        return True

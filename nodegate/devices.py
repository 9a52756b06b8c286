"""
NodeGate - Device Registry and Heartbeats
===========================================
Keeps track of the fleet.

    DeviceRegistry   - create / list / look up devices, check device
                       credentials, and own the record of the main node
    HeartbeatHandler - liveness pings sent by the devices themselves

Devices authenticate with the API key generated for them at registration.
That key is a separate kind of credential from an operator's session token
and is never checked through the session path.

Usage:
    registry = DeviceRegistry(store, web_port=3000)
    device = await registry.create("node2", "10.0.0.5")
    heartbeat = HeartbeatHandler(registry)
    await heartbeat.ping(device.id, device.api_key)
"""

import hmac
import logging
import secrets
import socket
import uuid
from datetime import datetime
from typing import Callable

from nodegate.errors import (
    InvalidDeviceCredentials,
    MissingField,
    MissingFields,
    PersistenceError,
)
from nodegate.models import Device, utcnow
from nodegate.stores import DeviceStore

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_PORT = 3000
API_KEY_BYTES = 32


def generate_api_key() -> str:
    """32 random bytes, hex encoded (64 characters)."""
    return secrets.token_hex(API_KEY_BYTES)


def local_ipv4() -> str:
    """
    Best guess at this machine's LAN address.

    Connects a UDP socket (nothing is sent) and reads the source address the
    kernel picked for it. Falls back to 127.0.0.1.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        address = sock.getsockname()[0]
    except OSError:
        address = "127.0.0.1"
    finally:
        sock.close()
    return address


class DeviceRegistry:
    """
    The single owner of device records.

    Attributes:
        store:    Device record store.
        web_port: Port of this node's web server, used for the main device.
    """

    def __init__(
        self,
        store: DeviceStore,
        web_port: int = DEFAULT_DEVICE_PORT,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.web_port = web_port
        self._now = now

    async def list(self) -> list[Device]:
        """All devices, most recently updated first."""
        return await self.store.list_devices()

    async def get(self, device_id: str | None) -> Device | None:
        if not device_id:
            return None
        return await self.store.find_by_id(device_id)

    async def create(self, name: str | None, ip_address: str | None, port: int | None = None) -> Device:
        """
        Register a remote device and generate its API key.

        Args:
            name:       Display name.
            ip_address: Address the device's HTTP API listens on.
            port:       HTTP port, 3000 when omitted.

        Returns:
            The new device, including its API key.

        Raises:
            MissingField:     name or ip_address is blank.
            PersistenceError: The store rejected the record.
        """
        name = (name or "").strip()
        ip_address = (ip_address or "").strip()
        if not name or not ip_address:
            raise MissingField("Name and IP address are required")

        now = self._now()
        device = Device(
            id=uuid.uuid4().hex,
            name=name,
            ip_address=ip_address,
            port=port or DEFAULT_DEVICE_PORT,
            api_key=generate_api_key(),
            is_main=False,
            is_active=False,
            last_seen=None,
            created_at=now,
            updated_at=now,
        )

        try:
            created = await self.store.create(device)
        except PersistenceError as e:
            logger.error("Error creating device %s: %s", name, e)
            raise PersistenceError("Failed to create device") from e

        logger.info("Registered device %s (%s:%s)", created.id, ip_address, created.port)
        return created

    async def current(self) -> Device:
        """
        Return the main device (this node), creating it on first use.
        """
        device = await self.store.find_main()
        if device is not None:
            return device

        now = self._now()
        device = Device(
            id=uuid.uuid4().hex,
            name=f"Main Server ({socket.gethostname()})",
            ip_address=local_ipv4(),
            port=self.web_port,
            api_key=generate_api_key(),
            is_main=True,
            is_active=True,
            last_seen=now,
            created_at=now,
            updated_at=now,
        )
        created = await self.store.create(device)
        logger.info("Created main device %s", created.id)
        return created

    async def validate_credentials(self, device_id: str | None, api_key: str | None) -> bool:
        """
        Check a device id / API key pair.

        Never raises: unknown ids, blank input and store failures all
        answer False.
        """
        if not device_id or not api_key:
            return False
        try:
            device = await self.store.find_by_id(device_id)
        except PersistenceError as e:
            logger.error("Credential lookup failed for device %s: %s", device_id, e)
            return False
        if device is None:
            return False
        return hmac.compare_digest(device.api_key.encode("utf-8"), api_key.encode("utf-8"))

    async def mark_seen(self, device_id: str) -> bool:
        """Refresh last_seen after a successful proxied call."""
        return await self.store.touch(device_id, last_seen=self._now())

    async def mark_unreachable(self, device_id: str) -> bool:
        return await self.store.touch(device_id, is_active=False)


class HeartbeatHandler:
    """Applies liveness pings sent by devices with their own credentials."""

    def __init__(self, registry: DeviceRegistry, now: Callable[[], datetime] = utcnow):
        self.registry = registry
        self._now = now

    async def ping(self, device_id: str | None, api_key: str | None) -> None:
        """
        Record that a device is alive.

        Raises:
            MissingFields:            device_id or api_key is absent.
            InvalidDeviceCredentials: The pair does not match a device. The
                                      record is left untouched.
        """
        if not device_id or not api_key:
            raise MissingFields("Device ID and API key required")

        if not await self.registry.validate_credentials(device_id, api_key):
            logger.warning("Rejected heartbeat for device %s", device_id)
            raise InvalidDeviceCredentials()

        await self.registry.store.touch(device_id, last_seen=self._now(), is_active=True)

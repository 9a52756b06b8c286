import re

import pytest

from nodegate.errors import InvalidDeviceCredentials, MissingField, MissingFields

pytestmark = pytest.mark.anyio


async def test_create_device_defaults(registry):
    device = await registry.create("node2", "10.0.0.5")

    assert re.fullmatch(r"[0-9a-f]{64}", device.api_key)
    assert device.port == 3000
    assert not device.is_main
    assert not device.is_active
    assert device.last_seen is None

    body = device.to_dict()
    assert body["ipAddress"] == "10.0.0.5"
    assert body["apiKey"] == device.api_key


async def test_create_device_requires_name_and_ip(registry):
    with pytest.raises(MissingField) as exc_info:
        await registry.create("", "10.0.0.5")
    assert exc_info.value.message == "Name and IP address are required"
    with pytest.raises(MissingField):
        await registry.create("node2", "   ")


async def test_api_keys_are_unique(registry):
    first = await registry.create("a", "10.0.0.1", port=8080)
    second = await registry.create("b", "10.0.0.2")
    assert first.api_key != second.api_key
    assert first.port == 8080


async def test_list_most_recently_updated_first(registry, heartbeat):
    first = await registry.create("a", "10.0.0.1")
    second = await registry.create("b", "10.0.0.2")
    await heartbeat.ping(first.id, first.api_key)

    devices = await registry.list()
    assert [d.id for d in devices] == [first.id, second.id]


async def test_validate_credentials(registry):
    device = await registry.create("node2", "10.0.0.5")

    assert await registry.validate_credentials(device.id, device.api_key)
    assert not await registry.validate_credentials(device.id, "0" * 64)
    assert not await registry.validate_credentials("unknown", device.api_key)
    assert not await registry.validate_credentials("", "")


async def test_current_creates_main_device_once(registry):
    main = await registry.current()
    again = await registry.current()

    assert main.is_main
    assert main.is_active
    assert main.port == 3000
    assert main.name.startswith("Main Server (")
    assert again.id == main.id


# -- Heartbeat ----------------------------------------------------------------

async def test_ping_marks_device_active(registry, heartbeat):
    device = await registry.create("node2", "10.0.0.5")
    await heartbeat.ping(device.id, device.api_key)

    stored = await registry.get(device.id)
    assert stored.is_active
    assert stored.last_seen is not None
    assert stored.updated_at == stored.last_seen


async def test_ping_with_wrong_key_leaves_record_untouched(registry, heartbeat):
    device = await registry.create("node2", "10.0.0.5")

    with pytest.raises(InvalidDeviceCredentials) as exc_info:
        await heartbeat.ping(device.id, "f" * 64)

    assert exc_info.value.status == 401
    assert exc_info.value.message == "Invalid device credentials"
    stored = await registry.get(device.id)
    assert not stored.is_active
    assert stored.last_seen is None
    assert stored.updated_at == device.updated_at


async def test_ping_requires_both_fields(heartbeat):
    with pytest.raises(MissingFields) as exc_info:
        await heartbeat.ping("device", None)
    assert exc_info.value.status == 400


async def test_ping_with_unknown_device(heartbeat):
    with pytest.raises(InvalidDeviceCredentials):
        await heartbeat.ping("unknown", "a" * 64)

from datetime import timedelta

import pytest

from nodegate.devices import DeviceRegistry, HeartbeatHandler
from nodegate.models import SessionRecord, User, utcnow
from nodegate.persistence import (
    SQLiteDatabase,
    SQLiteDeviceStore,
    SQLiteSessionStore,
    SQLiteUserStore,
)

from tests.conftest import ADMIN

pytestmark = pytest.mark.anyio


@pytest.fixture
def db(tmp_path):
    return SQLiteDatabase(str(tmp_path / "data" / "nodegate.db"))


def _record(token="a.b.c"):
    now = utcnow()
    return SessionRecord(
        token=token,
        user_id="u1",
        address=ADMIN,
        is_admin=True,
        expires_at=now + timedelta(hours=24),
        created_at=now,
    )


async def test_session_lifecycle(db):
    store = SQLiteSessionStore(db)
    record = _record()
    assert await store.create(record) == "a.b.c"

    found = await store.find("a.b.c")
    assert found.address == ADMIN
    assert found.is_admin
    assert found.expires_at == record.expires_at

    assert await store.replace("a.b.c", _record("d.e.f")) == "d.e.f"
    assert await store.find("a.b.c") is None
    assert await store.find("d.e.f") is not None

    assert await store.delete("d.e.f")
    assert not await store.delete("d.e.f")


async def test_user_store(db):
    store = SQLiteUserStore(db)
    now = utcnow()
    await store.create(User(id="u1", address=ADMIN, name="User 5AAAAA...", created_at=now))

    user = await store.find_by_address(ADMIN)
    assert user.id == "u1"
    assert not user.is_admin

    updated = await store.update_login("u1", True, now)
    assert updated.is_admin
    assert updated.last_login_at == now
    assert await store.find_by_address("nobody") is None


async def test_device_store_through_registry(db):
    registry = DeviceRegistry(SQLiteDeviceStore(db))
    heartbeat = HeartbeatHandler(registry)

    device = await registry.create("node2", "10.0.0.5")
    await heartbeat.ping(device.id, device.api_key)

    stored = await registry.get(device.id)
    assert stored.api_key == device.api_key
    assert stored.is_active
    assert stored.last_seen is not None

    await registry.mark_unreachable(device.id)
    assert not (await registry.get(device.id)).is_active

    main = await registry.current()
    assert (await registry.current()).id == main.id
    assert {d.id for d in await registry.list()} == {device.id, main.id}


async def test_data_survives_reopen(tmp_path):
    path = str(tmp_path / "nodegate.db")
    await SQLiteSessionStore(SQLiteDatabase(path)).create(_record())
    assert await SQLiteSessionStore(SQLiteDatabase(path)).find("a.b.c") is not None

"""
NodeGate - SQLite Persistence
===============================
SQLite-backed implementations of the session, user and device stores.

Each call opens its own connection inside a worker thread
(asyncio.to_thread), so a slow disk never blocks the event loop. Every
mutation is one SQL statement, which SQLite applies atomically; concurrent
heartbeats for the same device therefore cannot lose an update.

sqlite3 errors are re-raised as PersistenceError.
"""

import asyncio
import logging
import os
import sqlite3
from datetime import datetime
from typing import Any, Callable, Final

from nodegate.errors import PersistenceError
from nodegate.models import Device, SessionRecord, User, utcnow
from nodegate.stores import DeviceStore, SessionStore, UserStore

logger = logging.getLogger(__name__)

__all__ = [
    "SQLiteDatabase",
    "SQLiteSessionStore",
    "SQLiteUserStore",
    "SQLiteDeviceStore",
]


class SQLiteDatabase:
    """Owns the database file and its schema."""

    _SCHEMA: Final[str] = """
    PRAGMA journal_mode=WAL;

    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        address TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        is_admin INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_login_at TEXT
    );

    CREATE TABLE IF NOT EXISTS sessions (
        token TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        address TEXT NOT NULL,
        is_admin INTEGER NOT NULL DEFAULT 0,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS devices (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        ip_address TEXT NOT NULL,
        port INTEGER NOT NULL DEFAULT 3000,
        api_key TEXT NOT NULL UNIQUE,
        is_main INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 0,
        last_seen TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_devices_updated_at ON devices(updated_at);
    """

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(self._SCHEMA)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _call(self, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        conn = self._connect()
        try:
            with conn:
                return fn(conn)
        except sqlite3.Error as e:
            logger.error("SQLite error on %s: %s", self.path, e)
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    async def run(self, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        """Run fn(connection) in a worker thread inside one transaction."""
        return await asyncio.to_thread(self._call, fn)


# -- Row conversion -----------------------------------------------------------

def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        address=row["address"],
        name=row["name"],
        is_admin=bool(row["is_admin"]),
        created_at=_dt(row["created_at"]),
        last_login_at=_dt(row["last_login_at"]),
    )


def _session(row: sqlite3.Row) -> SessionRecord:
    return SessionRecord(
        token=row["token"],
        user_id=row["user_id"],
        address=row["address"],
        is_admin=bool(row["is_admin"]),
        expires_at=_dt(row["expires_at"]),
        created_at=_dt(row["created_at"]),
    )


def _device(row: sqlite3.Row) -> Device:
    return Device(
        id=row["id"],
        name=row["name"],
        ip_address=row["ip_address"],
        port=row["port"],
        api_key=row["api_key"],
        is_main=bool(row["is_main"]),
        is_active=bool(row["is_active"]),
        last_seen=_dt(row["last_seen"]),
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
    )


# =============================================================================
# Stores
# =============================================================================

class SQLiteSessionStore(SessionStore):

    def __init__(self, db: SQLiteDatabase):
        self.db = db

    async def create(self, record: SessionRecord) -> str:
        def _insert(conn):
            conn.execute(
                "INSERT INTO sessions (token, user_id, address, is_admin, expires_at, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (record.token, record.user_id, record.address, int(record.is_admin),
                 _ts(record.expires_at), _ts(record.created_at)),
            )
        await self.db.run(_insert)
        return record.token

    async def find(self, token: str) -> SessionRecord | None:
        def _select(conn):
            return conn.execute("SELECT * FROM sessions WHERE token = ?", (token,)).fetchone()
        row = await self.db.run(_select)
        return _session(row) if row else None

    async def delete(self, token: str) -> bool:
        def _delete(conn):
            return conn.execute("DELETE FROM sessions WHERE token = ?", (token,)).rowcount
        return await self.db.run(_delete) > 0

    async def replace(self, old_token: str, record: SessionRecord) -> str:
        def _update(conn):
            cur = conn.execute(
                "UPDATE sessions SET token = ?, expires_at = ?, created_at = ? WHERE token = ?",
                (record.token, _ts(record.expires_at), _ts(record.created_at), old_token),
            )
            if cur.rowcount == 0:
                raise sqlite3.IntegrityError("no session to replace")
        await self.db.run(_update)
        return record.token


class SQLiteUserStore(UserStore):

    def __init__(self, db: SQLiteDatabase):
        self.db = db

    async def find_by_address(self, address: str) -> User | None:
        def _select(conn):
            return conn.execute("SELECT * FROM users WHERE address = ?", (address,)).fetchone()
        row = await self.db.run(_select)
        return _user(row) if row else None

    async def create(self, user: User) -> User:
        def _insert(conn):
            conn.execute(
                "INSERT INTO users (id, address, name, is_admin, created_at, last_login_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (user.id, user.address, user.name, int(user.is_admin),
                 _ts(user.created_at), _ts(user.last_login_at)),
            )
        await self.db.run(_insert)
        return user

    async def update_login(
        self, user_id: str, is_admin: bool, last_login_at: datetime
    ) -> User | None:
        def _update(conn):
            conn.execute(
                "UPDATE users SET is_admin = ?, last_login_at = ? WHERE id = ?",
                (int(is_admin), _ts(last_login_at), user_id),
            )
            return conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        row = await self.db.run(_update)
        return _user(row) if row else None


class SQLiteDeviceStore(DeviceStore):

    def __init__(self, db: SQLiteDatabase):
        self.db = db

    async def find_by_id(self, device_id: str) -> Device | None:
        def _select(conn):
            return conn.execute("SELECT * FROM devices WHERE id = ?", (device_id,)).fetchone()
        row = await self.db.run(_select)
        return _device(row) if row else None

    async def find_main(self) -> Device | None:
        def _select(conn):
            return conn.execute("SELECT * FROM devices WHERE is_main = 1 LIMIT 1").fetchone()
        row = await self.db.run(_select)
        return _device(row) if row else None

    async def list_devices(self) -> list[Device]:
        def _select(conn):
            return conn.execute("SELECT * FROM devices ORDER BY updated_at DESC").fetchall()
        rows = await self.db.run(_select)
        return [_device(row) for row in rows]

    async def create(self, device: Device) -> Device:
        def _insert(conn):
            conn.execute(
                "INSERT INTO devices (id, name, ip_address, port, api_key, is_main, "
                "is_active, last_seen, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (device.id, device.name, device.ip_address, device.port, device.api_key,
                 int(device.is_main), int(device.is_active), _ts(device.last_seen),
                 _ts(device.created_at), _ts(device.updated_at)),
            )
        await self.db.run(_insert)
        return device

    async def touch(
        self,
        device_id: str,
        last_seen: datetime | None = None,
        is_active: bool | None = None,
    ) -> bool:
        # COALESCE keeps the column when the argument is NULL, so the whole
        # change is one UPDATE.
        active = None if is_active is None else int(is_active)

        def _update(conn):
            return conn.execute(
                "UPDATE devices SET "
                "last_seen = COALESCE(?, last_seen), "
                "is_active = COALESCE(?, is_active), "
                "updated_at = ? "
                "WHERE id = ?",
                (_ts(last_seen), active, _ts(last_seen or utcnow()), device_id),
            ).rowcount
        return await self.db.run(_update) > 0

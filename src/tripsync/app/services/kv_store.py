"""Client-persisted string sets keyed by namespace and user identity.

Stands in for browser storage: broadcast read/dismissed state survives
restarts without touching the remote store.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, Protocol, cast

import aiosqlite
import orjson
from aiosqlitepool import SQLiteConnectionPool
from aiosqlitepool.protocols import Connection as SQLitePoolConnection

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS client_kv (
    namespace  TEXT NOT NULL,
    key        TEXT NOT NULL,
    value      BLOB NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (namespace, key)
)
"""


def _decode(raw: bytes | None) -> frozenset[str]:
    if not raw:
        return frozenset()
    try:
        values = orjson.loads(raw)
    except orjson.JSONDecodeError:
        logger.warning("Discarding unreadable client state entry")
        return frozenset()
    if not isinstance(values, list):
        return frozenset()
    return frozenset(str(value) for value in values)


def _encode(values: Iterable[str]) -> bytes:
    return orjson.dumps(sorted(set(values)))


class ClientStateStore(Protocol):
    async def get_set(self, namespace: str, key: str) -> frozenset[str]: ...

    async def put_set(self, namespace: str, key: str, values: Iterable[str]) -> None: ...

    async def remove(self, namespace: str, key: str) -> None: ...


async def add_member(store: ClientStateStore, namespace: str, key: str, value: str) -> frozenset[str]:
    current = await store.get_set(namespace, key)
    if value in current:
        return current
    updated = current | {value}
    await store.put_set(namespace, key, updated)
    return updated


class MemoryClientStore:
    def __init__(self) -> None:
        self._data: dict[tuple[str, str], bytes] = {}

    async def get_set(self, namespace: str, key: str) -> frozenset[str]:
        return _decode(self._data.get((namespace, key)))

    async def put_set(self, namespace: str, key: str, values: Iterable[str]) -> None:
        self._data[(namespace, key)] = _encode(values)

    async def remove(self, namespace: str, key: str) -> None:
        self._data.pop((namespace, key), None)


class SQLiteClientStore:
    """``client_kv`` table behind an aiosqlite connection pool."""

    def __init__(
        self,
        path: str | Path,
        *,
        pool_size: int = 4,
        acquisition_timeout: int = 10,
        timeout: float = 5.0,
    ) -> None:
        self.path = Path(path).expanduser().resolve(strict=False)
        self._pool_size = pool_size
        self._acquisition_timeout = acquisition_timeout
        self._timeout = timeout
        self.pool: SQLiteConnectionPool | None = None

    async def __aenter__(self) -> "SQLiteClientStore":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def init(self) -> None:
        if self.pool is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)

        async def _connection_factory() -> SQLitePoolConnection:
            return cast(SQLitePoolConnection, await self._create_connection())

        pool = SQLiteConnectionPool(
            _connection_factory,
            pool_size=self._pool_size,
            acquisition_timeout=self._acquisition_timeout,
        )
        self.pool = pool
        try:
            async with pool.connection() as conn:
                await conn.execute(SCHEMA)
                await conn.commit()
        except Exception:
            await pool.close()
            self.pool = None
            raise

    async def close(self) -> None:
        if self.pool is not None:
            try:
                await self.pool.close()
            finally:
                self.pool = None

    async def _create_connection(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.path, timeout=self._timeout)
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute("PRAGMA synchronous = NORMAL")
        conn.row_factory = aiosqlite.Row
        return conn

    def _require_pool(self) -> SQLiteConnectionPool:
        if self.pool is None:
            raise RuntimeError("Client store is not initialised; call init() first.")
        return self.pool

    async def get_set(self, namespace: str, key: str) -> frozenset[str]:
        async with self._require_pool().connection() as conn:
            cursor = await conn.execute(
                "SELECT value FROM client_kv WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            row = await cursor.fetchone()
        return _decode(bytes(row["value"]) if row else None)

    async def put_set(self, namespace: str, key: str, values: Iterable[str]) -> None:
        async with self._require_pool().connection() as conn:
            await conn.execute(
                """
                INSERT INTO client_kv (namespace, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value      = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (namespace, key, _encode(values), int(time.time())),
            )
            await conn.commit()

    async def remove(self, namespace: str, key: str) -> None:
        async with self._require_pool().connection() as conn:
            await conn.execute(
                "DELETE FROM client_kv WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            await conn.commit()


__all__ = [
    "ClientStateStore",
    "MemoryClientStore",
    "SQLiteClientStore",
    "add_member",
]

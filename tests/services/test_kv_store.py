from __future__ import annotations

import asyncio

import pytest

from tripsync.app.services.kv_store import MemoryClientStore, SQLiteClientStore, add_member


def test_memory_store_round_trip() -> None:
    store = MemoryClientStore()

    async def scenario() -> None:
        assert await store.get_set("notifications_read", "c1") == frozenset()
        await add_member(store, "notifications_read", "c1", "m1")
        await add_member(store, "notifications_read", "c1", "m1")
        await add_member(store, "notifications_read", "c1", "m2")
        assert await store.get_set("notifications_read", "c1") == {"m1", "m2"}
        assert await store.get_set("notifications_read", "c2") == frozenset()
        await store.remove("notifications_read", "c1")
        assert await store.get_set("notifications_read", "c1") == frozenset()

    asyncio.run(scenario())


def test_sqlite_store_persists_between_instances(tmp_path) -> None:
    path = tmp_path / "state" / "client.sqlite3"

    async def write() -> None:
        async with SQLiteClientStore(path, pool_size=1) as store:
            await store.put_set("broadcast_spotlight_dismissed", "c1", ["m2", "m1"])
            await store.put_set("broadcast_spotlight_dismissed", "c1", ["m3", "m1"])
            await store.put_set("notifications_read", "c1", ["m9"])

    async def read() -> tuple[frozenset[str], frozenset[str], frozenset[str]]:
        async with SQLiteClientStore(path, pool_size=1) as store:
            dismissed = await store.get_set("broadcast_spotlight_dismissed", "c1")
            await store.remove("notifications_read", "c1")
            read_ids = await store.get_set("notifications_read", "c1")
            other = await store.get_set("broadcast_spotlight_dismissed", "c2")
            return dismissed, read_ids, other

    asyncio.run(write())
    dismissed, read_ids, other = asyncio.run(read())

    assert path.exists()
    assert dismissed == {"m1", "m3"}
    assert read_ids == frozenset()
    assert other == frozenset()


def test_sqlite_store_requires_init(tmp_path) -> None:
    store = SQLiteClientStore(tmp_path / "client.sqlite3")

    async def scenario() -> None:
        await store.get_set("notifications_read", "c1")

    with pytest.raises(RuntimeError, match=r"init\(\)"):
        asyncio.run(scenario())

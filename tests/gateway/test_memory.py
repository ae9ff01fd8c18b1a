from __future__ import annotations

import asyncio

import pytest

from tripsync.app.gateway import InMemoryGateway, Order, RemoteRejection, UNIQUE_VIOLATION, eq


def test_insert_stamps_identity_and_creation_time() -> None:
    gateway = InMemoryGateway()

    rows = asyncio.run(gateway.insert("trips", {"slug": "bonito", "title": "Bonito"}))

    assert rows[0]["id"]
    assert rows[0]["created_at"]
    assert gateway.rows("trips") == rows


def test_unique_columns_reject_duplicates_within_and_across_batches() -> None:
    gateway = InMemoryGateway({"trips": [{"id": "t1", "slug": "bonito"}]})

    with pytest.raises(RemoteRejection) as excinfo:
        asyncio.run(gateway.insert("trips", {"slug": "bonito"}))
    assert excinfo.value.code == UNIQUE_VIOLATION

    with pytest.raises(RemoteRejection):
        asyncio.run(gateway.insert("trips", [{"slug": "novo"}, {"slug": "novo"}]))
    assert len(gateway.rows("trips")) == 1


def test_update_cannot_collide_with_another_row() -> None:
    gateway = InMemoryGateway(
        {"trips": [{"id": "t1", "slug": "bonito"}, {"id": "t2", "slug": "jalapao"}]}
    )

    async def scenario() -> None:
        await gateway.update("trips", {"slug": "bonito"}, filters=(eq("id", "t1"),))
        with pytest.raises(RemoteRejection):
            await gateway.update("trips", {"slug": "bonito"}, filters=(eq("id", "t2"),))

    asyncio.run(scenario())
    assert {row["id"]: row["slug"] for row in gateway.rows("trips")} == {
        "t1": "bonito",
        "t2": "jalapao",
    }


def test_select_orders_with_missing_values_last() -> None:
    gateway = InMemoryGateway(
        {"trips": [{"id": "a", "price": 10}, {"id": "b"}, {"id": "c", "price": 30}]}
    )

    rows = asyncio.run(gateway.select("trips", order=Order("price", descending=True), limit=3))

    assert [row["id"] for row in rows] == ["c", "a", "b"]


def test_counter_procedure_is_atomic_increment() -> None:
    gateway = InMemoryGateway({"trips": [{"id": "t1", "views_count": 5}]})

    async def scenario() -> list[int]:
        return await asyncio.gather(
            *(gateway.rpc("increment_trip_views", {"trip_id": "t1"}) for _ in range(10))
        )

    results = asyncio.run(scenario())

    assert sorted(results) == list(range(6, 16))
    assert gateway.rows("trips")[0]["views_count"] == 15


def test_unknown_procedure_and_missing_trip_are_rejected() -> None:
    gateway = InMemoryGateway()

    with pytest.raises(RemoteRejection) as excinfo:
        asyncio.run(gateway.rpc("drop_everything", {}))
    assert excinfo.value.code == "PGRST202"

    with pytest.raises(RemoteRejection):
        asyncio.run(gateway.rpc("increment_trip_sales", {"trip_id": "ghost"}))


def test_writes_fan_out_change_signals_per_table() -> None:
    gateway = InMemoryGateway()
    trips: list[str] = []
    bookings: list[str] = []
    unsubscribe = gateway.subscribe("trips", trips.append)
    gateway.subscribe("bookings", bookings.append)

    async def scenario() -> None:
        await gateway.insert("trips", {"slug": "bonito"})
        await gateway.delete("trips", filters=(eq("slug", "nada"),))
        await gateway.insert("bookings", {"voucher_code": "VS-1"})
        unsubscribe()
        await gateway.insert("trips", {"slug": "jalapao"})

    asyncio.run(scenario())
    assert trips == ["trips"]
    assert bookings == ["bookings"]


def test_fail_next_applies_once() -> None:
    gateway = InMemoryGateway()
    gateway.fail_next("select", "trips")

    async def scenario() -> list:
        with pytest.raises(RemoteRejection):
            await gateway.select("trips")
        return await gateway.select("trips")

    assert asyncio.run(scenario()) == []
    assert gateway.calls == [("select", "trips"), ("select", "trips")]

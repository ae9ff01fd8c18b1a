from __future__ import annotations

import asyncio

import pytest

from tripsync.app.gateway import InMemoryGateway
from tripsync.app.services.container import MarketplaceServices, SyncLifecycle
from tripsync.app.services.kv_store import MemoryClientStore, SQLiteClientStore


class TrackingStore(MemoryClientStore):
    def __init__(self, *, fail_init: bool = False) -> None:
        super().__init__()
        self.fail_init = fail_init
        self.opened = 0
        self.closed = 0

    async def init(self) -> None:
        if self.fail_init:
            raise RuntimeError("disk full")
        self.opened += 1

    async def close(self) -> None:
        self.closed += 1


class BrokenCloseGateway(InMemoryGateway):
    async def close(self) -> None:
        raise RuntimeError("socket stuck")


def test_offline_services_have_no_aggregator(settings) -> None:
    services = MarketplaceServices.create(settings, kv_store=MemoryClientStore())

    assert services.offline
    assert services.gateway is None
    assert services.aggregator is None


def test_client_store_path_selects_sqlite(settings, tmp_path) -> None:
    settings["CLIENT_STORE.path"] = str(tmp_path / "client.sqlite3")

    services = MarketplaceServices.create(settings)

    assert isinstance(services.client_store, SQLiteClientStore)
    assert services.client_store.path == (tmp_path / "client.sqlite3").resolve()


def test_lifecycle_is_idempotent(settings, seeded_gateway) -> None:
    store = TrackingStore()
    services = MarketplaceServices.create(
        settings, gateway=seeded_gateway, kv_store=store
    )
    lifecycle = SyncLifecycle(services)

    async def scenario() -> None:
        await lifecycle.init()
        await lifecycle.init()
        assert lifecycle.started
        assert services.aggregator.active
        await lifecycle.dispose()
        await lifecycle.dispose()

    asyncio.run(scenario())
    assert store.opened == 1
    assert store.closed == 1
    assert not lifecycle.started
    assert not services.aggregator.active
    assert [call for call in seeded_gateway.calls if call == ("select", "trips")] == [
        ("select", "trips")
    ]


def test_failed_startup_rolls_back(settings, seeded_gateway) -> None:
    services = MarketplaceServices.create(
        settings, gateway=seeded_gateway, kv_store=TrackingStore(fail_init=True)
    )
    lifecycle = SyncLifecycle(services)

    with pytest.raises(RuntimeError, match="disk full"):
        asyncio.run(lifecycle.init())

    assert not lifecycle.started
    assert not services.aggregator.active
    assert seeded_gateway.calls == []


def test_dispose_closes_everything_and_reraises_first_error(settings) -> None:
    store = TrackingStore()
    gateway = BrokenCloseGateway()
    services = MarketplaceServices.create(settings, gateway=gateway, kv_store=store)
    lifecycle = SyncLifecycle(services)

    async def scenario() -> None:
        await lifecycle.init()
        await lifecycle.dispose()

    with pytest.raises(RuntimeError, match="socket stuck"):
        asyncio.run(scenario())

    assert store.closed == 1
    assert not lifecycle.started

from __future__ import annotations

import asyncio

from tripsync.app.services.container import SyncLifecycle


def test_login_loads_scoped_data_and_logout_clears_it(
    make_services, seeded_gateway, client_identity
) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> None:
        async with SyncLifecycle(services):
            assert len(services.cache.latest().bookings) == 0

            services.identity.login(client_identity)
            await services.session.wait()

            snapshot = services.cache.latest()
            assert [booking.id for booking in snapshot.bookings] == ["b1"]
            assert snapshot.client("c1").favorites == {"t1", "t3"}
            assert services.session.last_loaded == ("c1", "CLIENT")

            services.identity.logout()
            await services.session.wait()

            snapshot = services.cache.latest()
            assert len(snapshot.bookings) == 0
            assert snapshot.client("c1").favorites == frozenset()
            assert services.session.last_loaded is None

    asyncio.run(scenario())
    assert services.service_pulse.count("session.loaded") == 1


def test_same_identity_is_not_reloaded(make_services, seeded_gateway, client_identity) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> tuple[bool, bool]:
        await services.loader.load_all()
        first = await services.session.set_identity(client_identity)
        second = await services.session.set_identity(client_identity)
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert services.session.generation == 1


def test_switching_identity_replaces_previous_scope(
    make_services, seeded_gateway, client_identity, agency_identity
) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> None:
        await services.loader.load_all()
        await services.session.set_identity(client_identity)
        await services.session.set_identity(agency_identity)

    asyncio.run(scenario())
    snapshot = services.cache.latest()
    # b1 is for t1, which belongs to ag_1 (owned by u_ag_1).
    assert [booking.id for booking in snapshot.bookings] == ["b1"]
    assert services.session.last_loaded == ("u_ag_1", "AGENCY")
    assert services.session.generation == 2


def test_admin_scope_includes_audit_and_activity_logs(
    make_services, seeded_gateway, admin_identity
) -> None:
    seeded_gateway_rows = {
        "audit_logs": [
            {
                "id": "a1",
                "admin_email": "admin@viajastore.com",
                "action": "BROADCAST_SENT",
                "details": "x",
                "created_at": "2024-08-01T10:00:00Z",
            },
            {
                "id": "a2",
                "admin_email": "admin@viajastore.com",
                "action": "DELETE_USER",
                "details": "y",
                "created_at": "2024-08-02T10:00:00Z",
            },
        ]
    }
    for table, rows in seeded_gateway_rows.items():
        asyncio.run(seeded_gateway.insert(table, rows))
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> None:
        await services.loader.load_all()
        await services.session.set_identity(admin_identity)

    asyncio.run(scenario())
    snapshot = services.cache.latest()
    assert [log.id for log in snapshot.audit_logs] == ["a2", "a1"]
    assert [booking.id for booking in snapshot.bookings] == ["b1"]


def test_fetch_superseded_by_logout_is_discarded(
    make_services, seeded_gateway, client_identity
) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)
    seeded_gateway.delay("select", "bookings", 0.05)

    async def scenario() -> bool:
        await services.loader.load_all()
        pending = asyncio.create_task(services.session.set_identity(client_identity))
        await asyncio.sleep(0.01)
        await services.session.set_identity(None)
        return await pending

    assert asyncio.run(scenario()) is False
    snapshot = services.cache.latest()
    assert len(snapshot.bookings) == 0
    assert services.session.discarded == 1
    assert services.session.last_loaded is None


def test_fetch_superseded_by_other_identity_is_discarded(
    make_services, seeded_gateway, client_identity, agency_identity
) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)
    seeded_gateway.delay("select", "favorites", 0.05)

    async def scenario() -> None:
        await services.loader.load_all()
        pending = asyncio.create_task(services.session.set_identity(client_identity))
        await asyncio.sleep(0.01)
        await services.session.set_identity(agency_identity)
        await pending

    asyncio.run(scenario())
    assert services.session.last_loaded == ("u_ag_1", "AGENCY")
    assert services.cache.latest().client("c1").favorites == frozenset()
    assert services.session.discarded == 1


def test_offline_session_uses_fixture_scope(make_services, client_identity) -> None:
    services, _ = make_services(identity=client_identity)

    async def scenario() -> None:
        async with SyncLifecycle(services):
            pass

    asyncio.run(scenario())
    snapshot = services.cache.latest()
    assert snapshot.degraded is True
    assert [booking.id for booking in snapshot.bookings] == ["b1"]
    assert snapshot.client("c1").favorites == {"t1", "t3"}


def test_failed_switch_does_not_keep_previous_identity_scope(
    make_services, seeded_gateway, client_identity, admin_identity
) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> bool:
        await services.loader.load_all()
        await services.session.set_identity(client_identity)
        seeded_gateway.fail_next("select", "bookings")
        return await services.session.set_identity(admin_identity)

    assert asyncio.run(scenario()) is False
    snapshot = services.cache.latest()
    assert len(snapshot.bookings) == 0
    assert snapshot.client("c1").favorites == frozenset()
    assert services.session.last_loaded is None


def test_repeated_identity_while_loading_is_not_refetched(
    make_services, seeded_gateway, client_identity
) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)
    seeded_gateway.delay("select", "bookings", 0.05)

    async def scenario() -> tuple[bool, bool]:
        await services.loader.load_all()
        seeded_gateway.calls.clear()
        first = asyncio.create_task(services.session.set_identity(client_identity))
        await asyncio.sleep(0.01)
        second = await services.session.set_identity(client_identity)
        return await first, second

    assert asyncio.run(scenario()) == (True, False)
    assert seeded_gateway.calls.count(("select", "bookings")) == 1
    assert services.session.discarded == 0
    assert services.session.last_loaded == ("c1", "CLIENT")

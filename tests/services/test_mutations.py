from __future__ import annotations

import asyncio

import pytest

from tripsync.app.gateway import GatewayUnavailable, InMemoryGateway, WriteTimeout
from tripsync.app.models import BookingStatus
from tripsync.app.patches import BookingDraft, ReviewDraft, TripDraft, TripPatch
from tripsync.app.services.container import SyncLifecycle
from tripsync.app.services.mutations import (
    OFFLINE_MESSAGE,
    TIMEOUT_MESSAGE,
    generate_voucher_code,
    toggle_membership,
)
from tripsync.app.services.notifications import Severity


def test_toggle_membership_is_an_involution() -> None:
    members = frozenset({"t1", "t3"})

    assert toggle_membership(members, "t2") == {"t1", "t2", "t3"}
    assert toggle_membership(toggle_membership(members, "t2"), "t2") == members
    assert toggle_membership(members, "t1") == {"t3"}


def test_voucher_codes_are_prefixed_and_distinct() -> None:
    codes = {generate_voucher_code() for _ in range(50)}

    assert len(codes) == 50
    assert all(code.startswith("VS-") and len(code) == 13 for code in codes)


def test_toggle_favorite_applies_locally_and_remotely(
    make_services, seeded_gateway, client_identity
) -> None:
    services, sink = make_services(
        seeded_gateway, identity=client_identity, REFRESH__debounce_seconds=30
    )

    async def scenario() -> None:
        async with SyncLifecycle(services):
            assert services.cache.latest().client("c1").favorites == {"t1", "t3"}

            added = await services.mutations.toggle_favorite("c1", "t2")

            assert added is True
            assert services.cache.latest().client("c1").favorites == {"t1", "t2", "t3"}
            stored = {
                (row["user_id"], row["trip_id"]) for row in seeded_gateway.rows("favorites")
            }
            assert ("c1", "t2") in stored

            removed = await services.mutations.toggle_favorite("c1", "t1")

            assert removed is False
            assert "t1" not in services.cache.latest().client("c1").favorites

    asyncio.run(scenario())
    assert sink.messages(Severity.INFO) == ["Adicionado aos favoritos", "Removido dos favoritos"]


def test_toggle_favorite_rolls_back_on_remote_failure(
    make_services, seeded_gateway, client_identity
) -> None:
    services, sink = make_services(
        seeded_gateway, identity=client_identity, REFRESH__debounce_seconds=30
    )

    async def scenario() -> bool:
        async with SyncLifecycle(services):
            seeded_gateway.fail_next("insert", "favorites")
            before = services.cache.latest().client("c1").favorites
            result = await services.mutations.toggle_favorite("c1", "t2")
            assert services.cache.latest().client("c1").favorites == before
            return result

    assert asyncio.run(scenario()) is False
    # The optimistic notice still went out before the failure.
    assert sink.messages(Severity.INFO) == ["Adicionado aos favoritos"]
    assert sink.messages(Severity.ERROR) == ["Erro ao atualizar favoritos: simulated failure"]
    assert services.service_pulse.count("mutation.failed") == 1


def test_duplicate_favorite_insert_counts_as_success(make_services, seeded_gateway) -> None:
    gateway = InMemoryGateway(
        {"favorites": [{"user_id": "c1", "trip_id": "t2"}], "trips": seeded_gateway.rows("trips")}
    )
    services, sink = make_services(gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> bool:
        await services.loader.load_all()
        return await services.mutations.toggle_favorite("c1", "t2")

    assert asyncio.run(scenario()) is True
    assert sink.messages(Severity.ERROR) == []


def test_activity_log_failure_does_not_fail_the_write(
    make_services, seeded_gateway, client_identity
) -> None:
    services, sink = make_services(
        seeded_gateway, identity=client_identity, REFRESH__debounce_seconds=30
    )

    async def scenario() -> bool:
        async with SyncLifecycle(services):
            seeded_gateway.fail_next("insert", "activity_logs")
            return await services.mutations.toggle_favorite("c1", "t2")

    assert asyncio.run(scenario()) is True
    assert sink.messages(Severity.ERROR) == []
    assert seeded_gateway.rows("activity_logs") == []


def test_offline_writes_are_refused(make_services) -> None:
    services, sink = make_services()

    async def scenario() -> None:
        await services.loader.load_all()
        with pytest.raises(GatewayUnavailable):
            await services.mutations.toggle_favorite("c1", "t2")

    asyncio.run(scenario())
    assert sink.messages() == [OFFLINE_MESSAGE]
    assert services.cache.latest().client("c1").favorites == {"t1", "t3"}


def test_write_timeout_reports_and_raises(make_services, seeded_gateway) -> None:
    services, sink = make_services(
        seeded_gateway, MUTATIONS__write_timeout=0.05, REFRESH__debounce_seconds=30
    )
    seeded_gateway.delay("insert", "trips", 1.0)

    async def scenario() -> None:
        await services.loader.load_all()
        with pytest.raises(WriteTimeout):
            await services.mutations.create_trip(
                TripDraft(agency_id="ag_1", title="Serra Gaúcha", destination="Gramado, RS", price=990)
            )

    asyncio.run(scenario())
    assert sink.messages(Severity.ERROR) == [TIMEOUT_MESSAGE]
    assert all(trip.title != "Serra Gaúcha" for trip in services.cache.latest().trips)


def test_create_trip_generates_unique_slug(make_services, seeded_gateway) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario():
        await services.loader.load_all()
        draft = TripDraft(
            agency_id="ag_1",
            title="Maravilhas de Foz do Iguaçu",
            destination="Foz do Iguaçu, PR",
            price=1990,
            patch=TripPatch(tags=("Cataratas",)),
        )
        return await services.mutations.create_trip(draft, images=("https://img/1.jpg",))

    trip = asyncio.run(scenario())

    assert trip.slug == "maravilhas-de-foz-do-iguacu-1"
    assert trip.images == ("https://img/1.jpg",)
    assert services.cache.latest().trip_by_slug(trip.slug) == trip
    assert [row["image_url"] for row in seeded_gateway.rows("trip_images")] == ["https://img/1.jpg"]


def test_increment_views_rolls_back_when_procedure_fails(make_services, seeded_gateway) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> tuple[int, int]:
        await services.loader.load_all()
        await services.mutations.increment_trip_views("t1")
        after_success = services.cache.latest().trip("t1").views
        seeded_gateway.fail_next("rpc", "increment_trip_views")
        await services.mutations.increment_trip_views("t1")
        return after_success, services.cache.latest().trip("t1").views

    after_success, after_failure = asyncio.run(scenario())
    assert after_success == 321
    assert after_failure == 321


def test_create_booking_bumps_sales_and_generates_voucher(
    make_services, seeded_gateway, client_identity
) -> None:
    services, _ = make_services(
        seeded_gateway, identity=client_identity, REFRESH__debounce_seconds=30
    )

    async def scenario():
        async with SyncLifecycle(services):
            booking = await services.mutations.create_booking(
                BookingDraft(trip_id="t2", client_id="c1", total_price=2490)
            )
            return booking, services.cache.latest()

    booking, snapshot = asyncio.run(scenario())

    assert booking.status is BookingStatus.PENDING
    assert booking.voucher_code.startswith("VS-")
    assert snapshot.bookings.get(booking.id) == booking
    assert snapshot.trip("t2").sales == 10
    assert [row["action_type"] for row in seeded_gateway.rows("activity_logs")] == [
        "BOOKING_CREATED"
    ]


def test_stalled_activity_log_does_not_hold_the_booking(
    make_services, seeded_gateway, client_identity
) -> None:
    services, _ = make_services(
        seeded_gateway,
        identity=client_identity,
        REFRESH__debounce_seconds=30,
        MUTATIONS__write_timeout=0.1,
    )
    seeded_gateway.delay("insert", "activity_logs", 5)

    async def scenario():
        async with SyncLifecycle(services):
            return await asyncio.wait_for(
                services.mutations.create_booking(
                    BookingDraft(trip_id="t2", client_id="c1", total_price=2490)
                ),
                timeout=2,
            )

    booking = asyncio.run(scenario())

    assert booking.trip_id == "t2"
    assert seeded_gateway.rows("activity_logs") == []


def test_submit_review_keeps_one_review_per_agency_and_client(
    make_services, seeded_gateway, client_identity
) -> None:
    services, _ = make_services(
        seeded_gateway, identity=client_identity, REFRESH__debounce_seconds=30
    )

    async def scenario() -> None:
        async with SyncLifecycle(services):
            await services.mutations.submit_review(
                ReviewDraft(agency_id="ag_1", client_id="c1", rating=3, comment="Ok")
            )
            await services.mutations.submit_review(
                ReviewDraft(agency_id="ag_2", client_id="c1", rating=4, comment="Boa")
            )

    asyncio.run(scenario())

    rows = seeded_gateway.rows("agency_reviews")
    pairs = [(row["agency_id"], row["client_id"]) for row in rows]
    assert sorted(pairs) == [("ag_1", "c1"), ("ag_2", "c1")]
    updated = next(row for row in rows if row["agency_id"] == "ag_1")
    assert updated["id"] == "r1"
    assert updated["rating"] == 3
    assert services.cache.latest().reviews.get("r1").comment == "Ok"


def test_delete_trip_reloads_trip_collection(make_services, seeded_gateway) -> None:
    services, _ = make_services(seeded_gateway, REFRESH__debounce_seconds=30)

    async def scenario() -> bool:
        await services.loader.load_all()
        return await services.mutations.delete_trip("t3")

    assert asyncio.run(scenario()) is True
    assert services.cache.latest().trip("t3") is None
    assert services.cache.latest().trip("t1") is not None


def test_agency_theme_is_saved_once_per_agency(
    make_services, seeded_gateway, agency_identity
) -> None:
    services, sink = make_services(
        seeded_gateway, identity=agency_identity, REFRESH__debounce_seconds=30
    )
    palette = {"primary": "#0f766e", "secondary": "#f59e0b", "background": "#fff", "text": "#111"}

    async def scenario():
        missing = await services.mutations.get_agency_theme("ag_1")
        first = await services.mutations.save_agency_theme("ag_1", palette)
        second = await services.mutations.save_agency_theme(
            "ag_1", {**palette, "primary": "#1d4ed8"}
        )
        rejected = await services.mutations.save_agency_theme("ag_1", {"primary": "#000"})
        theme = await services.mutations.get_agency_theme("ag_1")
        return missing, first, second, rejected, theme

    missing, first, second, rejected, theme = asyncio.run(scenario())

    assert missing is None
    assert (first, second, rejected) == (True, True, False)
    assert len(seeded_gateway.rows("agency_themes")) == 1
    assert theme.agency_id == "ag_1"
    assert theme.colors["primary"] == "#1d4ed8"
    assert sink.messages(Severity.ERROR) == [
        "Erro ao salvar tema: missing secondary, background, text"
    ]

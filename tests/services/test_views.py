from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from tripsync.app.gateway import InMemoryGateway
from tripsync.app.models import Booking, BookingStatus, PassengerDetail
from tripsync.app.services.container import SyncLifecycle
from tripsync.app.services.sync_config import ViewConfig
from tripsync.app.services.views import DerivedViewResolver
from tripsync.app.store.cache import EntityKind


@pytest.fixture
def offline_services(make_services, client_identity):
    services, _ = make_services(identity=client_identity)

    async def start() -> None:
        async with SyncLifecycle(services):
            pass

    asyncio.run(start())
    return services


def test_review_view_joins_names(offline_services) -> None:
    view = offline_services.views.reviews_for_agency("ag_1")[0]

    assert view.client_name == "João Viajante"
    assert view.agency_name == "Trilhas Brasil Turismo"
    assert view.trip_title == "Maravilhas de Foz do Iguaçu"


def test_deleted_client_falls_back_to_placeholder_label(offline_services) -> None:
    offline_services.cache.writer("mutations").update(
        EntityKind.CLIENTS, "c1", lambda c: replace(c, deleted_at="2024-08-01T00:00:00Z")
    )

    view = offline_services.views.reviews_by_client("c1")[0]

    assert view.client_name == ViewConfig().fallback_client_name
    assert view.client_avatar is None


def test_agency_stats_and_dashboard(offline_services) -> None:
    stats = offline_services.views.agency_stats("ag_1")

    assert stats.total_views == 470
    assert stats.total_sales == 1
    assert stats.total_revenue == 1850
    assert stats.conversion_rate == pytest.approx(100 / 470)

    dashboard = offline_services.views.agency_dashboard("u_ag_1")
    assert [trip.id for trip in dashboard.trips] == ["t1", "t3"]
    assert [view.booking.id for view in dashboard.bookings] == ["b1"]
    assert offline_services.views.agency_dashboard("nobody") is None


def test_agency_without_views_has_zero_conversion(offline_services) -> None:
    assert offline_services.views.agency_stats("ag_unknown").conversion_rate == 0.0


def test_has_purchased_requires_confirmed_booking(offline_services) -> None:
    views = offline_services.views

    assert views.has_purchased("c1", "t1")
    assert not views.has_purchased("c1", "t2")

    offline_services.cache.writer("mutations").update(
        EntityKind.BOOKINGS, "b1", lambda b: replace(b, status=BookingStatus.CANCELLED)
    )
    assert not views.has_purchased("c1", "t1")


def test_booking_view_for_missing_trip_is_unresolved(offline_services) -> None:
    orphan = Booking(id="b9", trip_id="gone", client_id="c1")

    view = offline_services.views.booking_view(orphan)

    assert not view.resolved
    assert view.client.id == "c1"


def test_user_stats(offline_services) -> None:
    stats = offline_services.views.user_stats(["c1", "ghost"])

    assert stats[0].user_name == "João Viajante"
    assert stats[0].total_spent == 1850
    assert stats[0].total_reviews == 1
    assert stats[1].user_name == "Usuário Desconhecido"
    assert stats[1].total_bookings == 0


def test_voucher_falls_back_to_lead_passenger(offline_services) -> None:
    voucher = asyncio.run(offline_services.views.voucher("b1"))

    assert voucher.trip.id == "t1"
    assert voucher.agency.name == "Trilhas Brasil Turismo"
    assert voucher.passengers == (
        PassengerDetail(name="João Viajante", document="123.456.789-00", phone="(11) 99999-9999"),
    )
    assert asyncio.run(offline_services.views.voucher("missing")) is None


def _resolver(offline_services, gateway: InMemoryGateway) -> DerivedViewResolver:
    return DerivedViewResolver(offline_services.cache.latest, gateway=gateway)


def test_passengers_are_fetched_once_and_cached(offline_services) -> None:
    gateway = InMemoryGateway(
        {
            "booking_passengers": [
                {"booking_id": "b1", "full_name": "Maria", "passenger_index": 1},
                {"booking_id": "b1", "full_name": "João Viajante", "passenger_index": 0},
            ]
        }
    )
    resolver = _resolver(offline_services, gateway)
    booking = offline_services.cache.latest().bookings.get("b1")

    async def scenario():
        first = await resolver.passengers(booking)
        second = await resolver.passengers(booking)
        return first, second

    first, second = asyncio.run(scenario())

    assert [p.name for p in first] == ["João Viajante", "Maria"]
    assert second == first
    assert gateway.calls.count(("select", "booking_passengers")) == 1


def test_passenger_fetch_failure_uses_lead_passenger(offline_services) -> None:
    gateway = InMemoryGateway()
    gateway.fail_next("select", "booking_passengers")
    resolver = _resolver(offline_services, gateway)
    booking = offline_services.cache.latest().bookings.get("b1")

    passengers = asyncio.run(resolver.passengers(booking))

    assert [p.name for p in passengers] == ["João Viajante"]


def test_embedded_passenger_details_win(offline_services) -> None:
    resolver = _resolver(offline_services, InMemoryGateway())
    booking = replace(
        offline_services.cache.latest().bookings.get("b1"),
        passenger_details=(PassengerDetail(name="Embutido"),),
    )

    passengers = asyncio.run(resolver.passengers(booking))

    assert [p.name for p in passengers] == ["Embutido"]

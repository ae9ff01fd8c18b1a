from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tripsync.app.models import (
    BookingStatus,
    ClientStatus,
    SubscriptionPlan,
    SubscriptionStatus,
)
from tripsync.app.patches import PlatformSettingsPatch, TripPatch
from tripsync.app.services.notifications import Severity


@pytest.fixture
def loaded(make_services, seeded_gateway, admin_identity):
    services, sink = make_services(
        seeded_gateway, identity=admin_identity, REFRESH__debounce_seconds=30
    )
    asyncio.run(services.loader.load_all())
    return services, sink


def test_renaming_a_trip_reslugs_without_colliding(loaded, seeded_gateway) -> None:
    services, _ = loaded

    trip = asyncio.run(
        services.mutations.update_trip(
            "t3",
            TripPatch(title="Maravilhas de Foz do Iguaçu"),
            images=("https://img/a.jpg", "https://img/b.jpg"),
        )
    )

    assert trip.slug == "maravilhas-de-foz-do-iguacu-1"
    assert trip.images == ("https://img/a.jpg", "https://img/b.jpg")
    assert services.cache.latest().trip_by_slug("maravilhas-de-foz-do-iguacu").id == "t1"
    stored = [
        row["image_url"] for row in seeded_gateway.rows("trip_images") if row["trip_id"] == "t3"
    ]
    assert stored == ["https://img/a.jpg", "https://img/b.jpg"]


def test_toggle_trip_active(loaded) -> None:
    services, sink = loaded

    trip = asyncio.run(services.mutations.toggle_trip_active("t1"))

    assert trip.is_active is False
    assert services.cache.latest().trip("t1").is_active is False
    assert sink.messages(Severity.SUCCESS) == ["Viagem pausada."]


def test_change_plan_activates_for_one_period(loaded) -> None:
    services, _ = loaded
    before = datetime.now(timezone.utc)

    agency = asyncio.run(services.mutations.change_agency_plan("ag_2", SubscriptionPlan.PREMIUM))

    assert agency.is_active
    assert agency.subscription.status is SubscriptionStatus.ACTIVE
    assert agency.subscription.plan is SubscriptionPlan.PREMIUM
    expires = datetime.fromisoformat(agency.subscription.expires_at)
    assert before + timedelta(days=29) < expires < before + timedelta(days=31)


def test_toggle_agency_status(loaded) -> None:
    services, sink = loaded

    agency = asyncio.run(services.mutations.toggle_agency_status("ag_1"))

    assert agency.subscription.status is SubscriptionStatus.INACTIVE
    assert not agency.is_active
    assert sink.messages(Severity.SUCCESS) == ["Agência inativada."]
    assert asyncio.run(services.mutations.toggle_agency_status("ag_missing")) is None


def test_soft_delete_and_restore(loaded) -> None:
    services, sink = loaded

    assert asyncio.run(services.mutations.soft_delete("c1", "profiles")) is True
    assert services.cache.latest().client("c1").is_deleted

    assert asyncio.run(services.mutations.restore("c1", "profiles")) is True
    assert not services.cache.latest().client("c1").is_deleted
    assert sink.messages(Severity.SUCCESS) == [
        "Usuário movido(a) para a lixeira.",
        "Usuário restaurado(a).",
    ]

    with pytest.raises(ValueError):
        asyncio.run(services.mutations.soft_delete("t1", "trips"))


def test_bulk_status_updates(loaded) -> None:
    services, _ = loaded

    clients = asyncio.run(
        services.mutations.update_clients_status(["c1"], ClientStatus.SUSPENDED)
    )
    agencies = asyncio.run(
        services.mutations.update_agencies_status(["ag_1", "ag_2"], SubscriptionStatus.INACTIVE)
    )

    assert [client.status for client in clients] == [ClientStatus.SUSPENDED]
    assert sorted(agency.id for agency in agencies) == ["ag_1", "ag_2"]
    assert all(not agency.is_active for agency in services.cache.latest().agencies)
    assert asyncio.run(services.mutations.update_clients_status([], ClientStatus.ACTIVE)) == []


def test_booking_status_update(loaded) -> None:
    services, _ = loaded

    booking = asyncio.run(services.mutations.update_booking_status("b1", BookingStatus.CANCELLED))

    assert booking.status is BookingStatus.CANCELLED
    assert not services.views.has_purchased("c1", "t1")


def test_platform_settings_are_a_singleton(loaded, seeded_gateway) -> None:
    services, _ = loaded

    updated = asyncio.run(
        services.mutations.update_platform_settings(
            PlatformSettingsPatch(maintenance_mode=True, support_email="ajuda@viajastore.com")
        )
    )

    assert updated.id == 1
    assert updated.maintenance_mode is True
    assert services.cache.latest().platform_settings == updated
    assert len(seeded_gateway.rows("platform_settings")) == 1
    assert [row["action"] for row in seeded_gateway.rows("audit_logs")] == [
        "PLATFORM_SETTINGS_UPDATED"
    ]


def test_password_reset_and_avatar_upload(loaded, seeded_gateway) -> None:
    services, _ = loaded

    sent = asyncio.run(services.mutations.send_password_reset("cliente@viajastore.com"))
    url = asyncio.run(services.mutations.update_user_avatar("c1", b"png-bytes", "foto.png"))

    assert sent is True
    assert seeded_gateway.password_resets == ["cliente@viajastore.com"]
    assert url.startswith("memory://store/storage/avatars/c1-") and url.endswith(".png")
    assert services.cache.latest().client("c1").avatar_url == url
    assert [row["action"] for row in seeded_gateway.rows("audit_logs")] == [
        "PASSWORD_RESET_SENT",
        "USER_AVATAR_UPDATED",
    ]


def test_avatar_upload_is_admin_only(make_services, seeded_gateway, client_identity) -> None:
    services, _ = make_services(
        seeded_gateway, identity=client_identity, REFRESH__debounce_seconds=30
    )

    assert asyncio.run(services.mutations.update_user_avatar("c1", b"x", "a.png")) is None
    assert seeded_gateway.calls == []

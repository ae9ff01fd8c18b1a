"""Read-time joins over the entity cache.

Records only keep foreign identities; names, logos and titles are resolved
against the snapshot on every read, with fixed fallback labels for
references that no longer resolve (e.g. a soft-deleted client).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from cachetools import TTLCache

from tripsync.app.gateway import GatewayError, Order, RemoteStoreGateway, eq
from tripsync.app.models import (
    Agency,
    Booking,
    BookingStatus,
    Client,
    PassengerDetail,
    Review,
    Trip,
)
from tripsync.app.services.sync_config import ViewConfig
from tripsync.app.store.cache import CacheSnapshot, SnapshotAccessor

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ReviewView:
    review: Review
    client_name: str
    client_avatar: str | None
    agency_name: str
    agency_logo: str | None
    trip_title: str | None


@dataclass(slots=True, frozen=True)
class BookingView:
    """A booking with whatever trip, agency and client still resolve."""

    booking: Booking
    trip: Trip | None
    agency: Agency | None
    client: Client | None

    @property
    def resolved(self) -> bool:
        return self.trip is not None


@dataclass(slots=True, frozen=True)
class AgencyStats:
    total_revenue: float
    total_views: int
    total_sales: int
    conversion_rate: float


@dataclass(slots=True, frozen=True)
class AgencyDashboard:
    agency: Agency
    trips: list[Trip]
    bookings: list[BookingView]
    reviews: list[ReviewView]
    stats: AgencyStats


@dataclass(slots=True, frozen=True)
class UserStats:
    user_id: str
    user_name: str
    total_spent: float
    total_bookings: int
    total_reviews: int


@dataclass(slots=True, frozen=True)
class VoucherGraph:
    """Everything the voucher renderer needs for one booking."""

    booking: Booking
    trip: Trip
    agency: Agency | None
    client: Client | None
    passengers: tuple[PassengerDetail, ...]


def _live_client(snapshot: CacheSnapshot, client_id: str | None) -> Client | None:
    client = snapshot.client(client_id)
    if client is None or client.is_deleted:
        return None
    return client


def _live_agency(snapshot: CacheSnapshot, agency_id: str | None) -> Agency | None:
    agency = snapshot.agency(agency_id)
    if agency is None or agency.is_deleted:
        return None
    return agency


class DerivedViewResolver:
    def __init__(
        self,
        snapshot: SnapshotAccessor,
        *,
        gateway: RemoteStoreGateway | None = None,
        config: ViewConfig | None = None,
    ) -> None:
        self._snapshot = snapshot
        self._gateway = gateway
        self._config = config or ViewConfig()
        self._passengers: TTLCache[str, tuple[PassengerDetail, ...]] = TTLCache(
            maxsize=self._config.passenger_cache_size,
            ttl=self._config.passenger_cache_ttl,
        )

    # -- reviews ------------------------------------------------------------

    def review_view(self, review: Review, snapshot: CacheSnapshot | None = None) -> ReviewView:
        snap = snapshot or self._snapshot()
        client = _live_client(snap, review.client_id)
        agency = _live_agency(snap, review.agency_id)
        trip_title: str | None = None
        if review.trip_id:
            trip = snap.trip(review.trip_id)
            trip_title = trip.title if trip else self._config.fallback_trip_title
        return ReviewView(
            review=review,
            client_name=client.name if client else self._config.fallback_client_name,
            client_avatar=client.avatar_url if client else None,
            agency_name=agency.name if agency else self._config.fallback_agency_name,
            agency_logo=agency.logo_url if agency else None,
            trip_title=trip_title,
        )

    def review_views(self, reviews: Iterable[Review]) -> list[ReviewView]:
        snap = self._snapshot()
        return [self.review_view(review, snap) for review in reviews]

    def reviews_for_agency(self, agency_id: str) -> list[ReviewView]:
        snap = self._snapshot()
        return [
            self.review_view(review, snap)
            for review in snap.reviews
            if review.agency_id == agency_id
        ]

    def reviews_by_client(self, client_id: str) -> list[ReviewView]:
        snap = self._snapshot()
        return [
            self.review_view(review, snap)
            for review in snap.reviews
            if review.client_id == client_id
        ]

    def reviews_for_trip(self, trip_id: str) -> list[ReviewView]:
        snap = self._snapshot()
        return [
            self.review_view(review, snap)
            for review in snap.reviews
            if review.trip_id == trip_id
        ]

    # -- bookings -----------------------------------------------------------

    def booking_view(self, booking: Booking, snapshot: CacheSnapshot | None = None) -> BookingView:
        snap = snapshot or self._snapshot()
        trip = snap.trip(booking.trip_id)
        agency = snap.agency(trip.agency_id) if trip else None
        return BookingView(
            booking=booking,
            trip=trip,
            agency=agency,
            client=snap.client(booking.client_id),
        )

    def bookings(self, bookings: Iterable[Booking] | None = None) -> list[BookingView]:
        snap = self._snapshot()
        source = snap.bookings if bookings is None else bookings
        return [self.booking_view(booking, snap) for booking in source]

    def client_bookings(self, client_id: str) -> list[BookingView]:
        snap = self._snapshot()
        return [
            self.booking_view(booking, snap)
            for booking in snap.bookings
            if booking.client_id == client_id
        ]

    def has_purchased(self, user_id: str, trip_id: str) -> bool:
        return any(
            booking.client_id == user_id
            and booking.trip_id == trip_id
            and booking.status is BookingStatus.CONFIRMED
            for booking in self._snapshot().bookings
        )

    # -- agencies -----------------------------------------------------------

    def agency_bookings(self, agency_id: str, snapshot: CacheSnapshot | None = None) -> list[BookingView]:
        snap = snapshot or self._snapshot()
        owned = {trip.id for trip in snap.agency_trips(agency_id)}
        return [
            self.booking_view(booking, snap)
            for booking in snap.bookings
            if booking.trip_id in owned
        ]

    def agency_stats(self, agency_id: str, snapshot: CacheSnapshot | None = None) -> AgencyStats:
        snap = snapshot or self._snapshot()
        total_views = sum(trip.views for trip in snap.agency_trips(agency_id))
        confirmed = [
            view.booking
            for view in self.agency_bookings(agency_id, snap)
            if view.booking.status is BookingStatus.CONFIRMED
        ]
        total_sales = len(confirmed)
        return AgencyStats(
            total_revenue=sum(booking.total_price for booking in confirmed),
            total_views=total_views,
            total_sales=total_sales,
            conversion_rate=(total_sales / total_views) * 100 if total_views > 0 else 0.0,
        )

    def agency_dashboard(self, user_id: str) -> AgencyDashboard | None:
        """Trips, bookings, reviews and stats for the agency owned by ``user_id``."""

        snap = self._snapshot()
        agency = snap.agency_by_user(user_id)
        if agency is None:
            return None
        return AgencyDashboard(
            agency=agency,
            trips=snap.agency_trips(agency.agency_id),
            bookings=self.agency_bookings(agency.agency_id, snap),
            reviews=[
                self.review_view(review, snap)
                for review in snap.reviews
                if review.agency_id == agency.agency_id
            ],
            stats=self.agency_stats(agency.agency_id, snap),
        )

    def user_stats(self, user_ids: Sequence[str]) -> list[UserStats]:
        snap = self._snapshot()
        stats: list[UserStats] = []
        for user_id in user_ids:
            client = snap.client(user_id)
            bookings = [b for b in snap.bookings if b.client_id == user_id]
            stats.append(
                UserStats(
                    user_id=user_id,
                    user_name=client.name if client else "Usuário Desconhecido",
                    total_spent=sum(b.total_price for b in bookings),
                    total_bookings=len(bookings),
                    total_reviews=sum(1 for r in snap.reviews if r.client_id == user_id),
                )
            )
        return stats

    # -- vouchers -----------------------------------------------------------

    async def voucher(self, booking_id: str) -> VoucherGraph | None:
        """Resolve the full voucher graph, fetching passengers lazily."""

        snap = self._snapshot()
        booking = snap.bookings.get(booking_id)
        if booking is None:
            return None
        trip = snap.trip(booking.trip_id)
        if trip is None:
            logger.debug("Voucher %s: trip %s not cached", booking_id, booking.trip_id)
            return None
        passengers = await self.passengers(booking)
        # Passenger fetch may have suspended; resolve joins from the fresh snapshot.
        snap = self._snapshot()
        return VoucherGraph(
            booking=booking,
            trip=snap.trip(trip.id) or trip,
            agency=snap.agency(trip.agency_id),
            client=snap.client(booking.client_id),
            passengers=passengers,
        )

    async def passengers(self, booking: Booking) -> tuple[PassengerDetail, ...]:
        if booking.passenger_details:
            return booking.passenger_details
        cached = self._passengers.get(booking.id)
        if cached is not None:
            return cached
        if self._gateway is not None:
            try:
                rows = await self._gateway.select(
                    "booking_passengers",
                    filters=(eq("booking_id", booking.id),),
                    order=Order("passenger_index"),
                )
            except GatewayError as exc:
                logger.warning("Passenger fetch for %s failed: %s", booking.id, exc)
            else:
                if rows:
                    details = tuple(PassengerDetail.from_row(row) for row in rows)
                    self._passengers[booking.id] = details
                    return details
        return self._lead_passenger(booking)

    def _lead_passenger(self, booking: Booking) -> tuple[PassengerDetail, ...]:
        client = self._snapshot().client(booking.client_id)
        name = client.name if client else self._config.fallback_client_name
        return (
            PassengerDetail(
                name=name,
                document=client.cpf if client else None,
                phone=client.phone if client else None,
            ),
        )

    def forget_passengers(self, booking_id: str | None = None) -> None:
        if booking_id is None:
            self._passengers.clear()
        else:
            self._passengers.pop(booking_id, None)


__all__ = [
    "AgencyDashboard",
    "AgencyStats",
    "BookingView",
    "DerivedViewResolver",
    "ReviewView",
    "UserStats",
    "VoucherGraph",
]

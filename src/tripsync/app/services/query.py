"""In-memory paginated trip search over a cache snapshot.

Pipeline, applied in order:

1. base: active and not soft-deleted
2. text: diacritic- and case-folded substring of title, destination or a tag
3. structured: category, owning agency, required tags, inclusive price bounds
4. dates: both bounds -> overlap; start only -> ``start >= qstart``;
   end only -> ``end <= qend``
5. capacity: dropped only when the trip declares a ceiling below ``guests``
6. geo radius: planar distance; trips without coordinates always pass
7. sort: stable, so ties keep snapshot order
8. page: ``[(page - 1) * limit : page * limit]`` plus the pre-slice count
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Iterable, Sequence

from tripsync.app.models import Trip, TripCategory, parse_date
from tripsync.app.services.sync_config import QueryConfig
from tripsync.app.store.cache import SnapshotAccessor, is_public_trip
from tripsync.app.util.text import fold_text

KM_PER_DEGREE_LAT = 110.574
KM_PER_DEGREE_LNG = 111.320


class SortStrategy(str, Enum):
    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    DATE_ASC = "date_asc"
    RATING_DESC = "rating"


@dataclass(slots=True, frozen=True)
class TripSearchQuery:
    text: str | None = None
    category: TripCategory | None = None
    agency_id: str | None = None
    tags: tuple[str, ...] = ()
    min_price: float | None = None
    max_price: float | None = None
    start_date: date | None = None
    end_date: date | None = None
    guests: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    radius_km: float | None = None
    sort: SortStrategy = SortStrategy.RELEVANCE
    page: int = 1
    limit: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start_date", parse_date(self.start_date))
        object.__setattr__(self, "end_date", parse_date(self.end_date))
        if self.category is not None and not isinstance(self.category, TripCategory):
            object.__setattr__(self, "category", TripCategory(str(self.category).upper()))
        if not isinstance(self.sort, SortStrategy):
            object.__setattr__(self, "sort", SortStrategy(str(self.sort)))
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def has_origin(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True, frozen=True)
class SearchResult:
    data: list[Trip] = field(default_factory=list)
    count: int = 0
    page: int = 1
    limit: int = 12

    @property
    def pages(self) -> int:
        return math.ceil(self.count / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


TripPredicate = Callable[[Trip], bool]


def planar_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Equirectangular approximation; fine for the radii a search uses."""

    mean_lat = math.radians((lat1 + lat2) / 2)
    dx = (lng2 - lng1) * KM_PER_DEGREE_LNG * math.cos(mean_lat)
    dy = (lat2 - lat1) * KM_PER_DEGREE_LAT
    return math.hypot(dx, dy)


def relevance(trip: Trip) -> int:
    return trip.views + trip.sales * 10


def matches_text(trip: Trip, needle: str) -> bool:
    if needle in fold_text(trip.title) or needle in fold_text(trip.destination):
        return True
    return any(needle in fold_text(tag) for tag in trip.tags)


def matches_dates(trip: Trip, start: date | None, end: date | None) -> bool:
    if start is None and end is None:
        return True
    if start is not None and end is not None:
        if trip.start_date is None or trip.end_date is None:
            return False
        return trip.start_date <= end and trip.end_date >= start
    if start is not None:
        return trip.start_date is not None and trip.start_date >= start
    return trip.end_date is not None and trip.end_date <= end


def _predicates(query: TripSearchQuery, default_radius_km: float) -> list[TripPredicate]:
    predicates: list[TripPredicate] = [is_public_trip]

    needle = fold_text(query.text or "")
    if needle:
        predicates.append(lambda trip: matches_text(trip, needle))

    if query.category is not None:
        category = query.category
        predicates.append(lambda trip: trip.category is category)
    if query.agency_id:
        agency_id = query.agency_id
        predicates.append(lambda trip: trip.agency_id == agency_id)
    if query.tags:
        wanted = {fold_text(tag) for tag in query.tags if tag}
        predicates.append(lambda trip: wanted <= {fold_text(tag) for tag in trip.tags})
    if query.min_price is not None:
        low = query.min_price
        predicates.append(lambda trip: trip.price >= low)
    if query.max_price is not None:
        high = query.max_price
        predicates.append(lambda trip: trip.price <= high)

    if query.start_date is not None or query.end_date is not None:
        start, end = query.start_date, query.end_date
        predicates.append(lambda trip: matches_dates(trip, start, end))

    if query.guests is not None:
        guests = query.guests
        predicates.append(lambda trip: trip.max_guests is None or trip.max_guests >= guests)

    if query.has_origin:
        lat, lng = float(query.latitude), float(query.longitude)  # type: ignore[arg-type]
        radius = query.radius_km if query.radius_km is not None else default_radius_km
        predicates.append(
            lambda trip: not trip.has_coordinates
            or planar_distance_km(lat, lng, trip.latitude, trip.longitude) <= radius  # type: ignore[arg-type]
        )
    return predicates


def sort_trips(trips: Sequence[Trip], strategy: SortStrategy) -> list[Trip]:
    if strategy is SortStrategy.PRICE_ASC:
        return sorted(trips, key=lambda trip: trip.price)
    if strategy is SortStrategy.PRICE_DESC:
        return sorted(trips, key=lambda trip: -trip.price)
    if strategy is SortStrategy.DATE_ASC:
        return sorted(
            trips,
            key=lambda trip: (trip.start_date is None, trip.start_date or date.min),
        )
    if strategy is SortStrategy.RATING_DESC:
        return sorted(trips, key=lambda trip: -trip.rating)
    return sorted(trips, key=lambda trip: -relevance(trip))


class QueryEngine:
    """Run :class:`TripSearchQuery` against the freshest snapshot."""

    def __init__(self, snapshot: SnapshotAccessor, config: QueryConfig | None = None) -> None:
        self._snapshot = snapshot
        self._config = config or QueryConfig()

    def filter(self, query: TripSearchQuery, trips: Iterable[Trip] | None = None) -> list[Trip]:
        source = self._snapshot().trips if trips is None else trips
        predicates = _predicates(query, self._config.default_radius_km)
        return [trip for trip in source if all(check(trip) for check in predicates)]

    def search(self, query: TripSearchQuery) -> SearchResult:
        matched = sort_trips(self.filter(query), query.sort)
        limit = self._limit(query.limit)
        page = max(int(query.page or 1), 1)
        start = (page - 1) * limit
        return SearchResult(
            data=matched[start : start + limit],
            count=len(matched),
            page=page,
            limit=limit,
        )

    def _limit(self, requested: int | None) -> int:
        if requested is None or requested < 1:
            return self._config.default_limit
        return min(int(requested), self._config.max_limit)


__all__ = [
    "QueryEngine",
    "SearchResult",
    "SortStrategy",
    "TripSearchQuery",
    "matches_dates",
    "planar_distance_km",
    "relevance",
    "sort_trips",
]

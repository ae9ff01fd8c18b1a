from __future__ import annotations

from datetime import date

import pytest

from tripsync.app.models import Trip, TripCategory
from tripsync.app.services.query import (
    QueryEngine,
    SortStrategy,
    TripSearchQuery,
    matches_dates,
    planar_distance_km,
    relevance,
)
from tripsync.app.services.sync_config import QueryConfig
from tripsync.app.store.cache import EntityCache, EntityKind


def _trip(trip_id: str, **kwargs) -> Trip:
    values = {
        "agency_id": "ag_1",
        "title": f"Viagem {trip_id}",
        "slug": f"viagem-{trip_id}",
        "destination": "Brasil",
        "price": 1000.0,
    }
    values.update(kwargs)
    return Trip(id=trip_id, **values)


def _engine(trips: list[Trip], **config) -> QueryEngine:
    cache = EntityCache()
    cache.writer("loader").replace({EntityKind.TRIPS: trips})
    return QueryEngine(cache.latest, QueryConfig(**config))


@pytest.fixture
def catalogue() -> list[Trip]:
    return [
        _trip(
            "t1",
            title="Maravilhas de Foz do Iguaçu",
            destination="Foz do Iguaçu, PR",
            price=1850,
            category=TripCategory.NATUREZA,
            tags=("Cataratas", "Natureza"),
            start_date=date(2024, 9, 10),
            end_date=date(2024, 9, 15),
            views=320,
            sales=14,
            rating=4.9,
            latitude=-25.6953,
            longitude=-54.4367,
            max_guests=40,
        ),
        _trip(
            "t2",
            agency_id="ag_2",
            title="Sol e Mar em Porto de Galinhas",
            destination="Ipojuca, PE",
            price=2490,
            category=TripCategory.PRAIA,
            tags=("Praia", "Mergulho"),
            start_date=date(2024, 11, 2),
            end_date=date(2024, 11, 8),
            views=210,
            sales=9,
            rating=4.7,
            latitude=-8.5057,
            longitude=-35.0047,
            max_guests=4,
        ),
        _trip(
            "t3",
            title="Chapada dos Veadeiros Radical",
            destination="Alto Paraíso de Goiás, GO",
            price=1390,
            category=TripCategory.AVENTURA,
            tags=("Trilhas", "Cachoeiras"),
            start_date=date(2024, 10, 5),
            end_date=date(2024, 10, 9),
            views=150,
            sales=5,
            rating=4.8,
        ),
        _trip("hidden", is_active=False, views=10_000),
        _trip("gone", deleted_at="2024-01-01T00:00:00Z", views=10_000),
    ]


def test_start_only_query_requires_trip_to_start_on_or_after() -> None:
    trip = _trip("a", start_date=date(2024, 1, 10), end_date=date(2024, 1, 15))
    later = _trip("b", start_date=date(2024, 1, 20), end_date=date(2024, 1, 22))

    assert not matches_dates(trip, date(2024, 1, 12), None)
    assert matches_dates(later, date(2024, 1, 12), None)


def test_both_bounds_use_interval_overlap() -> None:
    trip = _trip("a", start_date=date(2024, 1, 10), end_date=date(2024, 1, 15))

    assert matches_dates(trip, date(2024, 1, 12), date(2024, 1, 30))
    assert matches_dates(trip, date(2024, 1, 1), date(2024, 1, 10))
    assert not matches_dates(trip, date(2024, 1, 16), date(2024, 1, 30))


def test_end_only_query_requires_trip_to_end_on_or_before() -> None:
    trip = _trip("a", start_date=date(2024, 1, 10), end_date=date(2024, 1, 15))

    assert matches_dates(trip, None, date(2024, 1, 15))
    assert not matches_dates(trip, None, date(2024, 1, 14))


def test_undated_trip_fails_any_date_filter() -> None:
    trip = _trip("a")

    assert matches_dates(trip, None, None)
    assert not matches_dates(trip, date(2024, 1, 1), None)
    assert not matches_dates(trip, None, date(2024, 1, 1))


def test_base_predicate_hides_inactive_and_deleted(catalogue) -> None:
    result = _engine(catalogue).search(TripSearchQuery())

    assert [trip.id for trip in result.data] == ["t1", "t2", "t3"]
    assert result.count == 3


def test_text_search_folds_case_and_diacritics(catalogue) -> None:
    engine = _engine(catalogue)

    assert [t.id for t in engine.filter(TripSearchQuery(text="IGUACU"))] == ["t1"]
    assert [t.id for t in engine.filter(TripSearchQuery(text="paraiso"))] == ["t3"]
    assert [t.id for t in engine.filter(TripSearchQuery(text="mergulho"))] == ["t2"]


def test_structured_filters(catalogue) -> None:
    engine = _engine(catalogue)

    assert [t.id for t in engine.filter(TripSearchQuery(category="praia"))] == ["t2"]
    assert [t.id for t in engine.filter(TripSearchQuery(agency_id="ag_1"))] == ["t1", "t3"]
    assert [
        t.id for t in engine.filter(TripSearchQuery(min_price=1390, max_price=1850))
    ] == ["t1", "t3"]
    assert [t.id for t in engine.filter(TripSearchQuery(tags=("natureza",)))] == ["t1"]


def test_capacity_only_excludes_explicit_lower_ceiling(catalogue) -> None:
    ids = [t.id for t in _engine(catalogue).filter(TripSearchQuery(guests=10))]

    # t2 caps at 4 guests; t3 declares no ceiling.
    assert ids == ["t1", "t3"]


def test_geo_radius_keeps_trips_without_coordinates(catalogue) -> None:
    query = TripSearchQuery(latitude=-25.5163, longitude=-54.5854, radius_km=50)

    ids = [t.id for t in _engine(catalogue).filter(query)]

    assert ids == ["t1", "t3"]


def test_planar_distance_is_close_to_known_values() -> None:
    # Foz do Iguaçu airport to the falls, roughly 12 km.
    distance = planar_distance_km(-25.6000, -54.4850, -25.6953, -54.4367)

    assert 10 < distance < 15
    assert planar_distance_km(0, 0, 0, 0) == 0


@pytest.mark.parametrize(
    ("strategy", "expected"),
    [
        (SortStrategy.RELEVANCE, ["t1", "t2", "t3"]),
        (SortStrategy.PRICE_ASC, ["t3", "t1", "t2"]),
        (SortStrategy.PRICE_DESC, ["t2", "t1", "t3"]),
        (SortStrategy.DATE_ASC, ["t1", "t3", "t2"]),
        (SortStrategy.RATING_DESC, ["t1", "t3", "t2"]),
    ],
)
def test_sort_strategies(catalogue, strategy, expected) -> None:
    result = _engine(catalogue).search(TripSearchQuery(sort=strategy))

    assert [trip.id for trip in result.data] == expected


def test_sort_ties_keep_snapshot_order() -> None:
    trips = [_trip(str(index), price=500) for index in range(5)]

    result = _engine(trips).search(TripSearchQuery(sort=SortStrategy.PRICE_ASC))

    assert [trip.id for trip in result.data] == ["0", "1", "2", "3", "4"]


def test_relevance_weights_sales() -> None:
    assert relevance(_trip("a", views=100, sales=3)) == 130


def test_pagination_reports_full_count() -> None:
    trips = [_trip(f"{index:02d}", views=100 - index) for index in range(25)]
    engine = _engine(trips)

    first = engine.search(TripSearchQuery(page=1, limit=10))
    last = engine.search(TripSearchQuery(page=3, limit=10))
    beyond = engine.search(TripSearchQuery(page=7, limit=10))

    assert [t.id for t in first.data] == [f"{i:02d}" for i in range(10)]
    assert [t.id for t in last.data] == [f"{i:02d}" for i in range(20, 25)]
    assert beyond.data == []
    assert first.count == last.count == beyond.count == 25
    assert first.pages == 3
    assert first.has_next and not last.has_next


def test_limit_defaults_and_clamps() -> None:
    trips = [_trip(str(index)) for index in range(30)]
    engine = _engine(trips, default_limit=12, max_limit=20)

    assert len(engine.search(TripSearchQuery()).data) == 12
    assert engine.search(TripSearchQuery(limit=500)).limit == 20
    assert engine.search(TripSearchQuery(page=0)).page == 1


def test_query_reads_latest_snapshot() -> None:
    cache = EntityCache()
    engine = QueryEngine(cache.latest)
    assert engine.search(TripSearchQuery()).count == 0

    cache.writer("loader").replace({EntityKind.TRIPS: [_trip("late")]})

    assert engine.search(TripSearchQuery()).count == 1

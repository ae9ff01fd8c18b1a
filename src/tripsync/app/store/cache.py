"""In-memory entity cache: the single source of truth for reads.

Every collection lives inside one immutable :class:`CacheSnapshot`.  Writers
build a new snapshot and swap it in with a single assignment, so a reader
holding a snapshot never observes a half-applied update.  Long-running
coroutines should keep a reference to :meth:`EntityCache.latest` (the bound
method) and call it when they need data, instead of holding on to a
snapshot captured before they suspended.

Only the owners listed in :data:`CACHE_WRITERS` may obtain a
:class:`CacheWriter`; everything else reads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    Iterator,
    Mapping,
    TypeVar,
)

from tripsync.app.models import (
    ActivityLog,
    Agency,
    AuditLog,
    Booking,
    BroadcastMessage,
    Client,
    PlatformSettings,
    Review,
    Trip,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EntityKind(str, Enum):
    TRIPS = "trips"
    AGENCIES = "agencies"
    CLIENTS = "clients"
    BOOKINGS = "bookings"
    REVIEWS = "reviews"
    AUDIT_LOGS = "audit_logs"
    ACTIVITY_LOGS = "activity_logs"
    BROADCASTS = "broadcasts"


CACHE_WRITERS = frozenset({"broadcasts", "loader", "mutations", "session"})

_LOG_KINDS = frozenset({EntityKind.AUDIT_LOGS, EntityKind.ACTIVITY_LOGS, EntityKind.BROADCASTS})


def _record_id(record: Any) -> str:
    return str(getattr(record, "id"))


class EntityCollection(Generic[T]):
    """Ordered, immutable collection indexed by identity."""

    __slots__ = ("_items", "_index")

    def __init__(self, items: Iterable[T] = ()) -> None:
        ordered: dict[str, T] = {}
        for item in items:
            ordered[_record_id(item)] = item
        self._items: tuple[T, ...] = tuple(ordered.values())
        self._index: dict[str, T] = ordered

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._index

    def get(self, record_id: str | None) -> T | None:
        if record_id is None:
            return None
        return self._index.get(str(record_id))

    def all(self) -> tuple[T, ...]:
        return self._items

    def filter(self, predicate: Callable[[T], bool]) -> list[T]:
        return [item for item in self._items if predicate(item)]

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        for item in self._items:
            if predicate(item):
                return item
        return None

    def by_slug(self, slug: str | None) -> T | None:
        """Look up by ``slug`` only.

        Blank input is "not found"; identities are never consulted, so a
        record with a missing slug surfaces as a miss instead of being masked.
        """

        candidate = (slug or "").strip()
        if not candidate:
            return None
        for item in self._items:
            if getattr(item, "slug", None) == candidate:
                return item
        return None

    def with_record(self, record: T) -> "EntityCollection[T]":
        key = _record_id(record)
        if key in self._index:
            return EntityCollection(
                record if _record_id(item) == key else item for item in self._items
            )
        return EntityCollection((*self._items, record))

    def with_records(self, records: Iterable[T]) -> "EntityCollection[T]":
        updated = self
        for record in records:
            updated = updated.with_record(record)
        return updated


def is_public_trip(trip: Trip) -> bool:
    return trip.is_active and not trip.is_deleted


def is_listed(record: Any) -> bool:
    """Default listing predicate: soft-deleted records are hidden."""

    return getattr(record, "deleted_at", None) is None


@dataclass(slots=True, frozen=True)
class CacheSnapshot:
    version: int = 0
    trips: EntityCollection[Trip] = field(default_factory=EntityCollection)
    agencies: EntityCollection[Agency] = field(default_factory=EntityCollection)
    clients: EntityCollection[Client] = field(default_factory=EntityCollection)
    bookings: EntityCollection[Booking] = field(default_factory=EntityCollection)
    reviews: EntityCollection[Review] = field(default_factory=EntityCollection)
    audit_logs: EntityCollection[AuditLog] = field(default_factory=EntityCollection)
    activity_logs: EntityCollection[ActivityLog] = field(default_factory=EntityCollection)
    broadcasts: EntityCollection[BroadcastMessage] = field(default_factory=EntityCollection)
    platform_settings: PlatformSettings = field(default_factory=PlatformSettings)
    degraded: bool = False

    def collection(self, kind: EntityKind) -> EntityCollection[Any]:
        return getattr(self, kind.value)

    # -- convenience reads ------------------------------------------------

    def trip(self, trip_id: str | None) -> Trip | None:
        return self.trips.get(trip_id)

    def trip_by_slug(self, slug: str | None) -> Trip | None:
        return self.trips.by_slug(slug)

    def agency(self, agency_id: str | None) -> Agency | None:
        return self.agencies.get(agency_id)

    def agency_by_slug(self, slug: str | None) -> Agency | None:
        return self.agencies.by_slug(slug)

    def agency_by_user(self, user_id: str | None) -> Agency | None:
        if not user_id:
            return None
        return self.agencies.find(lambda agency: agency.user_id == user_id)

    def client(self, client_id: str | None) -> Client | None:
        return self.clients.get(client_id)

    def public_trips(self) -> list[Trip]:
        return self.trips.filter(is_public_trip)

    def agency_trips(self, agency_id: str, *, public_only: bool = False) -> list[Trip]:
        if public_only:
            return self.trips.filter(
                lambda trip: trip.agency_id == agency_id and is_public_trip(trip)
            )
        return self.trips.filter(lambda trip: trip.agency_id == agency_id)

    def listed(self, kind: EntityKind) -> list[Any]:
        return self.collection(kind).filter(is_listed)


@dataclass(slots=True, frozen=True)
class CacheChange:
    """Describes one snapshot swap for listeners."""

    owner: str
    kinds: tuple[str, ...]
    version: int
    reason: str


CacheListener = Callable[[CacheChange], None]
SnapshotAccessor = Callable[[], CacheSnapshot]


def _sort_logs(records: Iterable[Any]) -> list[Any]:
    return sorted(records, key=lambda record: record.created_at or "", reverse=True)


class EntityCache:
    """Hold the current :class:`CacheSnapshot` and notify on swaps."""

    __slots__ = ("_snapshot", "_listeners")

    def __init__(self, snapshot: CacheSnapshot | None = None) -> None:
        self._snapshot = snapshot or CacheSnapshot()
        self._listeners: list[CacheListener] = []

    def latest(self) -> CacheSnapshot:
        """Return the freshest snapshot at the moment of the call."""

        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    def add_listener(self, listener: CacheListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CacheListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            logger.debug("Attempted to remove unknown cache listener %r", listener)

    def writer(self, owner: str) -> "CacheWriter":
        if owner not in CACHE_WRITERS:
            raise PermissionError(f"{owner!r} may not write to the entity cache")
        return CacheWriter(self, owner)

    def _swap(self, snapshot: CacheSnapshot, change: CacheChange) -> None:
        self._snapshot = snapshot
        logger.debug(
            "Cache swap v%d by %s (%s): %s",
            change.version,
            change.owner,
            change.reason,
            ",".join(change.kinds),
        )
        for listener in tuple(self._listeners):
            try:
                listener(change)
            except Exception:  # pragma: no cover - listener bugs stay local
                logger.exception("Cache listener %r failed", listener)


class CacheWriter:
    """Write handle issued to one of :data:`CACHE_WRITERS`."""

    __slots__ = ("_cache", "owner")

    def __init__(self, cache: EntityCache, owner: str) -> None:
        self._cache = cache
        self.owner = owner

    def replace(
        self,
        collections: Mapping[EntityKind, Iterable[Any]],
        *,
        platform_settings: PlatformSettings | None = None,
        degraded: bool | None = None,
        reason: str = "reload",
    ) -> CacheSnapshot:
        """Replace whole collections in one atomic swap."""

        current = self._cache.latest()
        updates: dict[str, Any] = {}
        for kind, records in collections.items():
            items = list(records)
            if kind in _LOG_KINDS:
                items = _sort_logs(items)
            if kind is EntityKind.TRIPS:
                items = self._carry_images(current.trips, items)
            updates[kind.value] = EntityCollection(items)
        if platform_settings is not None:
            updates["platform_settings"] = platform_settings
        if degraded is not None:
            updates["degraded"] = degraded
        snapshot = replace(current, version=current.version + 1, **updates)
        kinds = tuple(updates.keys())
        self._cache._swap(
            snapshot,
            CacheChange(owner=self.owner, kinds=kinds, version=snapshot.version, reason=reason),
        )
        return snapshot

    def put(self, kind: EntityKind, record: Any, *, reason: str = "patch") -> CacheSnapshot:
        """Insert or replace a single record, keeping the rest untouched."""

        return self.put_many(kind, (record,), reason=reason)

    def put_many(
        self, kind: EntityKind, records: Iterable[Any], *, reason: str = "patch"
    ) -> CacheSnapshot:
        current = self._cache.latest()
        collection = current.collection(kind).with_records(records)
        if kind in _LOG_KINDS:
            collection = EntityCollection(_sort_logs(collection))
        snapshot = replace(current, version=current.version + 1, **{kind.value: collection})
        self._cache._swap(
            snapshot,
            CacheChange(
                owner=self.owner, kinds=(kind.value,), version=snapshot.version, reason=reason
            ),
        )
        return snapshot

    def update(
        self,
        kind: EntityKind,
        record_id: str,
        transform: Callable[[Any], Any],
        *,
        reason: str = "patch",
    ) -> Any | None:
        """Apply ``transform`` to the freshest copy of ``record_id``.

        Returns the new record, or ``None`` when the record is not cached.
        """

        current = self._cache.latest().collection(kind).get(record_id)
        if current is None:
            return None
        updated = transform(current)
        self.put(kind, updated, reason=reason)
        return updated

    def set_platform_settings(
        self, platform_settings: PlatformSettings, *, reason: str = "patch"
    ) -> CacheSnapshot:
        current = self._cache.latest()
        snapshot = replace(
            current, version=current.version + 1, platform_settings=platform_settings
        )
        self._cache._swap(
            snapshot,
            CacheChange(
                owner=self.owner,
                kinds=("platform_settings",),
                version=snapshot.version,
                reason=reason,
            ),
        )
        return snapshot

    @staticmethod
    def _carry_images(previous: EntityCollection[Trip], trips: list[Trip]) -> list[Trip]:
        carried: list[Trip] = []
        for trip in trips:
            if trip.images is None:
                earlier = previous.get(trip.id)
                if earlier is not None and earlier.images is not None:
                    trip = replace(trip, images=earlier.images)
            carried.append(trip)
        return carried


__all__ = [
    "CACHE_WRITERS",
    "CacheChange",
    "CacheListener",
    "CacheSnapshot",
    "CacheWriter",
    "EntityCache",
    "EntityCollection",
    "EntityKind",
    "SnapshotAccessor",
    "is_listed",
    "is_public_trip",
]

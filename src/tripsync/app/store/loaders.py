"""Bulk loaders that populate the entity cache from the remote store."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Mapping

from tripsync.app.gateway import (
    GatewayError,
    GatewayUnavailable,
    Order,
    RemoteStoreGateway,
    eq,
    in_,
)
from tripsync.app.models import (
    ActivityLog,
    Agency,
    AuditLog,
    Booking,
    BroadcastMessage,
    Client,
    PLATFORM_SETTINGS_ID,
    PlatformSettings,
    Review,
    Trip,
)
from tripsync.app.services.service_pulse import ServicePulse
from tripsync.app.store.cache import CacheSnapshot, EntityCache, EntityKind
from tripsync.app.store.fixtures import fixture_tables

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TableSpec:
    table: str
    mapper: Callable[[Mapping[str, Any]], Any]
    order: Order | None = None


TABLES: dict[EntityKind, TableSpec] = {
    EntityKind.TRIPS: TableSpec("trips", Trip.from_row),
    EntityKind.AGENCIES: TableSpec("agencies", Agency.from_row),
    EntityKind.CLIENTS: TableSpec("profiles", Client.from_row),
    EntityKind.REVIEWS: TableSpec(
        "agency_reviews", Review.from_row, Order("created_at", descending=True)
    ),
    EntityKind.BROADCASTS: TableSpec(
        "broadcast_messages", BroadcastMessage.from_row, Order("created_at", descending=True)
    ),
    EntityKind.BOOKINGS: TableSpec("bookings", Booking.from_row),
    EntityKind.AUDIT_LOGS: TableSpec(
        "audit_logs", AuditLog.from_row, Order("created_at", descending=True)
    ),
    EntityKind.ACTIVITY_LOGS: TableSpec(
        "activity_logs", ActivityLog.from_row, Order("created_at", descending=True)
    ),
}

GLOBAL_KINDS: tuple[EntityKind, ...] = (
    EntityKind.TRIPS,
    EntityKind.AGENCIES,
    EntityKind.CLIENTS,
    EntityKind.REVIEWS,
    EntityKind.BROADCASTS,
)

CLIENT_ROLES = ("CLIENT", "ADMIN")


def map_rows(kind: EntityKind, rows: Iterable[Mapping[str, Any]]) -> list[Any]:
    mapper = TABLES[kind].mapper
    records: list[Any] = []
    for row in rows:
        try:
            records.append(mapper(row))
        except (TypeError, ValueError, KeyError):
            logger.warning("Skipping malformed %s row %r", kind.value, row.get("id"))
    return records


class GlobalLoader:
    """Fetch identity-independent collections and swap them into the cache."""

    def __init__(
        self,
        gateway: RemoteStoreGateway | None,
        cache: EntityCache,
        *,
        service_pulse: ServicePulse | None = None,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._writer = cache.writer("loader")
        self._pulse = service_pulse

    @property
    def configured(self) -> bool:
        return self._gateway is not None

    async def load_all(self) -> CacheSnapshot:
        """Reload every global collection in one atomic swap."""

        if self._gateway is None:
            return self.load_fixtures()

        kinds = GLOBAL_KINDS
        results = await asyncio.gather(
            *(self._fetch(kind) for kind in kinds),
            self._fetch_platform_settings(),
            return_exceptions=True,
        )
        if any(isinstance(result, GatewayUnavailable) for result in results):
            logger.warning("Remote store unavailable during reload; using fixtures")
            return self.load_fixtures()

        collections: dict[EntityKind, list[Any]] = {}
        failed: list[str] = []
        for kind, result in zip(kinds, results[: len(kinds)]):
            if isinstance(result, BaseException):
                if not isinstance(result, GatewayError):
                    raise result
                logger.warning(
                    "Failed to load %s; keeping previous collection: %s",
                    kind.value,
                    result,
                )
                failed.append(kind.value)
                continue
            collections[kind] = result

        settings_result = results[-1]
        platform_settings: PlatformSettings | None = None
        if isinstance(settings_result, BaseException):
            if not isinstance(settings_result, GatewayError):
                raise settings_result
            logger.warning("Failed to load platform settings: %s", settings_result)
            failed.append("platform_settings")
        else:
            platform_settings = settings_result

        if EntityKind.CLIENTS in collections:
            collections[EntityKind.CLIENTS] = self._carry_favorites(
                collections[EntityKind.CLIENTS]
            )

        snapshot = self._writer.replace(
            collections,
            platform_settings=platform_settings,
            degraded=False,
            reason="global-reload",
        )
        self._emit(snapshot, source="remote", failed=failed)
        return snapshot

    def load_fixtures(self) -> CacheSnapshot:
        """Swap in the built-in dataset (degraded, read-only mode)."""

        tables = fixture_tables()
        favorites: dict[str, set[str]] = {}
        for row in tables.get("favorites", []):
            favorites.setdefault(str(row["user_id"]), set()).add(str(row["trip_id"]))

        collections: dict[EntityKind, list[Any]] = {}
        for kind in GLOBAL_KINDS:
            rows = tables.get(TABLES[kind].table, [])
            if kind is EntityKind.CLIENTS:
                collections[kind] = [
                    Client.from_row(row, favorites.get(str(row.get("id")), ()))
                    for row in rows
                ]
            else:
                collections[kind] = map_rows(kind, rows)
        settings_rows = tables.get("platform_settings") or [{}]
        snapshot = self._writer.replace(
            collections,
            platform_settings=PlatformSettings.from_row(settings_rows[0]),
            degraded=True,
            reason="fixtures",
        )
        self._emit(snapshot, source="fixtures", failed=[])
        return snapshot

    async def reload_collection(self, kind: EntityKind) -> CacheSnapshot:
        """Refetch one collection and replace it as a set."""

        if self._gateway is None:
            return self._cache.latest()
        records = await self._fetch(kind)
        if kind is EntityKind.CLIENTS:
            records = self._carry_favorites(records)
        return self._writer.replace({kind: records}, reason=f"reload:{kind.value}")

    async def load_trip_images(self, trip_id: str) -> tuple[str, ...] | None:
        """Fetch the image list for ``trip_id`` if it has not been loaded yet."""

        trip = self._cache.latest().trip(trip_id)
        if trip is None:
            return None
        if trip.images is not None:
            return trip.images
        if self._gateway is None:
            return ()
        rows = await self._gateway.select(
            "trip_images",
            filters=(eq("trip_id", trip_id),),
            order=Order("position"),
        )
        images = tuple(str(row["image_url"]) for row in rows if row.get("image_url"))
        # Re-read: a reload may have replaced the trip while the select was pending.
        self._writer.update(
            EntityKind.TRIPS,
            trip_id,
            lambda current: replace(current, images=images),
            reason="trip-images",
        )
        return images

    def _require_gateway(self) -> RemoteStoreGateway:
        if self._gateway is None:
            raise GatewayUnavailable("Remote store is not configured")
        return self._gateway

    async def _fetch(self, kind: EntityKind) -> list[Any]:
        spec = TABLES[kind]
        filters = ()
        if kind is EntityKind.CLIENTS:
            filters = (in_("role", CLIENT_ROLES),)
        rows = await self._require_gateway().select(spec.table, filters=filters, order=spec.order)
        return map_rows(kind, rows)

    async def _fetch_platform_settings(self) -> PlatformSettings:
        row = await self._require_gateway().select_one(
            "platform_settings", filters=(eq("id", PLATFORM_SETTINGS_ID),)
        )
        return PlatformSettings.from_row(row or {})

    def _carry_favorites(self, clients: list[Client]) -> list[Client]:
        previous = self._cache.latest().clients
        carried: list[Client] = []
        for client in clients:
            earlier = previous.get(client.id)
            if not client.favorites and earlier is not None and earlier.favorites:
                client = replace(client, favorites=earlier.favorites)
            carried.append(client)
        return carried

    def _emit(self, snapshot: CacheSnapshot, *, source: str, failed: list[str]) -> None:
        if self._pulse is None:
            return
        self._pulse.emit(
            "cache.reloaded",
            {
                "version": snapshot.version,
                "source": source,
                "failed": list(failed),
                "trips": len(snapshot.trips),
                "agencies": len(snapshot.agencies),
            },
        )


__all__ = ["GLOBAL_KINDS", "GlobalLoader", "TABLES", "TableSpec", "map_rows"]

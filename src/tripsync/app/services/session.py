"""Identity-scoped data: bookings, favorites and the admin/agency logs.

Transitions handled by :class:`SessionScopedFetcher`:

* none -> A: load A's scoped data and remember A as last loaded.
* A -> none: clear every scoped collection and forget A.
* A -> B: clear A's scoped data at once, then load B.
* A -> A: no-op (window refocus, token refresh...), including while A's
  load is still in flight.

Every transition bumps a generation counter.  A fetch that resumes after a
newer transition has started discards its results instead of writing data
for an identity that is no longer current.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any

from tripsync.app.gateway import (
    GatewayError,
    GatewayUnavailable,
    RemoteStoreGateway,
    eq,
    in_,
)
from tripsync.app.models import Agency, Booking, Client, UserRole
from tripsync.app.services.identity import Identity, IdentityHub
from tripsync.app.services.service_pulse import ServicePulse
from tripsync.app.store.cache import EntityCache, EntityKind, SnapshotAccessor
from tripsync.app.store.fixtures import fixture_tables
from tripsync.app.store.loaders import TABLES, map_rows

logger = logging.getLogger(__name__)

SCOPED_KINDS = (EntityKind.BOOKINGS, EntityKind.AUDIT_LOGS, EntityKind.ACTIVITY_LOGS)


@dataclass(slots=True, frozen=True)
class ScopedData:
    bookings: list[Booking]
    favorites: frozenset[str] | None = None
    audit_logs: list[Any] | None = None
    activity_logs: list[Any] | None = None


def _identity_key(identity: Identity | None) -> tuple[str, str] | None:
    if identity is None:
        return None
    return (identity.id, identity.role.value)


class SessionScopedFetcher:
    def __init__(
        self,
        gateway: RemoteStoreGateway | None,
        cache: EntityCache,
        *,
        service_pulse: ServicePulse | None = None,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._latest: SnapshotAccessor = cache.latest
        self._writer = cache.writer("session")
        self._pulse = service_pulse
        self._generation = 0
        self._identity: Identity | None = None
        self._last_loaded: tuple[str, str] | None = None
        self._pending: tuple[str, str] | None = None
        self._favorites_owner: str | None = None
        self._task: asyncio.Task[Any] | None = None
        self._unsubscribe: Any = None
        self.discarded = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_loaded(self) -> tuple[str, str] | None:
        return self._last_loaded

    @property
    def identity(self) -> Identity | None:
        return self._identity

    def attach(self, hub: IdentityHub) -> None:
        """Follow ``hub``: every identity change schedules a transition."""

        self.detach()

        def _on_change(previous: Identity | None, current: Identity | None) -> None:
            loop = asyncio.get_running_loop()
            self._task = loop.create_task(self.set_identity(current))

        self._unsubscribe = hub.subscribe(_on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def wait(self) -> None:
        task = self._task
        if task is not None and not task.done():
            await task

    async def set_identity(self, identity: Identity | None) -> bool:
        """Apply an identity transition; returns ``True`` if data was written."""

        key = _identity_key(identity)
        previous = _identity_key(self._identity)
        if key is not None and key == previous and key in (self._last_loaded, self._pending):
            logger.debug("Identity %s already loaded or loading; skipping", key[0])
            return False
        self._identity = identity
        self._generation += 1
        self._last_loaded = None
        if identity is None:
            self._pending = None
            self._clear()
            return True
        if previous is not None and previous != key:
            self._clear()
        return await self._load(identity, self._generation)

    async def reload(self) -> bool:
        """Refetch the current identity's data (used by full refreshes)."""

        if self._identity is None:
            return False
        self._generation += 1
        return await self._load(self._identity, self._generation)

    def _clear(self) -> None:
        collections: dict[EntityKind, list[Any]] = {kind: [] for kind in SCOPED_KINDS}
        self._writer.replace(collections, reason="session-cleared")
        owner = self._favorites_owner
        self._favorites_owner = None
        if owner is not None:
            self._writer.update(
                EntityKind.CLIENTS,
                owner,
                lambda client: replace(client, favorites=frozenset()),
                reason="session-cleared",
            )
        logger.debug("Session data cleared (generation %d)", self._generation)

    async def _load(self, identity: Identity, generation: int) -> bool:
        self._pending = _identity_key(identity)
        try:
            data = await self._fetch(identity)
        except GatewayError as exc:
            logger.warning("Scoped load for %s failed: %s", identity.id, exc)
            return False
        finally:
            if generation == self._generation:
                self._pending = None
        if generation != self._generation:
            self.discarded += 1
            logger.debug(
                "Discarding scoped data for %s from generation %d (current %d)",
                identity.id,
                generation,
                self._generation,
            )
            return False

        collections: dict[EntityKind, list[Any]] = {EntityKind.BOOKINGS: data.bookings}
        collections[EntityKind.AUDIT_LOGS] = data.audit_logs or []
        collections[EntityKind.ACTIVITY_LOGS] = data.activity_logs or []
        self._writer.replace(collections, reason=f"session:{identity.id}")
        if data.favorites is not None:
            self._apply_favorites(identity, data.favorites)
        self._last_loaded = _identity_key(identity)
        if self._pulse is not None:
            self._pulse.emit(
                "session.loaded",
                {
                    "identity": identity.id,
                    "role": identity.role.value,
                    "generation": generation,
                    "bookings": len(data.bookings),
                },
            )
        return True

    def _apply_favorites(self, identity: Identity, favorites: frozenset[str]) -> None:
        snapshot = self._latest()
        if snapshot.client(identity.id) is None:
            self._writer.put(
                EntityKind.CLIENTS,
                Client(
                    id=identity.id,
                    name="Usuário",
                    email=identity.email,
                    role=identity.role,
                    favorites=favorites,
                ),
                reason="session-favorites",
            )
        else:
            self._writer.update(
                EntityKind.CLIENTS,
                identity.id,
                lambda client: replace(client, favorites=favorites),
                reason="session-favorites",
            )
        self._favorites_owner = identity.id

    async def _fetch(self, identity: Identity) -> ScopedData:
        if self._gateway is None:
            return self._fixture_scope(identity)
        if identity.role is UserRole.ADMIN:
            bookings, audit, activity = await asyncio.gather(
                self._select(EntityKind.BOOKINGS),
                self._select(EntityKind.AUDIT_LOGS),
                self._select(EntityKind.ACTIVITY_LOGS),
            )
            return ScopedData(bookings=bookings, audit_logs=audit, activity_logs=activity)
        if identity.role is UserRole.AGENCY:
            agency = await self._agency_for(identity)
            if agency is None:
                return ScopedData(bookings=[])
            trip_ids = await self._agency_trip_ids(agency)
            bookings = (
                await self._select(EntityKind.BOOKINGS, in_("trip_id", trip_ids))
                if trip_ids
                else []
            )
            activity = await self._select(
                EntityKind.ACTIVITY_LOGS, eq("agency_id", agency.agency_id)
            )
            return ScopedData(bookings=bookings, activity_logs=activity)
        bookings = await self._select(EntityKind.BOOKINGS, eq("client_id", identity.id))
        rows = await self._gateway.select("favorites", filters=(eq("user_id", identity.id),))
        favorites = frozenset(str(row["trip_id"]) for row in rows if row.get("trip_id"))
        return ScopedData(bookings=bookings, favorites=favorites)

    def _require_gateway(self) -> RemoteStoreGateway:
        if self._gateway is None:
            raise GatewayUnavailable("Remote store is not configured")
        return self._gateway

    async def _select(self, kind: EntityKind, *filters: Any) -> list[Any]:
        spec = TABLES[kind]
        rows = await self._require_gateway().select(spec.table, filters=filters, order=spec.order)
        return map_rows(kind, rows)

    async def _agency_for(self, identity: Identity) -> Agency | None:
        # Global data may still be loading; read the freshest snapshot first.
        agency = self._latest().agency_by_user(identity.id)
        if agency is not None or self._gateway is None:
            return agency
        row = await self._gateway.select_one("agencies", filters=(eq("user_id", identity.id),))
        return Agency.from_row(row) if row else None

    async def _agency_trip_ids(self, agency: Agency) -> list[str]:
        trips = self._latest().agency_trips(agency.agency_id)
        if trips:
            return [trip.id for trip in trips]
        rows = await self._require_gateway().select("trips", filters=(eq("agency_id", agency.agency_id),))
        return [str(row["id"]) for row in rows]

    def _fixture_scope(self, identity: Identity) -> ScopedData:
        tables = fixture_tables()
        bookings = map_rows(EntityKind.BOOKINGS, tables.get("bookings", []))
        if identity.role is UserRole.ADMIN:
            return ScopedData(bookings=bookings)
        if identity.role is UserRole.AGENCY:
            agency = self._latest().agency_by_user(identity.id)
            owned = (
                {trip.id for trip in self._latest().agency_trips(agency.agency_id)}
                if agency
                else set()
            )
            return ScopedData(bookings=[b for b in bookings if b.trip_id in owned])
        favorites = frozenset(
            str(row["trip_id"])
            for row in tables.get("favorites", [])
            if str(row.get("user_id")) == identity.id
        )
        return ScopedData(
            bookings=[b for b in bookings if b.client_id == identity.id],
            favorites=favorites,
        )


__all__ = ["SCOPED_KINDS", "ScopedData", "SessionScopedFetcher"]

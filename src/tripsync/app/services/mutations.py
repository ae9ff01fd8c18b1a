"""Write path for every entity.

Two protocols live here:

* Optimistic (favorite toggle, view counter): the new local state is a pure
  function of the prior state, applied to the cache and announced before the
  remote call; a remote failure applies the inverse and reports the error.
* Remote-first (everything else): the remote write runs first, under the
  write timeout; on success the affected records are patched into the cache
  from the rows the store returned, on failure the cache is left untouched.

Every remote call is bounded by ``MutationConfig.write_timeout``.  A timed out
write may still land remotely and is then picked up by the next reload.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, TypeVar

from ulid import ULID

from tripsync.app.gateway import (
    GatewayError,
    GatewayUnavailable,
    RemoteRejection,
    RemoteStoreGateway,
    UNIQUE_VIOLATION,
    WriteTimeout,
    eq,
    in_,
)
from tripsync.app.gateway.errors import PatchValidationError
from tripsync.app.models import (
    ActivityAction,
    Agency,
    AgencyTheme,
    Booking,
    BookingStatus,
    Client,
    ClientStatus,
    PLATFORM_SETTINGS_ID,
    PlatformSettings,
    Review,
    SubscriptionPlan,
    SubscriptionStatus,
    THEME_COLOR_KEYS,
    Trip,
    UserRole,
)
from tripsync.app.patches import (
    AgencyPatch,
    BookingDraft,
    ClientPatch,
    PlatformSettingsPatch,
    ReviewDraft,
    ReviewPatch,
    TripDraft,
    TripPatch,
)
from tripsync.app.services.activity import ActivityRecorder, AuditRecorder, IdentityAccessor
from tripsync.app.services.identity import Identity
from tripsync.app.services.notifications import SafeNotifier
from tripsync.app.services.service_pulse import ServicePulse
from tripsync.app.services.slugs import generate_unique_slug, normalize_slug, slug_from_name
from tripsync.app.services.sync_config import MutationConfig
from tripsync.app.store.cache import EntityCache, EntityKind
from tripsync.app.store.loaders import GlobalLoader

logger = logging.getLogger(__name__)

T = TypeVar("T")

OFFLINE_MESSAGE = "Funcionalidade indisponível no modo offline."
TIMEOUT_MESSAGE = "A operação demorou demais. Tente novamente em instantes."
SOFT_DELETE_TABLES = {"profiles": EntityKind.CLIENTS, "agencies": EntityKind.AGENCIES}


def toggle_membership(members: frozenset[str], item: str) -> frozenset[str]:
    """Flip ``item`` in ``members``; applying it twice restores the input."""

    if item in members:
        return members - {item}
    return members | {item}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_voucher_code() -> str:
    return f"VS-{str(ULID())[-10:]}"


class MutationEngine:
    def __init__(
        self,
        gateway: RemoteStoreGateway | None,
        cache: EntityCache,
        loader: GlobalLoader,
        *,
        identity: IdentityAccessor,
        notifier: SafeNotifier | None = None,
        config: MutationConfig | None = None,
        service_pulse: ServicePulse | None = None,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._writer = cache.writer("mutations")
        self._loader = loader
        self._identity = identity
        self._notifier = notifier or SafeNotifier()
        self._config = config or MutationConfig()
        self._pulse = service_pulse
        self.activity = ActivityRecorder(gateway, identity, timeout=self._config.write_timeout)
        self.audit = AuditRecorder(gateway, identity, timeout=self._config.write_timeout)

    # -- plumbing -----------------------------------------------------------

    @property
    def notifier(self) -> SafeNotifier:
        return self._notifier

    def require_gateway(self) -> RemoteStoreGateway:
        if self._gateway is None:
            self._notifier.notify(OFFLINE_MESSAGE)
            raise GatewayUnavailable("Remote store is not configured")
        return self._gateway

    async def call(self, operation: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._config.write_timeout)
        except asyncio.TimeoutError as exc:
            raise WriteTimeout(
                f"write exceeded {self._config.write_timeout:.1f}s", code="timeout"
            ) from exc

    def report(self, label: str, exc: Exception) -> None:
        if isinstance(exc, WriteTimeout):
            message = TIMEOUT_MESSAGE
        elif isinstance(exc, (RemoteRejection, PatchValidationError)):
            message = f"{label}: {exc.message}"
        elif isinstance(exc, GatewayUnavailable):
            return
        else:
            message = f"{label}. Tente novamente."
        logger.warning("%s failed: %s", label, exc)
        self._notifier.error(message)
        if self._pulse is not None:
            self._pulse.emit(
                "mutation.failed",
                {
                    "label": label,
                    "error": type(exc).__name__,
                    "code": getattr(exc, "code", None),
                },
            )

    def current_identity(self) -> Identity | None:
        return self._identity()

    def is_admin(self) -> bool:
        actor = self._identity()
        return actor is not None and actor.role is UserRole.ADMIN

    def _trip_from_row(self, row: Mapping[str, Any]) -> Trip:
        trip = Trip.from_row(row)
        if trip.images is None:
            cached = self._cache.latest().trip(trip.id)
            if cached is not None and cached.images is not None:
                trip = replace(trip, images=cached.images)
        return trip

    def _client_from_row(self, row: Mapping[str, Any]) -> Client:
        cached = self._cache.latest().client(str(row.get("id")))
        favorites = sorted(cached.favorites) if cached is not None else None
        return Client.from_row(row, favorites)

    def _put_rows(self, kind: EntityKind, rows: Iterable[Mapping[str, Any]], reason: str) -> list[Any]:
        mapper: Callable[[Mapping[str, Any]], Any]
        if kind is EntityKind.TRIPS:
            mapper = self._trip_from_row
        elif kind is EntityKind.CLIENTS:
            mapper = self._client_from_row
        else:
            mapper = {
                EntityKind.AGENCIES: Agency.from_row,
                EntityKind.BOOKINGS: Booking.from_row,
                EntityKind.REVIEWS: Review.from_row,
            }[kind]
        records = [mapper(row) for row in rows]
        if records:
            self._writer.put_many(kind, records, reason=reason)
        return records

    async def _log(
        self,
        action: ActivityAction,
        details: Mapping[str, Any],
        *,
        agency_id: str | None = None,
    ) -> None:
        record = await self.activity.record(action, details, agency_id=agency_id)
        if record is not None:
            self._writer.put(EntityKind.ACTIVITY_LOGS, record, reason="activity")

    async def log_audit(self, action: str, details: str) -> None:
        """Append an admin audit entry; silently skipped for non-admins."""

        record = await self.audit.record(action, details)
        if record is not None:
            self._writer.put(EntityKind.AUDIT_LOGS, record, reason="audit")

    # -- optimistic ---------------------------------------------------------

    async def toggle_favorite(self, client_id: str, trip_id: str) -> bool:
        """Toggle ``trip_id`` in the client's favorites; returns final membership."""

        gateway = self.require_gateway()
        if self._cache.latest().client(client_id) is None:
            self._writer.put(EntityKind.CLIENTS, Client(id=client_id, name="Usuário"))

        def flip(client: Client) -> Client:
            return replace(client, favorites=toggle_membership(client.favorites, trip_id))

        updated = self._writer.update(EntityKind.CLIENTS, client_id, flip, reason="favorite")
        added = trip_id in updated.favorites
        self._notifier.notify(
            "Adicionado aos favoritos" if added else "Removido dos favoritos"
        )
        try:
            if added:
                try:
                    await self.call(
                        gateway.insert("favorites", {"user_id": client_id, "trip_id": trip_id})
                    )
                except RemoteRejection as exc:
                    if exc.code != UNIQUE_VIOLATION:
                        raise
                    logger.debug("Favorite %s/%s already stored", client_id, trip_id)
            else:
                await self.call(
                    gateway.delete(
                        "favorites",
                        filters=(eq("user_id", client_id), eq("trip_id", trip_id)),
                    )
                )
        except GatewayError as exc:
            restored = self._writer.update(
                EntityKind.CLIENTS, client_id, flip, reason="favorite-rollback"
            )
            self.report("Erro ao atualizar favoritos", exc)
            return restored is not None and trip_id in restored.favorites
        await self._log(
            ActivityAction.FAVORITE_TOGGLED, {"trip_id": trip_id, "added": added}
        )
        return added

    async def increment_trip_views(self, trip_id: str) -> None:
        """Bump the view counter locally, then via the counter procedure."""

        def bump(delta: int) -> Callable[[Trip], Trip]:
            return lambda trip: replace(trip, views=max(trip.views + delta, 0))

        if self._writer.update(EntityKind.TRIPS, trip_id, bump(1), reason="views") is None:
            return
        if self._gateway is None:
            return
        try:
            await self.call(
                self._gateway.rpc("increment_trip_views", {"trip_id": trip_id, "amount": 1})
            )
        except GatewayError as exc:
            logger.warning("View counter for %s not recorded: %s", trip_id, exc)
            self._writer.update(EntityKind.TRIPS, trip_id, bump(-1), reason="views-rollback")

    # -- trips --------------------------------------------------------------

    async def create_trip(self, draft: TripDraft, images: Sequence[str] = ()) -> Trip:
        """Insert a trip with a unique slug; raises after notifying on failure."""

        gateway = self.require_gateway()
        try:
            base = normalize_slug(draft.patch.slug, draft.title, table="trips")
            slug = await generate_unique_slug(
                gateway, "trips", base, max_attempts=self._config.slug_max_attempts
            )
            rows = await self.call(gateway.insert("trips", draft.as_row(slug)))
            row = rows[0]
            if images:
                await self.call(
                    gateway.insert(
                        "trip_images",
                        [
                            {"trip_id": row["id"], "image_url": url, "position": pos}
                            for pos, url in enumerate(images)
                        ],
                    )
                )
        except (GatewayError, PatchValidationError) as exc:
            self.report("Erro ao criar viagem", exc)
            raise
        trip = replace(Trip.from_row(row), images=tuple(images))
        self._writer.put(EntityKind.TRIPS, trip, reason="trip-created")
        self._notifier.success("Viagem criada com sucesso!")
        await self._log(
            ActivityAction.TRIP_CREATED,
            {"trip_id": trip.id, "title": trip.title},
            agency_id=trip.agency_id,
        )
        return trip

    async def update_trip(
        self,
        trip_id: str,
        patch: TripPatch,
        *,
        images: Sequence[str] | None = None,
    ) -> Trip | None:
        """Apply ``patch``; a changed title re-derives the slug unless one is given."""

        gateway = self.require_gateway()
        current = self._cache.latest().trip(trip_id)
        try:
            if patch.title and patch.slug is None and (
                current is None or patch.title != current.title
            ):
                base = slug_from_name(patch.title, table="trips")
                slug = await generate_unique_slug(
                    gateway,
                    "trips",
                    base,
                    exclude_id=trip_id,
                    max_attempts=self._config.slug_max_attempts,
                )
                patch = patch.with_slug(slug)
            values = patch.as_row()
            values["updated_at"] = _now().isoformat()
            rows = await self.call(
                gateway.update("trips", values, filters=(eq("id", trip_id),))
            )
            if images is not None:
                await self.call(
                    gateway.delete("trip_images", filters=(eq("trip_id", trip_id),))
                )
                if images:
                    await self.call(
                        gateway.insert(
                            "trip_images",
                            [
                                {"trip_id": trip_id, "image_url": url, "position": pos}
                                for pos, url in enumerate(images)
                            ],
                        )
                    )
        except (GatewayError, PatchValidationError) as exc:
            self.report("Erro ao atualizar viagem", exc)
            return None
        if not rows:
            self._notifier.error("Viagem não encontrada.")
            return None
        trip = self._trip_from_row(rows[0])
        if images is not None:
            trip = replace(trip, images=tuple(images))
        self._writer.put(EntityKind.TRIPS, trip, reason="trip-updated")
        self._notifier.success("Viagem atualizada!")
        await self._log(
            ActivityAction.TRIP_UPDATED,
            {"trip_id": trip.id, "fields": sorted(values)},
            agency_id=trip.agency_id,
        )
        return trip

    async def delete_trip(self, trip_id: str) -> bool:
        gateway = self.require_gateway()
        trip = self._cache.latest().trip(trip_id)
        try:
            removed = await self.call(gateway.delete("trips", filters=(eq("id", trip_id),)))
            await self._loader.reload_collection(EntityKind.TRIPS)
        except GatewayError as exc:
            self.report("Erro ao excluir viagem", exc)
            return False
        self._notifier.success("Viagem excluída.")
        await self._log(
            ActivityAction.TRIP_DELETED,
            {"trip_id": trip_id, "title": trip.title if trip else None},
            agency_id=trip.agency_id if trip else None,
        )
        return bool(removed)

    async def _flip_trip_flag(self, trip_id: str, column: str, attribute: str) -> Trip | None:
        gateway = self.require_gateway()
        trip = self._cache.latest().trip(trip_id)
        if trip is None:
            return None
        value = not getattr(trip, attribute)
        try:
            rows = await self.call(
                gateway.update("trips", {column: value}, filters=(eq("id", trip_id),))
            )
        except GatewayError as exc:
            self.report("Erro ao alterar viagem", exc)
            return None
        records = self._put_rows(EntityKind.TRIPS, rows, reason=f"trip-{column}")
        return records[0] if records else None

    async def toggle_trip_active(self, trip_id: str) -> Trip | None:
        trip = await self._flip_trip_flag(trip_id, "is_active", "is_active")
        if trip is not None:
            self._notifier.success(f"Viagem {'publicada' if trip.is_active else 'pausada'}.")
            await self._log(
                ActivityAction.TRIP_STATUS_TOGGLED,
                {"trip_id": trip.id, "is_active": trip.is_active},
                agency_id=trip.agency_id,
            )
        return trip

    async def toggle_trip_featured(self, trip_id: str) -> Trip | None:
        trip = await self._flip_trip_flag(trip_id, "featured", "featured")
        if trip is not None:
            self._notifier.success(
                f"Viagem {'destacada' if trip.featured else 'removida dos destaques'}."
            )
        return trip

    async def update_trip_operational_data(
        self, trip_id: str, data: Mapping[str, Any]
    ) -> Trip | None:
        """Merge ``data`` into the trip's operational data (rooming, transport...)."""

        gateway = self.require_gateway()
        trip = self._cache.latest().trip(trip_id)
        merged = {**(dict(trip.operational_data) if trip else {}), **dict(data)}
        try:
            rows = await self.call(
                gateway.update(
                    "trips", {"operational_data": merged}, filters=(eq("id", trip_id),)
                )
            )
        except GatewayError as exc:
            self.report("Erro ao salvar dados operacionais", exc)
            return None
        records = self._put_rows(EntityKind.TRIPS, rows, reason="trip-operational")
        return records[0] if records else None

    # -- bookings -----------------------------------------------------------

    async def create_booking(self, draft: BookingDraft) -> Booking:
        """Insert a booking and bump the trip's sales counter."""

        gateway = self.require_gateway()
        voucher = draft.voucher_code or generate_voucher_code()
        try:
            rows = await self.call(gateway.insert("bookings", draft.as_row(voucher)))
        except GatewayError as exc:
            self.report("Erro ao criar reserva", exc)
            raise
        booking = Booking.from_row(rows[0])
        self._writer.put(EntityKind.BOOKINGS, booking, reason="booking-created")
        try:
            await self.call(
                gateway.rpc("increment_trip_sales", {"trip_id": booking.trip_id, "amount": 1})
            )
        except GatewayError as exc:
            logger.warning("Sales counter for %s not updated: %s", booking.trip_id, exc)
        else:
            self._writer.update(
                EntityKind.TRIPS,
                booking.trip_id,
                lambda trip: replace(trip, sales=trip.sales + 1),
                reason="sales",
            )
        self._notifier.success("Reserva realizada com sucesso!")
        trip = self._cache.latest().trip(booking.trip_id)
        await self._log(
            ActivityAction.BOOKING_CREATED,
            {
                "booking_id": booking.id,
                "trip_id": booking.trip_id,
                "voucher_code": booking.voucher_code,
                "total_price": booking.total_price,
            },
            agency_id=trip.agency_id if trip else None,
        )
        return booking

    async def update_booking_status(
        self, booking_id: str, status: BookingStatus
    ) -> Booking | None:
        gateway = self.require_gateway()
        try:
            rows = await self.call(
                gateway.update(
                    "bookings", {"status": status.value}, filters=(eq("id", booking_id),)
                )
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar reserva", exc)
            return None
        records = self._put_rows(EntityKind.BOOKINGS, rows, reason="booking-status")
        if not records:
            return None
        booking = records[0]
        self._notifier.success("Reserva atualizada.")
        trip = self._cache.latest().trip(booking.trip_id)
        await self._log(
            ActivityAction.BOOKING_STATUS_UPDATED,
            {"booking_id": booking.id, "status": status.value},
            agency_id=trip.agency_id if trip else None,
        )
        return booking

    # -- reviews ------------------------------------------------------------

    async def submit_review(self, draft: ReviewDraft) -> Review | None:
        """Upsert the single review for (agency, client) by an existence check."""

        gateway = self.require_gateway()
        try:
            existing = await self.call(
                gateway.select(
                    "agency_reviews",
                    filters=(eq("agency_id", draft.agency_id), eq("client_id", draft.client_id)),
                    limit=1,
                )
            )
            if existing:
                rows = await self.call(
                    gateway.update(
                        "agency_reviews",
                        draft.as_row(),
                        filters=(eq("id", existing[0]["id"]),),
                    )
                )
                action = ActivityAction.REVIEW_UPDATED
            else:
                rows = await self.call(gateway.insert("agency_reviews", draft.as_row()))
                action = ActivityAction.REVIEW_SUBMITTED
        except GatewayError as exc:
            self.report("Erro ao avaliar agência", exc)
            return None
        records = self._put_rows(EntityKind.REVIEWS, rows, reason="review")
        if not records:
            return None
        review = records[0]
        self._notifier.success("Avaliação da agência enviada!")
        await self._log(
            action,
            {"review_id": review.id, "rating": review.rating},
            agency_id=review.agency_id,
        )
        return review

    async def update_review(self, review_id: str, patch: ReviewPatch) -> Review | None:
        gateway = self.require_gateway()
        if patch.is_empty():
            return self._cache.latest().reviews.get(review_id)
        try:
            rows = await self.call(
                gateway.update(
                    "agency_reviews", patch.as_row(), filters=(eq("id", review_id),)
                )
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar avaliação", exc)
            return None
        records = self._put_rows(EntityKind.REVIEWS, rows, reason="review-updated")
        if records:
            self._notifier.success("Avaliação atualizada!")
            await self._log(
                ActivityAction.REVIEW_UPDATED,
                {"review_id": review_id},
                agency_id=records[0].agency_id,
            )
        return records[0] if records else None

    async def respond_to_review(self, review_id: str, response: str) -> Review | None:
        return await self.update_review(review_id, ReviewPatch(response=response))

    async def delete_review(self, review_id: str) -> bool:
        gateway = self.require_gateway()
        review = self._cache.latest().reviews.get(review_id)
        try:
            await self.call(gateway.delete("agency_reviews", filters=(eq("id", review_id),)))
            await self._loader.reload_collection(EntityKind.REVIEWS)
        except GatewayError as exc:
            self.report("Erro ao excluir avaliação", exc)
            return False
        self._notifier.success("Avaliação excluída.")
        await self._log(
            ActivityAction.REVIEW_DELETED,
            {"review_id": review_id},
            agency_id=review.agency_id if review else None,
        )
        return True

    # -- clients ------------------------------------------------------------

    async def update_client_profile(self, client_id: str, patch: ClientPatch) -> Client | None:
        gateway = self.require_gateway()
        if patch.is_empty():
            return self._cache.latest().client(client_id)
        try:
            rows = await self.call(
                gateway.update("profiles", patch.as_row(), filters=(eq("id", client_id),))
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar perfil", exc)
            return None
        records = self._put_rows(EntityKind.CLIENTS, rows, reason="profile")
        if records:
            self._notifier.success("Perfil atualizado!")
            await self._log(ActivityAction.CLIENT_PROFILE_UPDATED, {"client_id": client_id})
        return records[0] if records else None

    async def update_clients_status(
        self, client_ids: Sequence[str], status: ClientStatus
    ) -> list[Client]:
        gateway = self.require_gateway()
        if not client_ids:
            return []
        try:
            rows = await self.call(
                gateway.update(
                    "profiles", {"status": status.value}, filters=(in_("id", client_ids),)
                )
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar status", exc)
            return []
        return self._put_rows(EntityKind.CLIENTS, rows, reason="profile-status")

    # -- agencies -----------------------------------------------------------

    async def update_agency_subscription(
        self,
        agency_id: str,
        status: SubscriptionStatus,
        plan: SubscriptionPlan,
        expires_at: str | None = None,
    ) -> Agency | None:
        gateway = self.require_gateway()
        values: dict[str, Any] = {
            "subscription_status": status.value,
            "subscription_plan": plan.value,
            "is_active": status is SubscriptionStatus.ACTIVE,
        }
        if expires_at:
            values["subscription_expires_at"] = expires_at
        try:
            rows = await self.call(
                gateway.update("agencies", values, filters=(eq("id", agency_id),))
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar assinatura", exc)
            return None
        records = self._put_rows(EntityKind.AGENCIES, rows, reason="subscription")
        if records:
            self._notifier.success("Assinatura atualizada com sucesso!")
            await self._log(
                ActivityAction.AGENCY_SUBSCRIPTION_UPDATED,
                {"status": status.value, "plan": plan.value},
                agency_id=agency_id,
            )
        return records[0] if records else None

    async def change_agency_plan(self, agency_id: str, plan: SubscriptionPlan) -> Agency | None:
        """Activate ``plan`` for one billing period starting now."""

        expires = _now() + timedelta(days=self._config.plan_period_days)
        return await self.update_agency_subscription(
            agency_id, SubscriptionStatus.ACTIVE, plan, expires.isoformat()
        )

    async def update_agency_profile(self, agency_id: str, patch: AgencyPatch) -> Agency | None:
        gateway = self.require_gateway()
        if patch.is_empty():
            return self._cache.latest().agency(agency_id)
        try:
            if patch.slug is not None:
                unique = await generate_unique_slug(
                    gateway,
                    "agencies",
                    patch.slug,
                    exclude_id=agency_id,
                    max_attempts=self._config.slug_max_attempts,
                )
                patch = replace(patch, slug=unique)
            rows = await self.call(
                gateway.update("agencies", patch.as_row(), filters=(eq("id", agency_id),))
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar agência", exc)
            return None
        records = self._put_rows(EntityKind.AGENCIES, rows, reason="agency-profile")
        if records:
            self._notifier.success("Agência atualizada!")
            await self._log(
                ActivityAction.AGENCY_PROFILE_UPDATED,
                {"fields": sorted(patch.as_row())},
                agency_id=agency_id,
            )
        return records[0] if records else None

    async def toggle_agency_status(self, agency_id: str) -> Agency | None:
        gateway = self.require_gateway()
        agency = self._cache.latest().agency(agency_id)
        if agency is None:
            return None
        active = agency.subscription.status is not SubscriptionStatus.ACTIVE
        status = SubscriptionStatus.ACTIVE if active else SubscriptionStatus.INACTIVE
        try:
            rows = await self.call(
                gateway.update(
                    "agencies",
                    {"is_active": active, "subscription_status": status.value},
                    filters=(eq("id", agency_id),),
                )
            )
        except GatewayError as exc:
            self.report("Erro ao alterar status", exc)
            return None
        records = self._put_rows(EntityKind.AGENCIES, rows, reason="agency-status")
        if records:
            self._notifier.success(f"Agência {'ativada' if active else 'inativada'}.")
            await self._log(
                ActivityAction.AGENCY_STATUS_TOGGLED,
                {"status": status.value},
                agency_id=agency_id,
            )
        return records[0] if records else None

    async def update_agencies_status(
        self, agency_ids: Sequence[str], status: SubscriptionStatus
    ) -> list[Agency]:
        gateway = self.require_gateway()
        if not agency_ids:
            return []
        try:
            rows = await self.call(
                gateway.update(
                    "agencies",
                    {
                        "is_active": status is SubscriptionStatus.ACTIVE,
                        "subscription_status": status.value,
                    },
                    filters=(in_("id", agency_ids),),
                )
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar status", exc)
            return []
        return self._put_rows(EntityKind.AGENCIES, rows, reason="agency-status")

    # -- admin --------------------------------------------------------------

    async def soft_delete(self, record_id: str, table: str) -> bool:
        return await self._set_tombstone(record_id, table, _now().isoformat())

    async def restore(self, record_id: str, table: str) -> bool:
        return await self._set_tombstone(record_id, table, None)

    async def _set_tombstone(self, record_id: str, table: str, value: str | None) -> bool:
        kind = SOFT_DELETE_TABLES.get(table)
        if kind is None:
            raise ValueError(f"{table!r} does not support soft deletes")
        gateway = self.require_gateway()
        label = "Usuário" if table == "profiles" else "Agência"
        try:
            rows = await self.call(
                gateway.update(table, {"deleted_at": value}, filters=(eq("id", record_id),))
            )
        except GatewayError as exc:
            self.report(
                "Erro ao mover para a lixeira" if value else "Erro ao restaurar", exc
            )
            return False
        self._put_rows(kind, rows, reason="tombstone")
        self._notifier.success(
            f"{label} movido(a) para a lixeira." if value else f"{label} restaurado(a)."
        )
        return bool(rows)

    async def purge_user(self, user_id: str, role: UserRole) -> bool:
        """Hard-delete a profile (and its agency row for agency users)."""

        gateway = self.require_gateway()
        try:
            if role is UserRole.AGENCY:
                await self.call(gateway.delete("agencies", filters=(eq("user_id", user_id),)))
            await self.call(gateway.delete("profiles", filters=(eq("id", user_id),)))
            await self._reload(EntityKind.CLIENTS, EntityKind.AGENCIES)
        except GatewayError as exc:
            self.report("Erro ao excluir", exc)
            return False
        self._notifier.success("Usuário excluído do banco de dados.")
        await self._log(ActivityAction.DELETE_USER, {"user_id": user_id, "role": role.value})
        return True

    async def delete_users(self, user_ids: Sequence[str]) -> int:
        gateway = self.require_gateway()
        if not user_ids:
            return 0
        try:
            removed = await self.call(
                gateway.delete("profiles", filters=(in_("id", user_ids),))
            )
            await self._reload(EntityKind.CLIENTS)
        except GatewayError as exc:
            self.report("Erro ao excluir usuários", exc)
            return 0
        await self._log(ActivityAction.DELETE_MULTIPLE_USERS, {"count": removed})
        return removed

    async def delete_agencies(self, agency_ids: Sequence[str]) -> int:
        gateway = self.require_gateway()
        if not agency_ids:
            return 0
        try:
            removed = await self.call(
                gateway.delete("agencies", filters=(in_("id", agency_ids),))
            )
            await self._reload(EntityKind.AGENCIES)
        except GatewayError as exc:
            self.report("Erro ao excluir agências", exc)
            return 0
        await self._log(ActivityAction.DELETE_MULTIPLE_AGENCIES, {"count": removed})
        return removed

    async def _reload(self, *kinds: EntityKind) -> None:
        for kind in kinds:
            await self._loader.reload_collection(kind)

    async def send_password_reset(self, email: str) -> bool:
        gateway = self.require_gateway()
        try:
            await self.call(
                gateway.send_password_reset(email, redirect_to=self._config.reset_redirect)
            )
        except GatewayError as exc:
            self.report("Erro ao enviar link", exc)
            return False
        self._notifier.success("Link de reset de senha enviado para o e-mail.")
        await self.log_audit("PASSWORD_RESET_SENT", f"Admin sent password reset link to {email}")
        return True

    async def update_user_avatar(
        self, user_id: str, content: bytes, filename: str
    ) -> str | None:
        """Upload an avatar for ``user_id`` (admin only); returns its public URL."""

        if not self.is_admin():
            return None
        gateway = self.require_gateway()
        extension = filename.rsplit(".", 1)[-1] if "." in filename else "bin"
        path = f"{user_id}-{int(_now().timestamp() * 1000)}.{extension}"
        try:
            url = await self.call(
                gateway.upload(
                    self._config.avatar_bucket,
                    path,
                    content,
                    content_type=f"image/{extension}",
                )
            )
            rows = await self.call(
                gateway.update("profiles", {"avatar_url": url}, filters=(eq("id", user_id),))
            )
        except GatewayError as exc:
            self.report("Erro ao atualizar avatar", exc)
            return None
        self._put_rows(EntityKind.CLIENTS, rows, reason="avatar")
        self._notifier.success("Avatar atualizado com sucesso!")
        await self.log_audit("USER_AVATAR_UPDATED", f"Admin updated avatar for user ID: {user_id}")
        return url

    # -- agency themes ------------------------------------------------------

    async def get_agency_theme(self, agency_id: str) -> AgencyTheme | None:
        """Fetch the saved theme for ``agency_id``; ``None`` when unset or unreachable."""

        if self._gateway is None:
            return None
        try:
            row = await self.call(
                self._gateway.select_one("agency_themes", filters=(eq("agency_id", agency_id),))
            )
        except GatewayError as exc:
            logger.warning("Theme for agency %s not loaded: %s", agency_id, exc)
            return None
        return AgencyTheme.from_row({**row, "agency_id": agency_id}) if row else None

    async def save_agency_theme(self, agency_id: str, colors: Mapping[str, str]) -> bool:
        gateway = self.require_gateway()
        try:
            missing = [key for key in THEME_COLOR_KEYS if not colors.get(key)]
            if missing:
                raise PatchValidationError("colors", f"missing {', '.join(missing)}")
            await self.call(
                gateway.upsert(
                    "agency_themes",
                    {"agency_id": agency_id, "colors": dict(colors)},
                    on_conflict=("agency_id",),
                )
            )
        except (GatewayError, PatchValidationError) as exc:
            self.report("Erro ao salvar tema", exc)
            return False
        self._notifier.success("Tema salvo!")
        return True

    # -- platform settings --------------------------------------------------

    async def update_platform_settings(
        self, patch: PlatformSettingsPatch
    ) -> PlatformSettings | None:
        gateway = self.require_gateway()
        row = {"id": PLATFORM_SETTINGS_ID, **patch.as_row()}
        try:
            stored = await self.call(gateway.upsert("platform_settings", row, on_conflict=("id",)))
        except GatewayError as exc:
            self.report("Erro ao salvar configurações", exc)
            return None
        settings = PlatformSettings.from_row(stored)
        self._writer.set_platform_settings(settings, reason="platform-settings")
        self._notifier.success("Configurações salvas.")
        await self.log_audit("PLATFORM_SETTINGS_UPDATED", ", ".join(sorted(patch.as_row())))
        return settings


__all__ = [
    "MutationEngine",
    "OFFLINE_MESSAGE",
    "TIMEOUT_MESSAGE",
    "generate_voucher_code",
    "toggle_membership",
]

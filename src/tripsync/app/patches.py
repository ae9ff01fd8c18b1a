"""Typed deltas for every mutable entity.

A patch is validated when constructed, so an invalid delta never reaches the
cache or the remote store.  ``None`` on a patch field means "leave as is".
``as_row`` produces the store columns; ``apply`` produces the updated
immutable record.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from datetime import date
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from tripsync.app.gateway.errors import PatchValidationError
from tripsync.app.models import (
    Agency,
    BoardingPoint,
    Client,
    ClientStatus,
    ItineraryDay,
    PassengerDetail,
    PaymentMethod,
    PlatformSettings,
    Review,
    Trip,
    TripCategory,
    parse_date,
)
from tripsync.app.util.text import SLUG_PATTERN

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 100


def _require_text(name: str, value: str | None) -> None:
    if value is not None and not str(value).strip():
        raise PatchValidationError(name, "must not be blank")


def _require_non_negative(name: str, value: float | None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PatchValidationError(name, "must be a number")
    if math.isnan(value) or value < 0:
        raise PatchValidationError(name, "must be zero or greater")


def _require_positive_int(name: str, value: int | None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise PatchValidationError(name, "must be a positive integer")


def validate_slug(slug: str) -> None:
    """Raise :class:`PatchValidationError` unless ``slug`` is well formed."""

    if not SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH:
        raise PatchValidationError(
            "slug", f"must be {SLUG_MIN_LENGTH}-{SLUG_MAX_LENGTH} characters"
        )
    if not SLUG_PATTERN.match(slug):
        raise PatchValidationError(
            "slug", "may only contain lowercase letters, digits and single hyphens"
        )


def _coerce_date(name: str, value: date | str | None) -> date | None:
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise PatchValidationError(name, "must be an ISO date")
    return parsed


def _changed(patch: Any) -> dict[str, Any]:
    return {f.name: getattr(patch, f.name) for f in fields(patch) if getattr(patch, f.name) is not None}


def _frozen(value: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    return None if value is None else MappingProxyType(dict(value))


@dataclass(slots=True, frozen=True)
class TripPatch:
    title: str | None = None
    slug: str | None = None
    description: str | None = None
    destination: str | None = None
    price: float | None = None
    start_date: date | None = None
    end_date: date | None = None
    duration_days: int | None = None
    category: TripCategory | None = None
    tags: tuple[str, ...] | None = None
    traveler_types: tuple[str, ...] | None = None
    itinerary: tuple[ItineraryDay, ...] | None = None
    boarding_points: tuple[BoardingPoint, ...] | None = None
    payment_methods: tuple[str, ...] | None = None
    included: tuple[str, ...] | None = None
    not_included: tuple[str, ...] | None = None
    is_active: bool | None = None
    featured: bool | None = None
    featured_in_hero: bool | None = None
    popular_near_sp: bool | None = None
    latitude: float | None = None
    longitude: float | None = None
    max_guests: int | None = None
    operational_data: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_text("title", self.title)
        _require_non_negative("price", self.price)
        _require_positive_int("max_guests", self.max_guests)
        _require_positive_int("duration_days", self.duration_days)
        object.__setattr__(self, "start_date", _coerce_date("start_date", self.start_date))
        object.__setattr__(self, "end_date", _coerce_date("end_date", self.end_date))
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise PatchValidationError("end_date", "must not be before start_date")
        if self.category is not None and not isinstance(self.category, TripCategory):
            try:
                object.__setattr__(self, "category", TripCategory(str(self.category).upper()))
            except ValueError as exc:
                raise PatchValidationError("category", "unknown category") from exc
        if self.slug is not None:
            validate_slug(self.slug)
        if self.latitude is not None and not -90 <= self.latitude <= 90:
            raise PatchValidationError("latitude", "must be within [-90, 90]")
        if self.longitude is not None and not -180 <= self.longitude <= 180:
            raise PatchValidationError("longitude", "must be within [-180, 180]")
        for name in ("tags", "traveler_types", "payment_methods", "included", "not_included"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, tuple(str(item) for item in value))
        object.__setattr__(self, "operational_data", _frozen(self.operational_data))

    def is_empty(self) -> bool:
        return not _changed(self)

    def with_slug(self, slug: str) -> "TripPatch":
        return replace(self, slug=slug)

    def as_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for name, value in _changed(self).items():
            if name in {"start_date", "end_date"}:
                row[name] = value.isoformat()
            elif name == "category":
                row[name] = value.value
            elif name in {"itinerary", "boarding_points"}:
                row[name] = [item.as_row() for item in value]
            elif name == "operational_data":
                row[name] = dict(value)
            elif isinstance(value, tuple):
                row[name] = list(value)
            else:
                row[name] = value
        return row

    def apply(self, trip: Trip) -> Trip:
        changes = _changed(self)
        if "duration_days" in changes:
            changes["stored_duration_days"] = changes.pop("duration_days")
        return replace(trip, **changes)


@dataclass(slots=True, frozen=True)
class TripDraft:
    """A new trip; ``slug`` is filled in by slug generation when omitted."""

    agency_id: str
    title: str
    destination: str
    price: float
    patch: TripPatch = field(default_factory=TripPatch)

    def __post_init__(self) -> None:
        _require_text("agency_id", self.agency_id or "")
        _require_text("title", self.title or "")
        _require_text("destination", self.destination or "")
        _require_non_negative("price", self.price)

    def as_row(self, slug: str) -> dict[str, Any]:
        row = self.patch.as_row()
        row.update(
            agency_id=self.agency_id,
            title=self.title,
            destination=self.destination,
            price=self.price,
            slug=slug,
        )
        row.setdefault("is_active", True)
        row.setdefault("views_count", 0)
        row.setdefault("sales_count", 0)
        return row


@dataclass(slots=True, frozen=True)
class AgencyPatch:
    name: str | None = None
    slug: str | None = None
    email: str | None = None
    description: str | None = None
    logo_url: str | None = None
    cnpj: str | None = None
    phone: str | None = None
    whatsapp: str | None = None
    website: str | None = None
    address: Mapping[str, Any] | None = None
    bank_info: Mapping[str, Any] | None = None
    custom_settings: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_text("name", self.name)
        if self.slug is not None:
            validate_slug(self.slug)
        if self.email is not None and "@" not in self.email:
            raise PatchValidationError("email", "must be an e-mail address")
        for name in ("address", "bank_info", "custom_settings"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    def is_empty(self) -> bool:
        return not _changed(self)

    def as_row(self) -> dict[str, Any]:
        return {
            name: dict(value) if isinstance(value, Mapping) else value
            for name, value in _changed(self).items()
        }

    def apply(self, agency: Agency) -> Agency:
        return replace(agency, **_changed(self))


@dataclass(slots=True, frozen=True)
class ClientPatch:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    cpf: str | None = None
    avatar_url: str | None = None
    status: ClientStatus | None = None
    address: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_text("name", self.name)
        if self.email is not None and "@" not in self.email:
            raise PatchValidationError("email", "must be an e-mail address")
        if self.status is not None and not isinstance(self.status, ClientStatus):
            try:
                object.__setattr__(self, "status", ClientStatus(str(self.status).upper()))
            except ValueError as exc:
                raise PatchValidationError("status", "unknown status") from exc
        object.__setattr__(self, "address", _frozen(self.address))

    def is_empty(self) -> bool:
        return not _changed(self)

    def as_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for name, value in _changed(self).items():
            if name == "name":
                row["full_name"] = value
            elif name == "status":
                row[name] = value.value
            elif name == "address":
                row[name] = dict(value)
            else:
                row[name] = value
        return row

    def apply(self, client: Client) -> Client:
        return replace(client, **_changed(self))


def _validate_rating(value: int | None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise PatchValidationError("rating", "must be an integer between 1 and 5")


@dataclass(slots=True, frozen=True)
class ReviewPatch:
    rating: int | None = None
    comment: str | None = None
    tags: tuple[str, ...] | None = None
    response: str | None = None

    def __post_init__(self) -> None:
        _validate_rating(self.rating)
        if self.tags is not None:
            object.__setattr__(self, "tags", tuple(str(tag) for tag in self.tags))

    def is_empty(self) -> bool:
        return not _changed(self)

    def as_row(self) -> dict[str, Any]:
        return {
            name: list(value) if isinstance(value, tuple) else value
            for name, value in _changed(self).items()
        }

    def apply(self, review: Review) -> Review:
        return replace(review, **_changed(self))


@dataclass(slots=True, frozen=True)
class ReviewDraft:
    agency_id: str
    client_id: str
    rating: int
    comment: str = ""
    tags: tuple[str, ...] = ()
    booking_id: str | None = None
    trip_id: str | None = None

    def __post_init__(self) -> None:
        _require_text("agency_id", self.agency_id or "")
        _require_text("client_id", self.client_id or "")
        _validate_rating(self.rating)
        object.__setattr__(self, "tags", tuple(str(tag) for tag in self.tags))

    def as_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "agency_id": self.agency_id,
            "client_id": self.client_id,
            "rating": self.rating,
            "comment": self.comment,
            "tags": list(self.tags),
        }
        if self.booking_id:
            row["booking_id"] = self.booking_id
        if self.trip_id:
            row["trip_id"] = self.trip_id
        return row

    def as_patch(self) -> ReviewPatch:
        return ReviewPatch(rating=self.rating, comment=self.comment, tags=self.tags)


@dataclass(slots=True, frozen=True)
class BookingDraft:
    trip_id: str
    client_id: str
    total_price: float
    passengers: int = 1
    payment_method: PaymentMethod = PaymentMethod.PIX
    voucher_code: str | None = None
    passenger_details: tuple[PassengerDetail, ...] = ()

    def __post_init__(self) -> None:
        _require_text("trip_id", self.trip_id or "")
        _require_text("client_id", self.client_id or "")
        _require_non_negative("total_price", self.total_price)
        _require_positive_int("passengers", self.passengers)
        if not isinstance(self.payment_method, PaymentMethod):
            try:
                object.__setattr__(
                    self, "payment_method", PaymentMethod(str(self.payment_method).upper())
                )
            except ValueError as exc:
                raise PatchValidationError("payment_method", "unknown method") from exc
        if self.voucher_code is not None:
            _require_text("voucher_code", self.voucher_code)

    def as_row(self, voucher_code: str) -> dict[str, Any]:
        row: dict[str, Any] = {
            "trip_id": self.trip_id,
            "client_id": self.client_id,
            "total_price": self.total_price,
            "passengers": self.passengers,
            "payment_method": self.payment_method.value,
            "voucher_code": voucher_code,
            "status": "PENDING",
        }
        if self.passenger_details:
            row["passenger_details"] = [
                {
                    "full_name": detail.name,
                    "document": detail.document,
                    "phone": detail.phone,
                    "birth_date": detail.birth_date,
                    "whatsapp": detail.whatsapp,
                }
                for detail in self.passenger_details
            ]
        return row


@dataclass(slots=True, frozen=True)
class PlatformSettingsPatch:
    platform_name: str | None = None
    maintenance_mode: bool | None = None
    support_email: str | None = None
    extra: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_text("platform_name", self.platform_name)
        if self.support_email is not None and "@" not in self.support_email:
            raise PatchValidationError("support_email", "must be an e-mail address")
        object.__setattr__(self, "extra", _frozen(self.extra))

    def as_row(self) -> dict[str, Any]:
        changes = _changed(self)
        row = dict(changes.pop("extra", None) or {})
        row.update(changes)
        return row

    def apply(self, current: PlatformSettings) -> PlatformSettings:
        changes = _changed(self)
        extra = changes.pop("extra", None)
        if extra is not None:
            changes["extra"] = MappingProxyType({**current.extra, **extra})
        return replace(current, **changes)


def itinerary_from(days: Sequence[Mapping[str, Any]]) -> tuple[ItineraryDay, ...]:
    return tuple(ItineraryDay.from_row(day, idx) for idx, day in enumerate(days))


def boarding_points_from(points: Sequence[Mapping[str, Any]]) -> tuple[BoardingPoint, ...]:
    return tuple(BoardingPoint.from_row(point) for point in points)


__all__ = [
    "AgencyPatch",
    "BookingDraft",
    "ClientPatch",
    "PlatformSettingsPatch",
    "ReviewDraft",
    "ReviewPatch",
    "SLUG_MAX_LENGTH",
    "SLUG_MIN_LENGTH",
    "TripDraft",
    "TripPatch",
    "boarding_points_from",
    "itinerary_from",
    "validate_slug",
]

"""Normalized entity records held by the entity cache.

Records are immutable snapshots built from remote rows.  Mutation always goes
through :mod:`tripsync.app.patches` and produces a new record via
:func:`dataclasses.replace`, so a snapshot handed to a reader never changes
underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from tripsync.app.util.number import coerce_float, coerce_int


class UserRole(str, Enum):
    CLIENT = "CLIENT"
    AGENCY = "AGENCY"
    ADMIN = "ADMIN"
    GUIDE = "GUIDE"


class TripCategory(str, Enum):
    PRAIA = "PRAIA"
    AVENTURA = "AVENTURA"
    FAMILIA = "FAMILIA"
    ROMANTICO = "ROMANTICO"
    URBANO = "URBANO"
    NATUREZA = "NATUREZA"
    CULTURA = "CULTURA"
    GASTRONOMICO = "GASTRONOMICO"
    VIDA_NOTURNA = "VIDA_NOTURNA"
    VIAGEM_BARATA = "VIAGEM_BARATA"
    ARTE = "ARTE"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"
    BOLETO = "BOLETO"


class SubscriptionPlan(str, Enum):
    STARTER = "STARTER"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING = "PENDING"


class ClientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class ActivityAction(str, Enum):
    TRIP_CREATED = "TRIP_CREATED"
    TRIP_UPDATED = "TRIP_UPDATED"
    TRIP_DELETED = "TRIP_DELETED"
    TRIP_STATUS_TOGGLED = "TRIP_STATUS_TOGGLED"
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_STATUS_UPDATED = "BOOKING_STATUS_UPDATED"
    REVIEW_SUBMITTED = "REVIEW_SUBMITTED"
    REVIEW_UPDATED = "REVIEW_UPDATED"
    REVIEW_DELETED = "REVIEW_DELETED"
    FAVORITE_TOGGLED = "FAVORITE_TOGGLED"
    CLIENT_PROFILE_UPDATED = "CLIENT_PROFILE_UPDATED"
    AGENCY_SUBSCRIPTION_UPDATED = "AGENCY_SUBSCRIPTION_UPDATED"
    AGENCY_PROFILE_UPDATED = "AGENCY_PROFILE_UPDATED"
    AGENCY_STATUS_TOGGLED = "AGENCY_STATUS_TOGGLED"
    DELETE_USER = "DELETE_USER"
    DELETE_MULTIPLE_USERS = "DELETE_MULTIPLE_USERS"
    DELETE_MULTIPLE_AGENCIES = "DELETE_MULTIPLE_AGENCIES"


class BroadcastAction(str, Enum):
    READ = "READ"
    LIKE = "LIKE"
    DELETE = "DELETE"


PLATFORM_SETTINGS_ID = 1

_EMPTY_MAPPING: Mapping[str, Any] = MappingProxyType({})


def _enum_value(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        return default


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _string_tuple(values: Any) -> tuple[str, ...]:
    if not values or isinstance(values, (str, bytes)):
        return ()
    return tuple(str(item) for item in values if item is not None)


def _string_set(values: Any) -> frozenset[str]:
    return frozenset(_string_tuple(values))


def _frozen_mapping(value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        return _EMPTY_MAPPING
    return MappingProxyType(dict(value))


def parse_date(value: Any) -> date | None:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp into a :class:`date`."""

    if value is None:
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


@dataclass(slots=True, frozen=True)
class ItineraryDay:
    day: int
    title: str
    description: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any], position: int) -> "ItineraryDay":
        return cls(
            day=coerce_int(row.get("day"), default=position + 1) or position + 1,
            title=_text(row.get("title")),
            description=_text(row.get("description")),
        )

    def as_row(self) -> dict[str, Any]:
        return {"day": self.day, "title": self.title, "description": self.description}


@dataclass(slots=True, frozen=True)
class BoardingPoint:
    time: str
    location: str
    id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BoardingPoint":
        return cls(
            time=_text(row.get("time")),
            location=_text(row.get("location")),
            id=_optional_text(row.get("id")),
        )

    def as_row(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"time": self.time, "location": self.location}
        if self.id:
            payload["id"] = self.id
        return payload


@dataclass(slots=True, frozen=True)
class PassengerDetail:
    name: str
    document: str | None = None
    phone: str | None = None
    birth_date: str | None = None
    whatsapp: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PassengerDetail":
        return cls(
            name=_text(row.get("full_name") or row.get("name")),
            document=_optional_text(row.get("document") or row.get("cpf")),
            phone=_optional_text(row.get("phone")),
            birth_date=_optional_text(row.get("birth_date") or row.get("birthDate")),
            whatsapp=_optional_text(row.get("whatsapp")),
        )


@dataclass(slots=True, frozen=True)
class Trip:
    """Trip metadata.

    ``images`` is ``None`` until the images were fetched for this trip; an
    empty tuple means the trip genuinely has no images.
    """

    id: str
    agency_id: str
    title: str
    slug: str
    destination: str = ""
    description: str = ""
    price: float = 0.0
    start_date: date | None = None
    end_date: date | None = None
    stored_duration_days: int | None = None
    category: TripCategory = TripCategory.PRAIA
    tags: tuple[str, ...] = ()
    traveler_types: tuple[str, ...] = ()
    itinerary: tuple[ItineraryDay, ...] = ()
    boarding_points: tuple[BoardingPoint, ...] = ()
    payment_methods: tuple[str, ...] = ()
    included: tuple[str, ...] = ()
    not_included: tuple[str, ...] = ()
    is_active: bool = True
    deleted_at: str | None = None
    views: int = 0
    sales: int = 0
    featured: bool = False
    featured_in_hero: bool = False
    popular_near_sp: bool = False
    latitude: float | None = None
    longitude: float | None = None
    max_guests: int | None = None
    rating: float = 0.0
    total_reviews: int = 0
    operational_data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)
    images: tuple[str, ...] | None = None

    @property
    def duration_days(self) -> int | None:
        if self.start_date and self.end_date:
            return (self.end_date - self.start_date).days + 1
        return self.stored_duration_days

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def images_loaded(self) -> bool:
        return self.images is not None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Trip":
        itinerary_rows = row.get("itinerary") or []
        boarding_rows = row.get("boarding_points") or []
        images: tuple[str, ...] | None = None
        raw_images = row.get("trip_images")
        if isinstance(raw_images, list):
            ordered = sorted(
                (img for img in raw_images if isinstance(img, Mapping)),
                key=lambda img: coerce_int(img.get("position"), default=0) or 0,
            )
            images = tuple(str(img.get("image_url")) for img in ordered if img.get("image_url"))
        return cls(
            id=_text(row.get("id")),
            agency_id=_text(row.get("agency_id")),
            title=_text(row.get("title")),
            slug=_text(row.get("slug")),
            destination=_text(row.get("destination")),
            description=_text(row.get("description")),
            price=coerce_float(row.get("price"), default=0.0) or 0.0,
            start_date=parse_date(row.get("start_date")),
            end_date=parse_date(row.get("end_date")),
            stored_duration_days=coerce_int(row.get("duration_days")),
            category=_enum_value(TripCategory, row.get("category"), TripCategory.PRAIA),
            tags=_string_tuple(row.get("tags")),
            traveler_types=_string_tuple(row.get("traveler_types")),
            itinerary=tuple(
                ItineraryDay.from_row(item, idx)
                for idx, item in enumerate(itinerary_rows)
                if isinstance(item, Mapping)
            ),
            boarding_points=tuple(
                BoardingPoint.from_row(item)
                for item in boarding_rows
                if isinstance(item, Mapping)
            ),
            payment_methods=_string_tuple(row.get("payment_methods")),
            included=_string_tuple(row.get("included")),
            not_included=_string_tuple(row.get("not_included")),
            is_active=bool(row.get("is_active", True)),
            deleted_at=_optional_text(row.get("deleted_at")),
            views=coerce_int(row.get("views_count"), default=0) or 0,
            sales=coerce_int(row.get("sales_count"), default=0) or 0,
            featured=bool(row.get("featured") or False),
            featured_in_hero=bool(row.get("featured_in_hero") or False),
            popular_near_sp=bool(row.get("popular_near_sp") or False),
            latitude=coerce_float(row.get("latitude")),
            longitude=coerce_float(row.get("longitude")),
            max_guests=coerce_int(row.get("max_guests")),
            rating=coerce_float(row.get("rating"), default=0.0) or 0.0,
            total_reviews=coerce_int(row.get("total_reviews"), default=0) or 0,
            operational_data=_frozen_mapping(row.get("operational_data")),
            images=images,
        )


@dataclass(slots=True, frozen=True)
class Subscription:
    plan: SubscriptionPlan = SubscriptionPlan.BASIC
    status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    expires_at: str | None = None


@dataclass(slots=True, frozen=True)
class Agency:
    """Agency record.

    ``agency_id`` is the agencies table key used by trips and reviews;
    ``user_id`` is the identity of the owning login.  Both must be kept.
    """

    agency_id: str
    user_id: str
    name: str
    slug: str
    email: str = ""
    description: str = ""
    logo_url: str | None = None
    cnpj: str | None = None
    phone: str | None = None
    whatsapp: str | None = None
    website: str | None = None
    is_active: bool = False
    subscription: Subscription = field(default_factory=Subscription)
    address: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)
    bank_info: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)
    custom_settings: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)
    deleted_at: str | None = None

    @property
    def id(self) -> str:
        return self.agency_id

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Agency":
        is_active = bool(row.get("is_active") or False)
        raw_status = row.get("subscription_status")
        default_status = (
            SubscriptionStatus.ACTIVE if is_active else SubscriptionStatus.INACTIVE
        )
        status = (
            _enum_value(SubscriptionStatus, raw_status, default_status)
            if raw_status
            else default_status
        )
        return cls(
            agency_id=_text(row.get("id")),
            user_id=_text(row.get("user_id")),
            name=_text(row.get("name")),
            slug=_text(row.get("slug")),
            email=_text(row.get("email")),
            description=_text(row.get("description")),
            logo_url=_optional_text(row.get("logo_url")),
            cnpj=_optional_text(row.get("cnpj")),
            phone=_optional_text(row.get("phone")),
            whatsapp=_optional_text(row.get("whatsapp")),
            website=_optional_text(row.get("website")),
            is_active=is_active,
            subscription=Subscription(
                plan=_enum_value(
                    SubscriptionPlan, row.get("subscription_plan"), SubscriptionPlan.BASIC
                ),
                status=status,
                expires_at=_optional_text(row.get("subscription_expires_at")),
            ),
            address=_frozen_mapping(row.get("address")),
            bank_info=_frozen_mapping(row.get("bank_info")),
            custom_settings=_frozen_mapping(row.get("custom_settings")),
            deleted_at=_optional_text(row.get("deleted_at")),
        )


@dataclass(slots=True, frozen=True)
class Client:
    id: str
    name: str
    email: str = ""
    role: UserRole = UserRole.CLIENT
    avatar_url: str | None = None
    phone: str | None = None
    cpf: str | None = None
    favorites: frozenset[str] = frozenset()
    status: ClientStatus = ClientStatus.ACTIVE
    address: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)
    created_at: str | None = None
    last_sign_in_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_row(
        cls, row: Mapping[str, Any], favorites: Sequence[str] | None = None
    ) -> "Client":
        return cls(
            id=_text(row.get("id")),
            name=_text(row.get("full_name"), "Usuário") or "Usuário",
            email=_text(row.get("email")),
            role=_enum_value(UserRole, row.get("role"), UserRole.CLIENT),
            avatar_url=_optional_text(row.get("avatar_url")),
            phone=_optional_text(row.get("phone")),
            cpf=_optional_text(row.get("cpf")),
            favorites=_string_set(favorites),
            status=_enum_value(ClientStatus, row.get("status"), ClientStatus.ACTIVE),
            address=_frozen_mapping(row.get("address")),
            created_at=_optional_text(row.get("created_at")),
            last_sign_in_at=_optional_text(row.get("last_sign_in_at")),
            deleted_at=_optional_text(row.get("deleted_at")),
        )


@dataclass(slots=True, frozen=True)
class Booking:
    id: str
    trip_id: str
    client_id: str
    status: BookingStatus = BookingStatus.PENDING
    total_price: float = 0.0
    passengers: int = 1
    voucher_code: str = ""
    payment_method: PaymentMethod = PaymentMethod.PIX
    created_at: str | None = None
    passenger_details: tuple[PassengerDetail, ...] | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Booking":
        raw_details = row.get("passenger_details")
        details: tuple[PassengerDetail, ...] | None = None
        if isinstance(raw_details, list):
            details = tuple(
                PassengerDetail.from_row(item)
                for item in raw_details
                if isinstance(item, Mapping)
            )
        return cls(
            id=_text(row.get("id")),
            trip_id=_text(row.get("trip_id")),
            client_id=_text(row.get("client_id")),
            status=_enum_value(BookingStatus, row.get("status"), BookingStatus.PENDING),
            total_price=coerce_float(row.get("total_price"), default=0.0) or 0.0,
            passengers=coerce_int(row.get("passengers"), default=1, minimum=1) or 1,
            voucher_code=_text(row.get("voucher_code")),
            payment_method=_enum_value(
                PaymentMethod, row.get("payment_method"), PaymentMethod.PIX
            ),
            created_at=_optional_text(row.get("created_at") or row.get("date")),
            passenger_details=details,
        )


@dataclass(slots=True, frozen=True)
class Review:
    """Agency review; at most one per (agency, client) pair."""

    id: str
    agency_id: str
    client_id: str
    rating: int
    comment: str = ""
    tags: tuple[str, ...] = ()
    booking_id: str | None = None
    trip_id: str | None = None
    response: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Review":
        return cls(
            id=_text(row.get("id")),
            agency_id=_text(row.get("agency_id")),
            client_id=_text(row.get("client_id")),
            rating=coerce_int(row.get("rating"), default=0) or 0,
            comment=_text(row.get("comment")),
            tags=_string_tuple(row.get("tags")),
            booking_id=_optional_text(row.get("booking_id")),
            trip_id=_optional_text(row.get("trip_id")),
            response=_optional_text(row.get("response")),
            created_at=_optional_text(row.get("created_at")),
        )


@dataclass(slots=True, frozen=True)
class AuditLog:
    id: str
    admin_email: str
    action: str
    details: str
    created_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AuditLog":
        return cls(
            id=_text(row.get("id")),
            admin_email=_text(row.get("admin_email")),
            action=_text(row.get("action")),
            details=_text(row.get("details")),
            created_at=_text(row.get("created_at")),
        )


@dataclass(slots=True, frozen=True)
class ActivityLog:
    id: str
    user_id: str | None
    action_type: str
    details: Mapping[str, Any]
    created_at: str
    agency_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ActivityLog":
        return cls(
            id=_text(row.get("id")),
            user_id=_optional_text(row.get("user_id")),
            action_type=_text(row.get("action_type")),
            details=_frozen_mapping(row.get("details")),
            created_at=_text(row.get("created_at")),
            agency_id=_optional_text(row.get("agency_id")),
        )


@dataclass(slots=True, frozen=True)
class PlatformSettings:
    id: int = PLATFORM_SETTINGS_ID
    platform_name: str = "ViajaStore"
    maintenance_mode: bool = False
    support_email: str | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PlatformSettings":
        known = {"id", "platform_name", "maintenance_mode", "support_email"}
        return cls(
            id=PLATFORM_SETTINGS_ID,
            platform_name=_text(row.get("platform_name"), "ViajaStore") or "ViajaStore",
            maintenance_mode=bool(row.get("maintenance_mode") or False),
            support_email=_optional_text(row.get("support_email")),
            extra=_frozen_mapping({k: v for k, v in row.items() if k not in known}),
        )


THEME_COLOR_KEYS = ("primary", "secondary", "background", "text")


@dataclass(slots=True, frozen=True)
class AgencyTheme:
    """Storefront colors of one agency; layout options ride along in ``extra``."""

    agency_id: str
    colors: Mapping[str, str] = field(default_factory=lambda: _EMPTY_MAPPING)
    updated_at: str | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AgencyTheme":
        known = {"id", "agency_id", "colors", "updated_at"}
        colors = row.get("colors")
        if isinstance(colors, Mapping):
            colors = {str(key): str(value) for key, value in colors.items() if value is not None}
        return cls(
            agency_id=_text(row.get("agency_id")),
            colors=_frozen_mapping(colors),
            updated_at=_optional_text(row.get("updated_at")),
            extra=_frozen_mapping({k: v for k, v in row.items() if k not in known}),
        )


@dataclass(slots=True, frozen=True)
class BroadcastMessage:
    id: str
    title: str
    message: str
    target_roles: frozenset[str]
    created_at: str
    created_by: str | None = None

    def targets(self, role: UserRole | str) -> bool:
        value = role.value if isinstance(role, UserRole) else str(role)
        return value in self.target_roles

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BroadcastMessage":
        return cls(
            id=_text(row.get("id")),
            title=_text(row.get("title")),
            message=_text(row.get("message")),
            target_roles=_string_set(row.get("target_roles")),
            created_at=_text(row.get("created_at")),
            created_by=_optional_text(row.get("created_by")),
        )


@dataclass(slots=True, frozen=True)
class BroadcastInteraction:
    broadcast_id: str
    user_id: str
    read: bool = False
    liked: bool = False
    deleted: bool = False
    id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BroadcastInteraction":
        return cls(
            broadcast_id=_text(row.get("broadcast_id")),
            user_id=_text(row.get("user_id")),
            read=bool(row.get("read_at") or row.get("is_read") or False),
            liked=bool(row.get("is_liked") or False),
            deleted=bool(row.get("deleted_at") or row.get("is_deleted") or False),
            id=_optional_text(row.get("id")),
        )


__all__ = [
    "ActivityAction",
    "ActivityLog",
    "Agency",
    "AgencyTheme",
    "AuditLog",
    "BoardingPoint",
    "Booking",
    "BookingStatus",
    "BroadcastAction",
    "BroadcastInteraction",
    "BroadcastMessage",
    "Client",
    "ClientStatus",
    "ItineraryDay",
    "PLATFORM_SETTINGS_ID",
    "PassengerDetail",
    "PaymentMethod",
    "PlatformSettings",
    "Review",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "THEME_COLOR_KEYS",
    "Trip",
    "TripCategory",
    "UserRole",
    "parse_date",
]

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

DEFAULT_REFRESH_TABLES: tuple[str, ...] = (
    "trips",
    "agencies",
    "profiles",
    "bookings",
    "agency_reviews",
    "favorites",
    "audit_logs",
    "activity_logs",
    "platform_settings",
    "broadcast_messages",
)
FALLBACK_CLIENT_NAME = "Viajante"
FALLBACK_AGENCY_NAME = "Agência"
FALLBACK_TRIP_TITLE = "Viagem indisponível"


@dataclass(slots=True, frozen=True)
class RefreshConfig:
    """Debounce window and watched tables for the refresh controller."""

    debounce_seconds: float = 1.5
    tables: tuple[str, ...] = DEFAULT_REFRESH_TABLES

    @classmethod
    def from_settings(cls, settings: Any) -> "RefreshConfig":
        tables = settings.get("REFRESH.tables") or DEFAULT_REFRESH_TABLES
        return cls(
            debounce_seconds=float(settings.get("REFRESH.debounce_seconds", 1.5)),
            tables=tuple(str(table) for table in tables),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class MutationConfig:
    """Budgets applied to remote writes."""

    write_timeout: float = 15.0
    plan_period_days: int = 30
    slug_max_attempts: int = 100
    avatar_bucket: str = "avatars"
    reset_redirect: str | None = None

    @classmethod
    def from_settings(cls, settings: Any) -> "MutationConfig":
        return cls(
            write_timeout=float(settings.get("MUTATIONS.write_timeout", 15.0)),
            plan_period_days=int(settings.get("MUTATIONS.plan_period_days", 30)),
            slug_max_attempts=int(settings.get("SLUGS.max_attempts", 100)),
            avatar_bucket=str(settings.get("GATEWAY.avatar_bucket") or "avatars"),
            reset_redirect=settings.get("GATEWAY.reset_redirect") or None,
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class QueryConfig:
    """Defaults and ceilings for in-memory searches."""

    default_limit: int = 12
    max_limit: int = 100
    default_radius_km: float = 100.0

    @classmethod
    def from_settings(cls, settings: Any) -> "QueryConfig":
        return cls(
            default_limit=int(settings.get("QUERY.default_limit", 12)),
            max_limit=int(settings.get("QUERY.max_limit", 100)),
            default_radius_km=float(settings.get("QUERY.default_radius_km", 100.0)),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class ViewConfig:
    """Fallback labels and passenger cache sizing for derived views."""

    passenger_cache_size: int = 256
    passenger_cache_ttl: float = 300.0
    fallback_client_name: str = FALLBACK_CLIENT_NAME
    fallback_agency_name: str = FALLBACK_AGENCY_NAME
    fallback_trip_title: str = FALLBACK_TRIP_TITLE

    @classmethod
    def from_settings(cls, settings: Any) -> "ViewConfig":
        return cls(
            passenger_cache_size=int(settings.get("VIEWS.passenger_cache.maxsize", 256)),
            passenger_cache_ttl=float(settings.get("VIEWS.passenger_cache.ttl", 300)),
            fallback_client_name=str(
                settings.get("VIEWS.fallback_client_name") or FALLBACK_CLIENT_NAME
            ),
            fallback_agency_name=str(
                settings.get("VIEWS.fallback_agency_name") or FALLBACK_AGENCY_NAME
            ),
            fallback_trip_title=str(
                settings.get("VIEWS.fallback_trip_title") or FALLBACK_TRIP_TITLE
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class SyncConfig:
    """Aggregate configuration for the sync layer."""

    refresh: RefreshConfig
    mutations: MutationConfig
    query: QueryConfig
    views: ViewConfig

    @classmethod
    def from_settings(cls, settings: Any) -> "SyncConfig":
        return cls(
            refresh=RefreshConfig.from_settings(settings),
            mutations=MutationConfig.from_settings(settings),
            query=QueryConfig.from_settings(settings),
            views=ViewConfig.from_settings(settings),
        )

    @classmethod
    def defaults(cls) -> "SyncConfig":
        return cls(
            refresh=RefreshConfig(),
            mutations=MutationConfig(),
            query=QueryConfig(),
            views=ViewConfig(),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "refresh": self.refresh.as_dict(),
            "mutations": self.mutations.as_dict(),
            "query": self.query.as_dict(),
            "views": self.views.as_dict(),
        }


__all__ = [
    "DEFAULT_REFRESH_TABLES",
    "MutationConfig",
    "QueryConfig",
    "RefreshConfig",
    "SyncConfig",
    "ViewConfig",
]

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dynaconf import Dynaconf

PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent

logger = logging.getLogger(__name__)


def _resolve_config_dir() -> Path | None:
    env_override = os.environ.get("TRIPSYNC_CONFIG_DIR")
    candidates: list[Path] = []

    if env_override:
        candidates.append(Path(env_override).expanduser())

    candidates.append(PROJECT_ROOT / "config")
    candidates.append(PROJECT_ROOT.parent / "config")

    for candidate in candidates:
        expanded = candidate.expanduser()
        if expanded.is_dir():
            return expanded.resolve()

    if env_override:
        searched = ", ".join(str(path) for path in candidates)
        raise RuntimeError(
            f"Unable to locate configuration directory. Searched: {searched}. "
            "Set TRIPSYNC_CONFIG_DIR to a valid directory."
        )
    return None


CONFIG_DIR = _resolve_config_dir()


DEFAULTS: dict[str, Any] = {
    "APP_NAME": "tripsync",
    "LOG_LEVEL": "INFO",
    "GATEWAY": {
        "url": "",
        "key": "",
        "timeout": 10.0,
        "placeholder_urls": [
            "https://seu-projeto-id.supabase.co",
            "https://placeholder.supabase.co",
        ],
        "avatar_bucket": "avatars",
        "reset_redirect": "",
    },
    "MUTATIONS": {
        "write_timeout": 15.0,
        "plan_period_days": 30,
    },
    "REFRESH": {
        "debounce_seconds": 1.5,
        "tables": [
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
        ],
    },
    "QUERY": {
        "default_limit": 12,
        "max_limit": 100,
        "default_radius_km": 100.0,
    },
    "VIEWS": {
        "passenger_cache": {
            "maxsize": 256,
            "ttl": 300,
        },
        "fallback_client_name": "Viajante",
        "fallback_agency_name": "Agência",
        "fallback_trip_title": "Viagem indisponível",
    },
    "SLUGS": {
        "max_attempts": 100,
    },
    "CLIENT_STORE": {
        "path": "client_state.sqlite3",
        "pool_size": 4,
        "pool_acquire_timeout": 10,
        "timeout": 5.0,
    },
}

settings_files: list[Path] = []
if CONFIG_DIR is not None:
    settings_files = [
        CONFIG_DIR / "settings.toml",
        CONFIG_DIR / ".secrets.toml",
        CONFIG_DIR / "settings.local.toml",
    ]

settings = Dynaconf(
    envvar_prefix="TRIPSYNC",
    settings_files=settings_files,
    environments=True,
    env_switcher="TRIPSYNC_ENV",
    load_dotenv=True,
    envvar_parse_values=True,
    merge_enabled=True,
    defaults=DEFAULTS,
)


_MISSING = object()


def _ensure_defaults(prefix: str, defaults: dict[str, Any]) -> None:
    for key, value in defaults.items():
        dotted = f"{prefix}.{key}" if prefix else key
        existing = settings.get(dotted, _MISSING)

        if isinstance(value, dict):
            if existing is _MISSING:
                settings.set(dotted, value.copy())
                existing = settings.get(dotted, _MISSING)
            # Only recurse into mappings so user-provided primitives survive.
            if isinstance(existing, Mapping):
                _ensure_defaults(dotted, value)
            continue

        if existing is _MISSING:
            settings.set(dotted, value)


_ensure_defaults("", DEFAULTS)


def _normalise_gateway_url() -> None:
    raw_url = str(settings.get("GATEWAY.url") or "").strip().rstrip("/")
    settings.set("GATEWAY.url", raw_url)


def _normalise_positive(key: str, default: float) -> None:
    raw = settings.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        value = default
    if value <= 0:
        value = default
    settings.set(key, value)


_normalise_gateway_url()
_normalise_positive("MUTATIONS.write_timeout", DEFAULTS["MUTATIONS"]["write_timeout"])
_normalise_positive(
    "REFRESH.debounce_seconds", DEFAULTS["REFRESH"]["debounce_seconds"]
)
_normalise_positive("GATEWAY.timeout", DEFAULTS["GATEWAY"]["timeout"])

__all__ = ["settings"]

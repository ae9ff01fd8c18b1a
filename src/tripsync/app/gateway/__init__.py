"""Remote store gateway implementations."""

from __future__ import annotations

import logging
from typing import Any

from .base import (
    ChangeHub,
    ChangeListener,
    Filter,
    Order,
    RemoteStoreGateway,
    Row,
    Unsubscribe,
    eq,
    in_,
    is_null,
    neq,
)
from .errors import (
    GatewayError,
    GatewayUnavailable,
    NotFound,
    PatchValidationError,
    RemoteRejection,
    UNIQUE_VIOLATION,
    WriteTimeout,
)
from .memory import InMemoryGateway
from .postgrest import PostgrestGateway

logger = logging.getLogger(__name__)


def create_gateway(settings: Any) -> RemoteStoreGateway:
    """Build the configured gateway or raise :class:`GatewayUnavailable`."""

    url = str(settings.get("GATEWAY.url") or "").strip()
    key = str(settings.get("GATEWAY.key") or "").strip()
    placeholders = {
        str(item).rstrip("/") for item in settings.get("GATEWAY.placeholder_urls") or ()
    }
    if not url or not key or url.rstrip("/") in placeholders or key == "placeholder":
        logger.warning(
            "Remote store credentials look missing or placeholder; running on fixtures"
        )
        raise GatewayUnavailable("Remote store is not configured")
    logger.info("Remote store configured at %s...", url[:20])
    return PostgrestGateway(url, key, timeout=float(settings.get("GATEWAY.timeout", 10.0)))


__all__ = [
    "ChangeHub",
    "ChangeListener",
    "Filter",
    "GatewayError",
    "GatewayUnavailable",
    "InMemoryGateway",
    "NotFound",
    "Order",
    "PatchValidationError",
    "PostgrestGateway",
    "RemoteRejection",
    "RemoteStoreGateway",
    "Row",
    "UNIQUE_VIOLATION",
    "Unsubscribe",
    "WriteTimeout",
    "create_gateway",
    "eq",
    "in_",
    "is_null",
    "neq",
]

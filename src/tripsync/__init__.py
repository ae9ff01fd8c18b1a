"""tripsync marketplace sync layer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:  # pragma: no cover - import only for static analysis
    from .app.services.container import MarketplaceServices

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: Any) -> int:
    """Apply ``LOG_LEVEL`` to the root logger; returns the numeric level."""

    name = str(settings.get("LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    return level


def create_services(settings: Any = None, **kwargs: Any) -> MarketplaceServices:
    from .app.services.container import MarketplaceServices

    if settings is None:
        from .settings import settings as default_settings

        settings = default_settings
    configure_logging(settings)
    return MarketplaceServices.create(settings, **kwargs)


__all__ = ["configure_logging", "create_services"]

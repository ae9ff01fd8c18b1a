from __future__ import annotations

import logging
import time

from tripsync.app.gateway import GatewayError, RemoteStoreGateway, eq, neq
from tripsync.app.gateway.errors import PatchValidationError
from tripsync.app.patches import SLUG_MAX_LENGTH, SLUG_MIN_LENGTH, validate_slug
from tripsync.app.util.text import slugify

logger = logging.getLogger(__name__)

SLUG_TABLES = frozenset({"trips", "agencies"})
_FILLER = {"trips": "viagem", "agencies": "agencia"}


def slug_from_name(name: str, *, table: str = "trips") -> str:
    """Slugify ``name``, padding results too short to be valid."""

    slug = slugify(name or "")[:SLUG_MAX_LENGTH].strip("-")
    if len(slug) < SLUG_MIN_LENGTH:
        filler = _FILLER.get(table, "item")
        slug = f"{filler}-{slug}" if slug else filler
    return slug


def _suffixed(base: str, suffix: object) -> str:
    """Join ``base`` and ``suffix``, trimming the base to stay within the limit."""

    tail = f"-{suffix}"
    head = base[: SLUG_MAX_LENGTH - len(tail)].rstrip("-")
    return f"{head}{tail}"


def is_valid_slug(slug: str | None) -> bool:
    if not slug:
        return False
    try:
        validate_slug(slug)
    except PatchValidationError:
        return False
    return True


def normalize_slug(slug: str | None, fallback_name: str, *, table: str = "trips") -> str:
    """Keep a well-formed ``slug``; otherwise derive one from ``fallback_name``."""

    candidate = (slug or "").strip()
    if is_valid_slug(candidate):
        return candidate
    return slug_from_name(fallback_name, table=table)


async def generate_unique_slug(
    gateway: RemoteStoreGateway | None,
    table: str,
    base_slug: str,
    *,
    exclude_id: str | None = None,
    max_attempts: int = 100,
) -> str:
    """Return ``base_slug`` or the first free ``base_slug-N`` in ``table``.

    Gives up after ``max_attempts`` lookups and appends a millisecond timestamp.
    Without a gateway the base slug is returned unchanged.
    """

    if table not in SLUG_TABLES:
        raise ValueError(f"{table!r} has no slug column")
    if gateway is None:
        logger.warning("No remote store configured; using base slug %s", base_slug)
        return base_slug

    slug = base_slug
    counter = 1
    while counter <= max_attempts:
        filters = [eq("slug", slug)]
        if exclude_id:
            filters.append(neq("id", exclude_id))
        try:
            rows = await gateway.select(table, filters=filters, limit=1)
        except GatewayError as exc:
            logger.warning("Slug lookup on %s failed: %s", table, exc)
            return _suffixed(base_slug, counter) if counter > 1 else base_slug
        if not rows:
            return slug
        slug = _suffixed(base_slug, counter)
        counter += 1

    logger.warning(
        "No unique slug for %s after %d attempts; using timestamp suffix",
        base_slug,
        max_attempts,
    )
    return _suffixed(base_slug, int(time.time() * 1000))


__all__ = [
    "SLUG_TABLES",
    "generate_unique_slug",
    "is_valid_slug",
    "normalize_slug",
    "slug_from_name",
]

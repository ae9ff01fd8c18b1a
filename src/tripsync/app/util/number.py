"""Small helpers for numeric parsing of remote rows."""

from __future__ import annotations


def coerce_int(
    value: object | None,
    *,
    default: int | None = None,
    minimum: int | None = None,
) -> int | None:
    """Return an int parsed from ``value`` or ``default`` when invalid.

    Integral floats (``3.0``) are accepted since JSON numeric columns often
    arrive that way.
    """

    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        try:
            as_float = float(str(value).strip())
        except (TypeError, ValueError):
            return default
        if not as_float.is_integer():
            return default
        parsed = int(as_float)
    if minimum is not None and parsed < minimum:
        return default
    return parsed


def coerce_float(
    value: object | None,
    *,
    default: float | None = None,
    minimum: float | None = None,
) -> float | None:
    """Return a float parsed from ``value`` or ``default`` when invalid."""

    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    if parsed != parsed:  # NaN
        return default
    if minimum is not None and parsed < minimum:
        return default
    return parsed


__all__ = [
    "coerce_int",
    "coerce_float",
]

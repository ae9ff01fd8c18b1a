"""Text folding and slug helpers shared by queries and slug generation."""

from __future__ import annotations

import re
import unicodedata
from functools import lru_cache

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")
_MULTI_DASH = re.compile(r"-{2,}")
SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


@lru_cache(maxsize=4096)
def fold_text(value: str) -> str:
    """Lowercase ``value`` and strip diacritics (``"Iguaçu"`` -> ``"iguacu"``)."""

    decomposed = unicodedata.normalize("NFKD", str(value or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold().strip()


def slugify(value: str) -> str:
    """Return a lowercase, hyphenated ASCII slug for ``value``."""

    folded = fold_text(value)
    ascii_only = folded.encode("ascii", "ignore").decode("ascii")
    slug = _NON_SLUG_CHARS.sub("-", ascii_only)
    slug = _MULTI_DASH.sub("-", slug)
    return slug.strip("-")


__all__ = ["SLUG_PATTERN", "fold_text", "slugify"]

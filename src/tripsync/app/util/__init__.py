"""Utility helpers for application-wide functionality."""

from .number import coerce_float, coerce_int
from .text import fold_text, slugify

__all__ = [
    "coerce_float",
    "coerce_int",
    "fold_text",
    "slugify",
]

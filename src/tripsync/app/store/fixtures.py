"""Built-in dataset used when no remote store is configured."""

from __future__ import annotations

import copy
from functools import lru_cache
from pathlib import Path
from typing import Any

import orjson

from tripsync.app.gateway.memory import InMemoryGateway

FIXTURE_PATH = Path(__file__).resolve().with_name("fixtures.json")


@lru_cache(maxsize=1)
def _load_fixture_tables() -> dict[str, list[dict[str, Any]]]:
    raw = orjson.loads(FIXTURE_PATH.read_bytes())
    return {str(table): list(rows) for table, rows in raw.items()}


def fixture_tables() -> dict[str, list[dict[str, Any]]]:
    """Return a fresh deep copy of the fixture rows keyed by table."""

    return copy.deepcopy(_load_fixture_tables())


def fixture_gateway() -> InMemoryGateway:
    """Return an in-memory gateway seeded with the fixture dataset."""

    return InMemoryGateway(fixture_tables())


__all__ = ["FIXTURE_PATH", "fixture_gateway", "fixture_tables"]

"""Dictionary-backed gateway used for local runs and tests.

Behaves like the hosted store as far as the sync layer can observe: rows get
ULID identities and ``created_at`` stamps, unique columns raise
:class:`RemoteRejection` with code ``23505``, every successful write publishes
a change signal for its table, and the counter procedures are atomic.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from ulid import ULID

from .base import ChangeHub, ChangeListener, Filter, Order, Row, Unsubscribe
from .errors import RemoteRejection, UNIQUE_VIOLATION

logger = logging.getLogger(__name__)

DEFAULT_UNIQUE_KEYS: dict[str, tuple[tuple[str, ...], ...]] = {
    "trips": (("slug",),),
    "agencies": (("slug",),),
    "bookings": (("voucher_code",),),
    "favorites": (("user_id", "trip_id"),),
    "broadcast_interactions": (("broadcast_id", "user_id"),),
    "agency_themes": (("agency_id",),),
}

COUNTER_PROCEDURES: dict[str, str] = {
    "increment_trip_views": "views_count",
    "increment_trip_sales": "sales_count",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryGateway:
    """In-process implementation of :class:`RemoteStoreGateway`."""

    def __init__(
        self,
        tables: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
        *,
        unique_keys: Mapping[str, tuple[tuple[str, ...], ...]] | None = None,
        base_url: str = "memory://store",
        echo_changes: bool = True,
    ) -> None:
        self._tables: dict[str, dict[str, Row]] = defaultdict(dict)
        self._unique = dict(DEFAULT_UNIQUE_KEYS if unique_keys is None else unique_keys)
        self._objects: dict[tuple[str, str], bytes] = {}
        self._hub = ChangeHub()
        self._base_url = base_url.rstrip("/")
        self._echo_changes = echo_changes
        self._failures: dict[tuple[str, str | None], list[BaseException]] = defaultdict(list)
        self._delays: dict[tuple[str, str | None], float] = {}
        self.calls: list[tuple[str, str]] = []
        self.password_resets: list[str] = []
        for table, rows in (tables or {}).items():
            for row in rows:
                stored = dict(copy.deepcopy(row))
                stored.setdefault("id", str(ULID()))
                self._tables[table][str(stored["id"])] = stored

    # -- test hooks -------------------------------------------------------

    def fail_next(
        self,
        operation: str,
        table: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        """Make the next ``operation`` on ``table`` raise ``error``."""

        exc = error or RemoteRejection("simulated failure", code="P0001")
        self._failures[(operation, table)].append(exc)

    def delay(self, operation: str, table: str | None, seconds: float) -> None:
        """Sleep ``seconds`` before completing ``operation`` on ``table``."""

        self._delays[(operation, table)] = seconds

    def rows(self, table: str) -> list[Row]:
        return [copy.deepcopy(row) for row in self._tables.get(table, {}).values()]

    def publish_change(self, table: str) -> None:
        self._hub.publish(table)

    # -- gateway surface --------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        await self._enter("select", table)
        rows = [
            copy.deepcopy(row)
            for row in self._tables.get(table, {}).values()
            if all(flt.matches(row) for flt in filters)
        ]
        if order is not None:
            present = [row for row in rows if row.get(order.column) is not None]
            missing = [row for row in rows if row.get(order.column) is None]
            present.sort(key=lambda row: row[order.column], reverse=order.descending)
            rows = present + missing
        if limit is not None:
            rows = rows[: max(limit, 0)]
        return rows

    async def select_one(self, table: str, *, filters: Sequence[Filter]) -> Row | None:
        rows = await self.select(table, filters=filters)
        if len(rows) > 1:
            raise RemoteRejection(
                "JSON object requested, multiple (or no) rows returned", code="PGRST116"
            )
        return rows[0] if rows else None

    async def insert(
        self, table: str, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> list[Row]:
        await self._enter("insert", table)
        batch = [rows] if isinstance(rows, Mapping) else list(rows)
        prepared: list[Row] = []
        for raw in batch:
            row = dict(copy.deepcopy(raw))
            row.setdefault("id", str(ULID()))
            row.setdefault("created_at", _now_iso())
            prepared.append(row)
        for idx, row in enumerate(prepared):
            self._check_unique(table, row, pending=prepared[:idx])
        store = self._tables[table]
        for row in prepared:
            store[str(row["id"])] = row
        self._changed(table)
        return [copy.deepcopy(row) for row in prepared]

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Sequence[Filter]
    ) -> list[Row]:
        await self._enter("update", table)
        if not filters:
            raise RemoteRejection("UPDATE requires a WHERE clause", code="21000")
        store = self._tables.get(table, {})
        targets = [row for row in store.values() if all(f.matches(row) for f in filters)]
        staged = [{**row, **copy.deepcopy(dict(values))} for row in targets]
        for candidate in staged:
            self._check_unique(table, candidate, ignore_id=str(candidate["id"]))
        for candidate in staged:
            store[str(candidate["id"])] = candidate
        if staged:
            self._changed(table)
        return [copy.deepcopy(row) for row in staged]

    async def delete(self, table: str, *, filters: Sequence[Filter]) -> int:
        await self._enter("delete", table)
        if not filters:
            raise RemoteRejection("DELETE requires a WHERE clause", code="21000")
        store = self._tables.get(table, {})
        doomed = [key for key, row in store.items() if all(f.matches(row) for f in filters)]
        for key in doomed:
            del store[key]
        if doomed:
            self._changed(table)
        return len(doomed)

    async def upsert(
        self, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]
    ) -> Row:
        await self._enter("upsert", table)
        store = self._tables[table]
        existing = next(
            (
                current
                for current in store.values()
                if all(current.get(col) == row.get(col) for col in on_conflict)
            ),
            None,
        )
        if existing is not None:
            merged = {**existing, **copy.deepcopy(dict(row))}
            merged["id"] = existing["id"]
            store[str(merged["id"])] = merged
            self._changed(table)
            return copy.deepcopy(merged)
        created = dict(copy.deepcopy(row))
        created.setdefault("id", str(ULID()))
        created.setdefault("created_at", _now_iso())
        self._check_unique(table, created)
        store[str(created["id"])] = created
        self._changed(table)
        return copy.deepcopy(created)

    async def rpc(self, name: str, params: Mapping[str, Any]) -> Any:
        await self._enter("rpc", name)
        column = COUNTER_PROCEDURES.get(name)
        if column is None:
            raise RemoteRejection(f"Could not find the function {name}", code="PGRST202")
        trip_id = str(params.get("trip_id") or "")
        amount = int(params.get("amount", 1) or 1)
        row = self._tables.get("trips", {}).get(trip_id)
        if row is None:
            raise RemoteRejection(f"trip {trip_id} not found", code="P0002")
        row[column] = int(row.get(column) or 0) + amount
        self._changed("trips")
        return row[column]

    def subscribe(self, table: str, listener: ChangeListener) -> Unsubscribe:
        return self._hub.subscribe(table, listener)

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> str:
        await self._enter("upload", bucket)
        self._objects[(bucket, path)] = bytes(content)
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._base_url}/storage/{bucket}/{path}"

    async def send_password_reset(
        self, email: str, *, redirect_to: str | None = None
    ) -> None:
        await self._enter("auth", None)
        self.password_resets.append(email)

    async def close(self) -> None:
        return None

    # -- internals --------------------------------------------------------

    async def _enter(self, operation: str, table: str | None) -> None:
        self.calls.append((operation, table or ""))
        delay = self._delays.get((operation, table))
        if delay:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)
        for key in ((operation, table), (operation, None)):
            pending = self._failures.get(key)
            if pending:
                raise pending.pop(0)

    def _check_unique(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        ignore_id: str | None = None,
        pending: Sequence[Mapping[str, Any]] = (),
    ) -> None:
        for columns in self._unique.get(table, ()):
            values = tuple(row.get(col) for col in columns)
            if any(value is None for value in values):
                continue
            candidates = list(self._tables.get(table, {}).values()) + list(pending)
            for other in candidates:
                if ignore_id is not None and str(other.get("id")) == ignore_id:
                    continue
                if tuple(other.get(col) for col in columns) == values:
                    raise RemoteRejection(
                        f'duplicate key value violates unique constraint "{table}_{"_".join(columns)}_key"',
                        code=UNIQUE_VIOLATION,
                    )

    def _changed(self, table: str) -> None:
        if self._echo_changes:
            self._hub.publish(table)


__all__ = ["COUNTER_PROCEDURES", "DEFAULT_UNIQUE_KEYS", "InMemoryGateway"]

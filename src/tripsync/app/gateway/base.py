"""Remote store gateway contract and the per-table change hub."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Literal, Mapping, Protocol, Sequence

from blinker import Namespace

logger = logging.getLogger(__name__)

FilterOp = Literal["eq", "neq", "in", "is"]
Row = dict[str, Any]
ChangeListener = Callable[[str], None]
Unsubscribe = Callable[[], None]


@dataclass(slots=True, frozen=True)
class Filter:
    column: str
    op: FilterOp
    value: Any = None

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.column)
        if self.op == "eq":
            return current == self.value
        if self.op == "neq":
            return current != self.value
        if self.op == "in":
            return current in tuple(self.value or ())
        if self.op == "is":
            return current is self.value
        raise ValueError(f"Unsupported filter operator: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_null(column: str) -> Filter:
    return Filter(column, "is", None)


@dataclass(slots=True, frozen=True)
class Order:
    column: str
    descending: bool = False


class RemoteStoreGateway(Protocol):
    """Async CRUD, RPC and change-subscription surface of the backing store."""

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[Row]: ...

    async def select_one(
        self, table: str, *, filters: Sequence[Filter]
    ) -> Row | None: ...

    async def insert(
        self, table: str, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> list[Row]: ...

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Sequence[Filter]
    ) -> list[Row]: ...

    async def delete(self, table: str, *, filters: Sequence[Filter]) -> int: ...

    async def upsert(
        self, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]
    ) -> Row: ...

    async def rpc(self, name: str, params: Mapping[str, Any]) -> Any: ...

    def subscribe(self, table: str, listener: ChangeListener) -> Unsubscribe: ...

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> str: ...

    def public_url(self, bucket: str, path: str) -> str: ...

    async def send_password_reset(
        self, email: str, *, redirect_to: str | None = None
    ) -> None: ...

    async def close(self) -> None: ...


class ChangeHub:
    """Fan out generic "table changed" signals to subscribers.

    Each table gets its own blinker signal; payloads carry no diff, only the
    table name.
    """

    def __init__(self) -> None:
        self._namespace = Namespace()

    def subscribe(self, table: str, listener: ChangeListener) -> Unsubscribe:
        def _receiver(sender: Any, **_: Any) -> None:
            listener(table)

        signal = self._namespace.signal(f"table:{table}")
        signal.connect(_receiver, sender=self, weak=False)

        def unsubscribe() -> None:
            signal.disconnect(_receiver, sender=self)

        return unsubscribe

    def publish(self, table: str) -> None:
        signal = self._namespace.signal(f"table:{table}")
        for receiver in list(signal.receivers_for(self)):
            try:
                receiver(self)
            except Exception:  # pragma: no cover - listener bugs must not break writers
                logger.exception("Change listener failed for table %s", table)


__all__ = [
    "ChangeHub",
    "ChangeListener",
    "Filter",
    "FilterOp",
    "Order",
    "RemoteStoreGateway",
    "Row",
    "Unsubscribe",
    "eq",
    "in_",
    "is_null",
    "neq",
]

"""Turn per-table change notifications into coalesced full reloads.

Flow:
1) :class:`ChangeAggregator` subscribes to every watched table on the gateway
   and funnels each "table changed" signal into one callback.
2) :class:`RefreshController` arms a :class:`Debouncer` on every signal; a
   burst of signals collapses into a single reload ``W`` seconds after the
   last one.
3) Signals that arrive while a reload is running are remembered and arm a
   fresh cycle as soon as that reload finishes, so none is dropped and two
   reloads never overlap.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from tripsync.app.gateway import RemoteStoreGateway, Unsubscribe
from tripsync.app.services.debounce import Debouncer
from tripsync.app.services.service_pulse import ServicePulse

logger = logging.getLogger(__name__)

ReloadAction = Callable[[], Awaitable[Any]]


class RefreshState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class ChangeAggregator:
    """Multiplex per-table subscriptions into one listener."""

    def __init__(
        self,
        gateway: RemoteStoreGateway,
        tables: Iterable[str],
        listener: Callable[[str], None],
    ) -> None:
        self._gateway = gateway
        self._tables = tuple(dict.fromkeys(tables))
        self._listener = listener
        self._unsubscribers: list[Unsubscribe] = []

    @property
    def tables(self) -> tuple[str, ...]:
        return self._tables

    @property
    def active(self) -> bool:
        return bool(self._unsubscribers)

    def start(self) -> None:
        if self._unsubscribers:
            return
        for table in self._tables:
            self._unsubscribers.append(self._gateway.subscribe(table, self._listener))
        logger.debug("Watching %d tables for changes", len(self._tables))

    def stop(self) -> None:
        while self._unsubscribers:
            unsubscribe = self._unsubscribers.pop()
            try:
                unsubscribe()
            except Exception:
                logger.warning("Failed to drop change subscription", exc_info=True)


class RefreshController:
    """Idle/Pending state machine driving debounced full reloads."""

    def __init__(
        self,
        reload: ReloadAction,
        *,
        debounce_seconds: float,
        service_pulse: ServicePulse | None = None,
    ) -> None:
        self._reload = reload
        self._pulse = service_pulse
        self._debouncer = Debouncer(debounce_seconds, self._start_cycle, name="refresh")
        self._reloading = False
        self._dirty = False
        self._events = 0
        self._tables: set[str] = set()
        self.cycles = 0

    @property
    def state(self) -> RefreshState:
        return RefreshState.PENDING if self._debouncer.pending else RefreshState.IDLE

    @property
    def reloading(self) -> bool:
        return self._reloading

    @property
    def debouncer(self) -> Debouncer:
        return self._debouncer

    def notify_change(self, table: str) -> None:
        """Record a change signal for ``table`` and (re)arm the timer."""

        self._events += 1
        self._tables.add(table)
        if self._reloading:
            self._dirty = True
            logger.debug("Change on %s during reload; queued for next cycle", table)
            return
        self._debouncer.arm()

    def request_refresh(self) -> None:
        self.notify_change("*")

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no reload is running."""

        while self._debouncer.pending or self._reloading:
            deadline = self._debouncer.deadline
            if deadline is not None:
                loop = asyncio.get_running_loop()
                await asyncio.sleep(max(deadline - loop.time(), 0) + 0.001)
            await self._debouncer.wait()
            await asyncio.sleep(0)

    async def close(self) -> None:
        self._dirty = False
        await self._debouncer.close()

    def _start_cycle(self) -> Awaitable[None] | None:
        # Marked busy before the task is scheduled so changes arriving in
        # between queue behind this cycle.
        if self._reloading:
            self._dirty = True
            return None
        events, tables = self._events, sorted(self._tables)
        self._events = 0
        self._tables = set()
        self._reloading = True
        self.cycles += 1
        return self._run_cycle(events, tables)

    async def _run_cycle(self, events: int, tables: list[str]) -> None:
        started = time.monotonic()
        ok = True
        try:
            await self._reload()
        except Exception:
            ok = False
            logger.exception("Refresh cycle %d failed", self.cycles)
        finally:
            self._reloading = False
        elapsed = time.monotonic() - started
        logger.debug(
            "Refresh cycle %d done in %.3fs (%d events on %s)",
            self.cycles,
            elapsed,
            events,
            ",".join(tables),
        )
        if self._pulse is not None:
            self._pulse.emit(
                "refresh.cycle",
                {
                    "cycle": self.cycles,
                    "events": events,
                    "tables": tables,
                    "ok": ok,
                    "elapsed": elapsed,
                },
            )
        if self._dirty:
            self._dirty = False
            self._debouncer.arm()


__all__ = ["ChangeAggregator", "RefreshController", "RefreshState", "ReloadAction"]

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, cast

from blinker import Namespace, Signal

logger = logging.getLogger(__name__)

TOPICS = ("cache.reloaded", "refresh.cycle", "session.loaded", "mutation.failed")


@dataclass(slots=True, frozen=True)
class PulseEvent:
    """One published sync-layer state change."""

    topic: str
    payload: Mapping[str, Any]
    timestamp: float

    def as_payload(self) -> dict[str, Any]:
        return dict(self.payload)


class PulseListener(Protocol):
    def __call__(self, event: PulseEvent) -> Awaitable[None] | None: ...


class ServicePulse:
    """Broadcast cache reloads, refresh cycles and mutation failures.

    Each topic is a blinker signal; a wildcard signal receives everything.
    Listeners may be plain callables or coroutine functions; coroutines are
    scheduled on the running loop.
    """

    def __init__(self) -> None:
        self._latest: dict[str, PulseEvent] = {}
        self._counts: dict[str, int] = {}
        self._namespace = Namespace()
        self._any = Signal("pulse:*")

    def signal(self, topic: str) -> Signal:
        return self._namespace.signal(topic)

    def emit(self, topic: str, payload: Mapping[str, Any]) -> PulseEvent:
        event = PulseEvent(
            topic=topic,
            payload=MappingProxyType(dict(payload)),
            timestamp=time.monotonic(),
        )
        self._latest[topic] = event
        self._counts[topic] = self._counts.get(topic, 0) + 1
        for signal in (self.signal(topic), self._any):
            for receiver in list(signal.receivers_for(self)):
                try:
                    result = receiver(self, event=event)
                except Exception:
                    logger.exception("Pulse listener failed for topic %s", topic)
                    continue
                self._schedule(result)
        return event

    def subscribe(
        self,
        listener: PulseListener,
        *,
        topics: Iterable[str] | None = None,
        replay_last: bool = False,
    ) -> Callable[[], None]:
        """Connect ``listener`` to ``topics`` (all topics when omitted)."""

        wanted = None if topics is None else list(dict.fromkeys(topics))

        def _receiver(sender: Any, *, event: PulseEvent | None = None, **_: Any) -> Any:
            if event is None:
                return None
            return listener(event)

        signals = [self._any] if wanted is None else [self.signal(t) for t in wanted]
        for sig in signals:
            sig.connect(_receiver, sender=self, weak=False)

        if replay_last:
            for name, event in list(self._latest.items()):
                if wanted is not None and name not in wanted:
                    continue
                try:
                    self._schedule(listener(event))
                except Exception:
                    logger.exception("Pulse listener failed during replay for %s", name)

        def unsubscribe() -> None:
            for sig in signals:
                sig.disconnect(_receiver, sender=self)

        return unsubscribe

    def latest(self, topic: str) -> dict[str, Any] | None:
        event = self._latest.get(topic)
        return None if event is None else event.as_payload()

    def count(self, topic: str) -> int:
        """Number of events published under ``topic`` so far."""

        return self._counts.get(topic, 0)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {topic: event.as_payload() for topic, event in self._latest.items()}

    @staticmethod
    def _schedule(result: Any) -> None:
        if result is None:
            return
        if asyncio.isfuture(result):
            future = cast(asyncio.Future[Any], result)

            def _consume(fut: asyncio.Future[Any]) -> None:
                with suppress(Exception):
                    fut.result()

            future.add_done_callback(_consume)
            return
        if not asyncio.iscoroutine(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(result)
        else:
            loop.create_task(result)


__all__ = ["PulseEvent", "PulseListener", "ServicePulse", "TOPICS"]

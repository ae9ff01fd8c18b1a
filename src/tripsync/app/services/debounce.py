"""Single-timer debounce primitive shared by every refresh trigger."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DebouncedAction = Callable[[], "Awaitable[Any] | None"]


class Debouncer:
    """Coalesce bursts of :meth:`arm` calls into one delayed action.

    ``arm`` starts the timer or pushes it back when already pending, so the
    action runs once, ``delay`` seconds after the last call. ``cancel``
    disarms without running. The action may be a coroutine function; it is
    run as a task and tracked until it completes.
    """

    def __init__(
        self,
        delay: float,
        action: DebouncedAction,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        name: str = "debounce",
    ) -> None:
        if delay < 0:
            raise ValueError("delay must be non-negative")
        self._delay = float(delay)
        self._action = action
        self._loop = loop
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[Any] | None = None
        self.fired = 0

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def deadline(self) -> float | None:
        """Loop time at which the armed timer fires, if armed."""

        return None if self._handle is None else self._handle.when()

    def arm(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
            logger.debug("%s: timer reset", self._name)
        else:
            logger.debug("%s: timer armed for %.3fs", self._name, self._delay)
        self._handle = loop.call_later(self._delay, self._fire)

    def reset(self) -> bool:
        """Push back an armed timer; returns ``False`` when idle."""

        if self._handle is None:
            return False
        self.arm()
        return True

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        logger.debug("%s: timer cancelled", self._name)
        return True

    def flush(self) -> bool:
        """Run the pending action now instead of waiting for the timer."""

        if self._handle is None:
            return False
        self._handle.cancel()
        self._fire()
        return True

    async def wait(self) -> None:
        """Wait for the action started by the last firing to finish."""

        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def close(self) -> None:
        self.cancel()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _fire(self) -> None:
        self._handle = None
        self.fired += 1
        logger.debug("%s: firing", self._name)
        try:
            result = self._action()
        except Exception:
            logger.exception("%s: debounced action failed", self._name)
            return
        if asyncio.iscoroutine(result):
            loop = self._loop or asyncio.get_running_loop()
            self._task = loop.create_task(result)
            self._task.add_done_callback(self._log_failure)

    def _log_failure(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: debounced action failed", self._name, exc_info=exc)


__all__ = ["DebouncedAction", "Debouncer"]

"""Current-identity holder fed by the external identity provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from blinker import Signal

from tripsync.app.models import UserRole

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Identity:
    id: str
    role: UserRole
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


IdentityListener = Callable[["Identity | None", "Identity | None"], None]


class IdentityHub:
    """Hold the current identity and announce login, logout and switches."""

    def __init__(self, initial: Identity | None = None) -> None:
        self._current = initial
        self._changed = Signal("identity:changed")

    @property
    def current(self) -> Identity | None:
        return self._current

    def current_identity(self) -> Identity | None:
        return self._current

    def set(self, identity: Identity | None) -> None:
        previous = self._current
        self._current = identity
        logger.debug(
            "Identity changed %s -> %s",
            previous.id if previous else None,
            identity.id if identity else None,
        )
        for receiver in list(self._changed.receivers_for(self)):
            try:
                receiver(self, previous=previous, current=identity)
            except Exception:
                logger.exception("Identity listener %r failed", receiver)

    def login(self, identity: Identity) -> None:
        self.set(identity)

    def logout(self) -> None:
        self.set(None)

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        def _receiver(
            sender: Any,
            *,
            previous: Identity | None = None,
            current: Identity | None = None,
            **_: Any,
        ) -> None:
            listener(previous, current)

        self._changed.connect(_receiver, sender=self, weak=False)

        def unsubscribe() -> None:
            self._changed.disconnect(_receiver, sender=self)

        return unsubscribe


__all__ = ["Identity", "IdentityHub", "IdentityListener"]

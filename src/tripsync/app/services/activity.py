"""Best-effort activity and audit trails.

Both recorders swallow every store failure after a warning: a missing log
line must never fail the user action that produced it.  Inserts are bounded
by ``timeout`` so a stalled store cannot hold the action open either.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

from tripsync.app.gateway import GatewayError, RemoteStoreGateway
from tripsync.app.models import ActivityAction, ActivityLog, AuditLog, UserRole
from tripsync.app.services.identity import Identity

logger = logging.getLogger(__name__)

IdentityAccessor = Callable[[], "Identity | None"]


class ActivityRecorder:
    def __init__(
        self,
        gateway: RemoteStoreGateway | None,
        identity: IdentityAccessor,
        *,
        timeout: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._identity = identity
        self._timeout = timeout

    async def record(
        self,
        action: ActivityAction | str,
        details: Mapping[str, Any] | None = None,
        *,
        agency_id: str | None = None,
    ) -> ActivityLog | None:
        """Append one activity row; returns ``None`` when nothing was written."""

        if self._gateway is None:
            return None
        actor = self._identity()
        action_type = action.value if isinstance(action, ActivityAction) else str(action)
        row: dict[str, Any] = {
            "user_id": actor.id if actor else None,
            "action_type": action_type,
            "details": dict(details or {}),
        }
        if actor is not None:
            row["actor_email"] = actor.email
            row["actor_role"] = actor.role.value
        if agency_id:
            row["agency_id"] = agency_id
        try:
            inserted = await asyncio.wait_for(
                self._gateway.insert("activity_logs", row), timeout=self._timeout
            )
        except (GatewayError, asyncio.TimeoutError) as exc:
            logger.warning("Activity log %s not recorded: %r", action_type, exc)
            return None
        return ActivityLog.from_row(inserted[0]) if inserted else None


class AuditRecorder:
    """Admin-only audit trail."""

    def __init__(
        self,
        gateway: RemoteStoreGateway | None,
        identity: IdentityAccessor,
        *,
        timeout: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._identity = identity
        self._timeout = timeout

    async def record(self, action: str, details: str) -> AuditLog | None:
        actor = self._identity()
        if self._gateway is None or actor is None or actor.role is not UserRole.ADMIN:
            return None
        try:
            inserted = await asyncio.wait_for(
                self._gateway.insert(
                    "audit_logs",
                    {"admin_email": actor.email, "action": action, "details": details},
                ),
                timeout=self._timeout,
            )
        except (GatewayError, asyncio.TimeoutError) as exc:
            logger.warning("Audit entry %s not recorded: %r", action, exc)
            return None
        return AuditLog.from_row(inserted[0]) if inserted else None


__all__ = ["ActivityRecorder", "AuditRecorder", "IdentityAccessor"]

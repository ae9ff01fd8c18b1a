"""Role-targeted broadcast messages and each recipient's interactions.

Interactions (read, liked, deleted-for-me) are per-user rows in
``broadcast_interactions``; the message itself is never mutated.  Read and
spotlight-dismissed state is also mirrored into the client state store so
it survives without a round trip.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Mapping

from tripsync.app.gateway import GatewayError, GatewayUnavailable, RemoteStoreGateway, eq
from tripsync.app.models import (
    BroadcastAction,
    BroadcastInteraction,
    BroadcastMessage,
    UserRole,
)
from tripsync.app.services.identity import Identity
from tripsync.app.services.kv_store import ClientStateStore, MemoryClientStore, add_member
from tripsync.app.services.mutations import MutationEngine
from tripsync.app.store.cache import EntityCache, EntityKind

logger = logging.getLogger(__name__)

INTERACTIONS_TABLE = "broadcast_interactions"
READ_NAMESPACE = "notifications_read"
DISMISSED_NAMESPACE = "broadcast_spotlight_dismissed"
SPOTLIGHT_ROLES = frozenset({UserRole.CLIENT, UserRole.AGENCY, UserRole.GUIDE})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def newest_first(messages: Iterable[BroadcastMessage]) -> list[BroadcastMessage]:
    return sorted(messages, key=lambda message: message.created_at, reverse=True)


class BroadcastService:
    def __init__(
        self,
        gateway: RemoteStoreGateway | None,
        cache: EntityCache,
        mutations: MutationEngine,
        *,
        client_store: ClientStateStore | None = None,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._writer = cache.writer("broadcasts")
        self._mutations = mutations
        self._store: ClientStateStore = client_store or MemoryClientStore()

    @property
    def client_store(self) -> ClientStateStore:
        return self._store

    async def send(
        self, title: str, message: str, target_roles: Iterable[UserRole | str]
    ) -> BroadcastMessage | None:
        """Admin-only: publish a message to every user holding one of ``target_roles``."""

        roles = sorted(
            {role.value if isinstance(role, UserRole) else str(role).upper() for role in target_roles}
        )
        if not roles:
            self._mutations.notifier.warning("Selecione ao menos um público.")
            return None
        if not self._mutations.is_admin():
            self._mutations.notifier.error("Apenas administradores podem enviar avisos.")
            return None
        actor = self._mutations.current_identity()
        try:
            gateway = self._mutations.require_gateway()
            rows = await self._mutations.call(
                gateway.insert(
                    "broadcast_messages",
                    {
                        "title": title,
                        "message": message,
                        "target_roles": roles,
                        "created_by": actor.id if actor else None,
                    },
                )
            )
        except GatewayError as exc:
            self._mutations.report("Erro ao enviar aviso", exc)
            return None
        sent = [BroadcastMessage.from_row(row) for row in rows]
        if sent:
            self._writer.put_many(EntityKind.BROADCASTS, sent, reason="broadcast-sent")
        self._mutations.notifier.success("Aviso enviado.")
        await self._mutations.log_audit("BROADCAST_SENT", f"{title} -> {', '.join(roles)}")
        return sent[0] if sent else None

    async def interactions(self, user_id: str) -> dict[str, BroadcastInteraction]:
        if self._gateway is None:
            return {}
        try:
            rows = await self._gateway.select(
                INTERACTIONS_TABLE, filters=(eq("user_id", user_id),)
            )
        except GatewayError as exc:
            logger.warning("Could not load broadcast interactions for %s: %s", user_id, exc)
            return {}
        interactions = (BroadcastInteraction.from_row(row) for row in rows)
        return {item.broadcast_id: item for item in interactions}

    async def inbox(self, identity: Identity) -> list[BroadcastMessage]:
        """Messages targeting ``identity``'s role, minus those deleted for them."""

        interactions = await self.interactions(identity.id)
        messages = [
            message
            for message in self._cache.latest().broadcasts
            if message.targets(identity.role)
            and not interactions.get(message.id, _NO_INTERACTION).deleted
        ]
        return newest_first(messages)

    async def read_ids(self, user_id: str) -> frozenset[str]:
        return await self._store.get_set(READ_NAMESPACE, user_id)

    async def dismissed_ids(self, user_id: str) -> frozenset[str]:
        return await self._store.get_set(DISMISSED_NAMESPACE, user_id)

    async def unread(self, identity: Identity) -> list[BroadcastMessage]:
        read = await self.read_ids(identity.id)
        return [message for message in await self.inbox(identity) if message.id not in read]

    async def spotlight(self, identity: Identity | None) -> BroadcastMessage | None:
        """Newest message that is neither read nor dismissed, if any."""

        if identity is None or identity.role not in SPOTLIGHT_ROLES:
            return None
        dismissed = await self.dismissed_ids(identity.id)
        for message in await self.unread(identity):
            if message.id not in dismissed:
                return message
        return None

    async def dismiss(self, user_id: str, broadcast_id: str) -> None:
        await add_member(self._store, DISMISSED_NAMESPACE, user_id, broadcast_id)

    async def mark_read(self, user_id: str, broadcast_id: str) -> bool:
        await add_member(self._store, READ_NAMESPACE, user_id, broadcast_id)
        return await self.interact(user_id, broadcast_id, BroadcastAction.READ)

    async def mark_all_read(self, identity: Identity) -> int:
        messages = await self.unread(identity)
        for message in messages:
            await self.mark_read(identity.id, message.id)
        return len(messages)

    async def toggle_like(self, user_id: str, broadcast_id: str) -> bool:
        return await self.interact(user_id, broadcast_id, BroadcastAction.LIKE)

    async def delete_for_me(self, user_id: str, broadcast_id: str) -> bool:
        return await self.interact(user_id, broadcast_id, BroadcastAction.DELETE)

    async def interact(
        self, user_id: str, broadcast_id: str, action: BroadcastAction
    ) -> bool:
        """Upsert the user's interaction row; the broadcast itself is untouched."""

        if self._gateway is None:
            return False
        values: dict[str, object] = {"broadcast_id": broadcast_id, "user_id": user_id}
        if action is BroadcastAction.READ:
            values["read_at"] = _now_iso()
        elif action is BroadcastAction.DELETE:
            values["deleted_at"] = _now_iso()
        else:
            current = await self._interaction(user_id, broadcast_id)
            values["is_liked"] = not (current.liked if current else False)
        try:
            await self._mutations.call(
                self._gateway.upsert(
                    INTERACTIONS_TABLE, values, on_conflict=("broadcast_id", "user_id")
                )
            )
        except GatewayError as exc:
            logger.warning("Broadcast %s interaction %s failed: %s", broadcast_id, action.value, exc)
            return False
        return True

    async def _interaction(self, user_id: str, broadcast_id: str) -> BroadcastInteraction | None:
        try:
            if self._gateway is None:
                raise GatewayUnavailable("Remote store is not configured")
            row: Mapping[str, object] | None = await self._gateway.select_one(
                INTERACTIONS_TABLE,
                filters=(eq("user_id", user_id), eq("broadcast_id", broadcast_id)),
            )
        except GatewayError as exc:
            logger.warning("Could not read interaction for %s: %s", broadcast_id, exc)
            return None
        return BroadcastInteraction.from_row(row) if row else None


_NO_INTERACTION = BroadcastInteraction(broadcast_id="", user_id="")


__all__ = [
    "BroadcastService",
    "DISMISSED_NAMESPACE",
    "READ_NAMESPACE",
    "newest_first",
]

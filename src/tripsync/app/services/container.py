"""Sync-layer service bundle and its startup/shutdown lifecycle."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from tripsync.app.gateway import GatewayUnavailable, RemoteStoreGateway, create_gateway
from tripsync.app.services.broadcasts import BroadcastService
from tripsync.app.services.identity import Identity, IdentityHub
from tripsync.app.services.kv_store import (
    ClientStateStore,
    MemoryClientStore,
    SQLiteClientStore,
)
from tripsync.app.services.mutations import MutationEngine
from tripsync.app.services.notifications import NotificationSink, SafeNotifier
from tripsync.app.services.query import QueryEngine
from tripsync.app.services.refresh import ChangeAggregator, RefreshController
from tripsync.app.services.service_pulse import ServicePulse
from tripsync.app.services.session import SessionScopedFetcher
from tripsync.app.services.sync_config import SyncConfig
from tripsync.app.services.views import DerivedViewResolver
from tripsync.app.store.cache import CacheSnapshot, EntityCache
from tripsync.app.store.loaders import GlobalLoader
from tripsync.settings import settings as default_settings

logger = logging.getLogger(__name__)


def _resolve_gateway(settings: Any) -> RemoteStoreGateway | None:
    try:
        return create_gateway(settings)
    except GatewayUnavailable:
        return None


def _client_store_from_settings(settings: Any) -> ClientStateStore:
    path = settings.get("CLIENT_STORE.path")
    if not path:
        return MemoryClientStore()
    return SQLiteClientStore(
        path,
        pool_size=int(settings.get("CLIENT_STORE.pool_size", 4)),
        acquisition_timeout=int(settings.get("CLIENT_STORE.pool_acquire_timeout", 10)),
        timeout=float(settings.get("CLIENT_STORE.timeout", 5.0)),
    )


@dataclass(slots=True)
class MarketplaceServices:
    """Bundle the long-lived sync services around one entity cache."""

    config: SyncConfig
    gateway: RemoteStoreGateway | None
    cache: EntityCache
    identity: IdentityHub
    service_pulse: ServicePulse
    notifier: SafeNotifier
    loader: GlobalLoader
    session: SessionScopedFetcher
    mutations: MutationEngine
    query: QueryEngine
    views: DerivedViewResolver
    broadcasts: BroadcastService
    client_store: ClientStateStore
    refresh: RefreshController
    aggregator: ChangeAggregator | None

    @classmethod
    def create(
        cls,
        settings: Any = None,
        *,
        gateway: RemoteStoreGateway | None = None,
        notifier: NotificationSink | SafeNotifier | None = None,
        kv_store: ClientStateStore | None = None,
        identity: Identity | None = None,
    ) -> "MarketplaceServices":
        settings = settings if settings is not None else default_settings
        config = SyncConfig.from_settings(settings)
        if gateway is None:
            gateway = _resolve_gateway(settings)
        if isinstance(notifier, SafeNotifier):
            safe_notifier = notifier
        else:
            safe_notifier = SafeNotifier(notifier)

        cache = EntityCache()
        hub = IdentityHub(identity)
        service_pulse = ServicePulse()
        client_store = kv_store if kv_store is not None else _client_store_from_settings(settings)

        loader = GlobalLoader(gateway, cache, service_pulse=service_pulse)
        session = SessionScopedFetcher(gateway, cache, service_pulse=service_pulse)
        mutations = MutationEngine(
            gateway,
            cache,
            loader,
            identity=hub.current_identity,
            notifier=safe_notifier,
            config=config.mutations,
            service_pulse=service_pulse,
        )

        async def _reload() -> CacheSnapshot:
            snapshot = await loader.load_all()
            await session.reload()
            return snapshot

        refresh = RefreshController(
            _reload,
            debounce_seconds=config.refresh.debounce_seconds,
            service_pulse=service_pulse,
        )
        aggregator = (
            ChangeAggregator(gateway, config.refresh.tables, refresh.notify_change)
            if gateway is not None
            else None
        )
        return cls(
            config=config,
            gateway=gateway,
            cache=cache,
            identity=hub,
            service_pulse=service_pulse,
            notifier=safe_notifier,
            loader=loader,
            session=session,
            mutations=mutations,
            query=QueryEngine(cache.latest, config.query),
            views=DerivedViewResolver(cache.latest, gateway=gateway, config=config.views),
            broadcasts=BroadcastService(
                gateway, cache, mutations, client_store=client_store
            ),
            client_store=client_store,
            refresh=refresh,
            aggregator=aggregator,
        )

    @property
    def offline(self) -> bool:
        return self.gateway is None


class SyncLifecycle:
    """Start and stop the services in dependency order.

    ``init`` loads the global collections, starts listening for remote
    changes and begins following the identity hub; ``dispose`` undoes the
    same steps in reverse.  Both are idempotent.
    """

    def __init__(self, services: MarketplaceServices) -> None:
        self._services = services
        self._lock = asyncio.Lock()
        self._started = False

    async def __aenter__(self) -> "SyncLifecycle":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    @property
    def services(self) -> MarketplaceServices:
        return self._services

    @property
    def started(self) -> bool:
        return self._started

    async def init(self) -> None:
        services = self._services
        async with self._lock:
            if self._started:
                return
            logger.debug(
                "Starting sync lifecycle: client_store.init -> loader.load_all -> "
                "aggregator.start -> session.attach"
            )
            store_opened = False
            try:
                init_store = getattr(services.client_store, "init", None)
                if init_store is not None:
                    await init_store()
                    store_opened = True
                await services.loader.load_all()
                if services.aggregator is not None:
                    services.aggregator.start()
                services.session.attach(services.identity)
                current = services.identity.current
                if current is not None:
                    await services.session.set_identity(current)
            except Exception:
                logger.debug("Startup failed; rolling back", exc_info=True)
                services.session.detach()
                if services.aggregator is not None:
                    services.aggregator.stop()
                if store_opened:
                    with suppress(Exception):
                        await services.client_store.close()  # type: ignore[attr-defined]
                raise
            self._started = True
            logger.info(
                "Sync lifecycle started (%s)",
                "offline fixtures" if services.offline else "remote store",
            )

    async def dispose(self) -> None:
        services = self._services
        async with self._lock:
            if not self._started:
                return
            self._started = False

        services.session.detach()
        if services.aggregator is not None:
            services.aggregator.stop()

        errors: list[Exception] = []
        try:
            await services.refresh.close()
            await services.session.wait()
        except Exception as exc:
            logger.exception("Failed to stop refresh cleanly")
            errors.append(exc)

        services.views.forget_passengers()

        if services.gateway is not None:
            try:
                await services.gateway.close()
            except Exception as exc:
                logger.exception("Failed to close gateway cleanly")
                errors.append(exc)

        close_store = getattr(services.client_store, "close", None)
        if close_store is not None:
            try:
                await close_store()
            except Exception as exc:
                logger.exception("Failed to close client store cleanly")
                errors.append(exc)

        if errors:
            raise errors[0]
        logger.info("Sync lifecycle stopped")


__all__ = ["MarketplaceServices", "SyncLifecycle"]

from __future__ import annotations

from typing import Any

import pytest

from tripsync.app.gateway import InMemoryGateway
from tripsync.app.models import UserRole
from tripsync.app.services.container import MarketplaceServices
from tripsync.app.services.identity import Identity
from tripsync.app.services.kv_store import MemoryClientStore
from tripsync.app.services.notifications import RecordingSink
from tripsync.app.store.fixtures import fixture_tables


class StubSettings(dict):
    """Flat dotted-key mapping standing in for the dynaconf settings object."""


def make_settings(**overrides: Any) -> StubSettings:
    values: dict[str, Any] = {
        "GATEWAY.url": "",
        "GATEWAY.key": "",
        "REFRESH.debounce_seconds": 0.05,
        "MUTATIONS.write_timeout": 1.0,
        "CLIENT_STORE.path": "",
    }
    values.update({key.replace("__", "."): value for key, value in overrides.items()})
    return StubSettings(values)


def build_services(
    gateway: InMemoryGateway | None = None,
    *,
    identity: Identity | None = None,
    **overrides: Any,
) -> tuple[MarketplaceServices, RecordingSink]:
    sink = RecordingSink()
    services = MarketplaceServices.create(
        make_settings(**overrides),
        gateway=gateway,
        notifier=sink,
        kv_store=MemoryClientStore(),
        identity=identity,
    )
    return services, sink


@pytest.fixture
def seeded_gateway() -> InMemoryGateway:
    return InMemoryGateway(fixture_tables())


@pytest.fixture
def settings() -> StubSettings:
    return make_settings()


@pytest.fixture
def make_services():
    return build_services


@pytest.fixture
def client_identity() -> Identity:
    return Identity(id="c1", role=UserRole.CLIENT, email="cliente@viajastore.com")


@pytest.fixture
def agency_identity() -> Identity:
    return Identity(id="u_ag_1", role=UserRole.AGENCY, email="contato@trilhasbrasil.com")


@pytest.fixture
def admin_identity() -> Identity:
    return Identity(id="admin-1", role=UserRole.ADMIN, email="admin@viajastore.com")

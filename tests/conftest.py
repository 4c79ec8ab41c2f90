from __future__ import annotations

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from cameyo_api.app import create_app
from cameyo_api.tenancy.registry import TenantClientRegistry

from fakes import RecordingProvisioner, SQLiteClientFactory, make_settings


@pytest.fixture()
def provisioner() -> RecordingProvisioner:
    return RecordingProvisioner()


@pytest.fixture()
def sqlite_factory() -> SQLiteClientFactory:
    return SQLiteClientFactory()


@pytest.fixture()
def registry(provisioner: RecordingProvisioner, sqlite_factory: SQLiteClientFactory) -> TenantClientRegistry:
    return TenantClientRegistry(provisioner, sqlite_factory)


@pytest.fixture()
def client(registry: TenantClientRegistry) -> Generator[TestClient, None, None]:
    app = create_app(settings=make_settings(), tenant_registry=registry)
    with TestClient(app) as test_client:
        yield test_client

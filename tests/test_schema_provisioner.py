from __future__ import annotations

import asyncio
import sys

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from cameyo_api.tenancy.errors import (
    ConnectionFailure,
    InvalidTenantId,
    ProvisioningFailure,
    SchemaNotProvisioned,
)
from cameyo_api.tenancy.provisioning import SchemaProvisioner, TenantMigrator
from cameyo_api.tenancy.registry import TenantClientRegistry

from fakes import FakeClientFactory, FakeMigrator, InMemoryProvisioner, make_settings


@pytest.fixture()
def attached_engine():
    """SQLite engine where ``acme`` exists as an attached database."""
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _attach(dbapi_connection, _record):
        dbapi_connection.execute("ATTACH DATABASE ':memory:' AS acme")

    yield engine
    engine.dispose()


@pytest.mark.asyncio
async def test_schema_exists(attached_engine) -> None:
    provisioner = SchemaProvisioner(make_settings(), engine=attached_engine)
    assert await provisioner.schema_exists("acme") is True
    assert await provisioner.schema_exists("globex") is False


@pytest.mark.asyncio
async def test_fail_closed_accepts_existing_schema(attached_engine) -> None:
    migrator = FakeMigrator()
    provisioner = SchemaProvisioner(make_settings(), engine=attached_engine, migrator=migrator)
    await provisioner.ensure_schema("acme")
    assert migrator.calls == []


@pytest.mark.asyncio
async def test_fail_closed_rejects_missing_schema(attached_engine) -> None:
    migrator = FakeMigrator()
    provisioner = SchemaProvisioner(make_settings(), engine=attached_engine, migrator=migrator)

    with pytest.raises(SchemaNotProvisioned) as exc_info:
        await provisioner.ensure_schema("globex")

    assert exc_info.value.tenant_id == "globex"
    assert exc_info.value.detail == 'Schema "globex" does not exist and must be provisioned first'
    assert migrator.calls == []


@pytest.mark.asyncio
async def test_public_never_touches_the_database() -> None:
    # no DATABASE_URL and no engine: any query would fail
    provisioner = SchemaProvisioner(make_settings())
    await provisioner.ensure_schema("public")
    assert await provisioner.provision_tenant("public") is False


@pytest.mark.asyncio
async def test_unreachable_database_is_a_connection_failure() -> None:
    provisioner = SchemaProvisioner(make_settings())
    with pytest.raises(ConnectionFailure) as exc_info:
        await provisioner.ensure_schema("acme")
    assert exc_info.value.tenant_id == "acme"


@pytest.mark.asyncio
async def test_invalid_tenant_rejected_before_any_query() -> None:
    provisioner = InMemoryProvisioner(make_settings())
    with pytest.raises(InvalidTenantId):
        await provisioner.ensure_schema("acme; DROP SCHEMA public")
    with pytest.raises(InvalidTenantId):
        await provisioner.provision_tenant("ACME")


def test_unknown_mode_rejected() -> None:
    with pytest.raises(ValueError):
        SchemaProvisioner(make_settings(), mode="lazy")


@pytest.mark.asyncio
async def test_auto_mode_provisions_missing_schema() -> None:
    provisioner = InMemoryProvisioner(make_settings(TENANT_PROVISIONING_MODE="auto"))
    await provisioner.ensure_schema("acme")
    await provisioner.ensure_schema("acme")
    assert provisioner.schemas == {"acme"}
    assert provisioner.migrator.calls == ["acme"]


@pytest.mark.asyncio
async def test_concurrent_provisioning_runs_migrations_once() -> None:
    migrator = FakeMigrator(delay=0.05)
    provisioner = InMemoryProvisioner(make_settings(), migrator=migrator, mode="auto")

    results = await asyncio.gather(*(provisioner.provision_tenant("acme") for _ in range(5)))

    assert sorted(results) == [False, False, False, False, True]
    assert migrator.calls == ["acme"]


@pytest.mark.asyncio
async def test_existing_schema_is_not_reprovisioned() -> None:
    provisioner = InMemoryProvisioner(make_settings(), existing={"acme"}, mode="auto")
    assert await provisioner.provision_tenant("acme") is False
    assert provisioner.migrator.calls == []


@pytest.mark.asyncio
async def test_failed_migration_drops_schema() -> None:
    provisioner = InMemoryProvisioner(make_settings(), migrator=FakeMigrator(fail=True), mode="auto")

    with pytest.raises(ProvisioningFailure):
        await provisioner.ensure_schema("acme")

    assert provisioner.schemas == set()
    assert provisioner.dropped == ["acme"]


@pytest.mark.asyncio
async def test_schema_creation_error_is_a_provisioning_failure() -> None:
    provisioner = InMemoryProvisioner(make_settings(), mode="auto")
    provisioner.create_error = PermissionError("permission denied for database")

    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.provision_tenant("acme")

    assert "permission denied" in exc_info.value.detail
    assert provisioner.migrator.calls == []


@pytest.mark.asyncio
async def test_migrate_existing_runs_migrations() -> None:
    provisioner = InMemoryProvisioner(make_settings(), existing={"acme"})
    await provisioner.migrate_existing("acme")
    assert provisioner.migrator.calls == ["acme"]


def test_migrator_command_targets_tenant() -> None:
    migrator = TenantMigrator(make_settings(ALEMBIC_CONFIG="deploy/alembic.ini"))
    assert migrator.command("acme") == [
        sys.executable,
        "-m",
        "alembic",
        "-c",
        "deploy/alembic.ini",
        "-x",
        "tenant=acme",
        "upgrade",
        "head",
    ]


class ScriptedMigrator(TenantMigrator):
    def __init__(self, settings, code: str) -> None:
        super().__init__(settings)
        self.code = code

    def command(self, tenant_id: str) -> list[str]:
        return [sys.executable, "-c", self.code]


@pytest.mark.asyncio
async def test_migrator_success() -> None:
    await ScriptedMigrator(make_settings(), "print('ok')").upgrade("acme")


@pytest.mark.asyncio
async def test_migrator_nonzero_exit_fails() -> None:
    migrator = ScriptedMigrator(make_settings(), "import sys; sys.exit(3)")
    with pytest.raises(ProvisioningFailure) as exc_info:
        await migrator.upgrade("acme")
    assert "status 3" in exc_info.value.detail


@pytest.mark.asyncio
async def test_migrator_timeout_fails() -> None:
    migrator = ScriptedMigrator(make_settings(MIGRATION_TIMEOUT=0.5), "import time; time.sleep(30)")
    with pytest.raises(ProvisioningFailure) as exc_info:
        await migrator.upgrade("acme")
    assert "timed out" in exc_info.value.detail


@pytest.mark.asyncio
async def test_cancelled_migration_drops_schema() -> None:
    migrator = FakeMigrator(delay=0.5)
    provisioner = InMemoryProvisioner(make_settings(), migrator=migrator, mode="auto")

    task = asyncio.create_task(provisioner.provision_tenant("acme"))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert provisioner.schemas == set()
    assert provisioner.dropped == ["acme"]

    # the next attempt starts from scratch
    migrator.delay = 0.0
    assert await provisioner.provision_tenant("acme") is True
    assert migrator.calls == ["acme", "acme"]


@pytest.mark.asyncio
async def test_registry_shutdown_during_provisioning_allows_retry() -> None:
    migrator = FakeMigrator(delay=0.5)
    provisioner = InMemoryProvisioner(make_settings(), migrator=migrator, mode="auto")
    registry = TenantClientRegistry(provisioner, FakeClientFactory())

    waiter = asyncio.create_task(registry.get_client("acme"))
    await asyncio.sleep(0.05)
    await registry.shutdown()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert provisioner.schemas == set()

    migrator.delay = 0.0
    client = await TenantClientRegistry(provisioner, FakeClientFactory()).get_client("acme")
    assert client.connected
    assert migrator.calls == ["acme", "acme"]
    assert provisioner.schemas == {"acme"}


@pytest.mark.asyncio
async def test_cancelled_migrator_kills_child_process(monkeypatch) -> None:
    spawned = []
    spawn = asyncio.create_subprocess_exec

    async def recording_spawn(*args, **kwargs):
        proc = await spawn(*args, **kwargs)
        spawned.append(proc)
        return proc

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_spawn)
    migrator = ScriptedMigrator(make_settings(), "import time; time.sleep(30)")

    task = asyncio.create_task(migrator.upgrade("acme"))
    for _ in range(100):
        if spawned:
            break
        await asyncio.sleep(0.05)
    assert spawned
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert spawned[0].returncode is not None

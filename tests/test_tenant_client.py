from __future__ import annotations

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool

from cameyo_api.core.db_base import Base
from cameyo_api.modules.users.models import User
from cameyo_api.tenancy.client import TenantClient, tenant_database_url
from cameyo_api.tenancy.errors import ConnectionFailure

from fakes import make_settings


def _memory_engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def test_postgres_url_pins_search_path() -> None:
    url = make_url(tenant_database_url("postgresql+psycopg2://app:secret@db:5432/cameyo", "acme"))
    assert url.query["options"] == "-csearch_path=acme"
    assert url.password == "secret"
    assert url.database == "cameyo"


def test_postgres_url_replaces_existing_options() -> None:
    base = "postgresql://app:secret@db/cameyo?options=-csearch_path%3Dpublic&sslmode=disable"
    url = make_url(tenant_database_url(base, "globex"))
    assert url.query["options"] == "-csearch_path=globex"
    assert url.query["sslmode"] == "disable"


def test_non_postgres_url_is_untouched() -> None:
    assert tenant_database_url("sqlite:///./cameyo.db", "acme") == "sqlite:///./cameyo.db"


def test_for_tenant_requires_database_url() -> None:
    with pytest.raises(ConnectionFailure) as exc_info:
        TenantClient.for_tenant(make_settings(), "acme")
    assert exc_info.value.tenant_id == "acme"


def test_for_tenant_builds_schema_url() -> None:
    settings = make_settings(DATABASE_URL="postgresql://app:secret@db/cameyo")
    client = TenantClient.for_tenant(settings, "acme")
    assert client.tenant_id == "acme"
    assert make_url(client.url).query["options"] == "-csearch_path=acme"
    assert not client.is_connected


def test_client_needs_url_or_engine() -> None:
    with pytest.raises(ValueError):
        TenantClient("acme")


@pytest.mark.asyncio
async def test_connect_session_disconnect() -> None:
    client = TenantClient("acme", engine=_memory_engine())
    assert "disconnected" in repr(client)

    await client.connect()
    assert client.is_connected
    assert repr(client).endswith(" connected>")

    with client.session() as db:
        db.add(User(full_name="Ana Torres", email="ana@acme.com"))

    with client.session() as db:
        assert db.execute(select(func.count()).select_from(User)).scalar_one() == 1

    await client.disconnect()
    assert not client.is_connected
    with pytest.raises(RuntimeError):
        client.engine


@pytest.mark.asyncio
async def test_session_rolls_back_on_error() -> None:
    client = TenantClient("acme", engine=_memory_engine())
    await client.connect()

    with pytest.raises(ValueError):
        with client.session() as db:
            db.add(User(full_name="Ana Torres"))
            db.flush()
            raise ValueError("boom")

    with client.session() as db:
        assert db.execute(select(func.count()).select_from(User)).scalar_one() == 0
    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_from_url(tmp_path) -> None:
    client = TenantClient("public", f"sqlite:///{tmp_path / 'public.db'}", settings=make_settings())
    await client.connect()
    assert client.is_connected
    assert client.engine.url.database.endswith("public.db")
    await client.disconnect()


@pytest.mark.asyncio
async def test_failed_connect_leaves_client_disconnected(tmp_path) -> None:
    client = TenantClient("public", f"sqlite:///{tmp_path / 'missing' / 'public.db'}")
    with pytest.raises(Exception):
        await client.connect()
    assert not client.is_connected


def test_session_requires_connection() -> None:
    client = TenantClient("acme", engine=_memory_engine())
    with pytest.raises(RuntimeError):
        with client.session():
            pass

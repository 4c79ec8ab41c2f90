from __future__ import annotations

import asyncio

import pytest

from cameyo_api.tenancy.context import (
    current_tenant_id,
    get_tenant_id_or_none,
    run_in_tenant,
    use_tenant,
)


def test_defaults_to_public_outside_any_scope() -> None:
    assert current_tenant_id() == "public"
    assert get_tenant_id_or_none() is None


def test_use_tenant_restores_previous_value() -> None:
    with use_tenant("acme"):
        assert current_tenant_id() == "acme"
        with use_tenant("globex"):
            assert current_tenant_id() == "globex"
        assert current_tenant_id() == "acme"
    assert get_tenant_id_or_none() is None


def test_run_in_tenant_does_not_leak() -> None:
    result = run_in_tenant("acme", lambda suffix: current_tenant_id() + suffix, "!")
    assert result == "acme!"
    assert get_tenant_id_or_none() is None


@pytest.mark.asyncio
async def test_concurrent_tasks_see_only_their_tenant() -> None:
    async def handle(tenant_id: str) -> list[str]:
        observed = []
        with use_tenant(tenant_id):
            for _ in range(5):
                await asyncio.sleep(0)
                observed.append(current_tenant_id())
        return observed

    results = await asyncio.gather(*(handle(f"tenant-{i}") for i in range(10)))

    for i, observed in enumerate(results):
        assert observed == [f"tenant-{i}"] * 5


@pytest.mark.asyncio
async def test_child_tasks_keep_parent_tenant() -> None:
    async def child() -> str:
        await asyncio.sleep(0)
        return current_tenant_id()

    with use_tenant("acme"):
        task = asyncio.create_task(child())
    assert await task == "acme"
    assert get_tenant_id_or_none() is None

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .client import TenantClient
from .errors import ConnectionFailure, TenantError
from .identifiers import validate_tenant_id
from .provisioning import SchemaProvisioner


logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], TenantClient]


class TenantClientRegistry:
    """Owns one connected :class:`TenantClient` per tenant.

    Clients are created on first use and live until :meth:`shutdown`.
    Concurrent first requests for the same tenant share a single creation
    task, so exactly one connection sequence runs per tenant. Failures are
    propagated to every waiter and never cached.

    Everything here runs on one event loop: the lookups and the pending
    registration in :meth:`get_client` happen without an intervening
    ``await``, which is what makes them atomic.
    """

    def __init__(
        self,
        provisioner: SchemaProvisioner,
        client_factory: ClientFactory,
        *,
        max_tenant_id_length: int = 63,
    ) -> None:
        self._provisioner = provisioner
        self._client_factory = client_factory
        self._max_tenant_id_length = max_tenant_id_length
        self._clients: dict[str, TenantClient] = {}
        self._pending: dict[str, asyncio.Task[TenantClient]] = {}
        self._creation_count = 0

    @property
    def provisioner(self) -> SchemaProvisioner:
        return self._provisioner

    @property
    def creation_count(self) -> int:
        """Number of client connections attempted since start-up."""
        return self._creation_count

    def cached_tenants(self) -> list[str]:
        return sorted(self._clients)

    def is_cached(self, tenant_id: str) -> bool:
        return tenant_id in self._clients

    async def get_client(self, tenant_id: str) -> TenantClient:
        client = self._clients.get(tenant_id)
        if client is not None:
            return client

        task = self._pending.get(tenant_id)
        if task is None:
            validate_tenant_id(tenant_id, max_length=self._max_tenant_id_length)
            task = asyncio.create_task(self._create(tenant_id), name=f"tenant-client:{tenant_id}")
            task.add_done_callback(_consume_result)
            self._pending[tenant_id] = task

        # A cancelled caller stops waiting; the creation carries on for the others
        return await asyncio.shield(task)

    async def _create(self, tenant_id: str) -> TenantClient:
        try:
            await self._provisioner.ensure_schema(tenant_id)

            self._creation_count += 1
            client = self._client_factory(tenant_id)
            try:
                await client.connect()
            except Exception as exc:
                await _safe_disconnect(client)
                raise ConnectionFailure(f"Could not connect: {exc}", tenant_id) from exc
            except asyncio.CancelledError:
                await _safe_disconnect(client)
                raise

            self._clients[tenant_id] = client
            logger.info("Storage client ready for tenant schema %s", tenant_id)
            return client
        except TenantError as exc:
            logger.error("Storage client creation failed for tenant %s: %s", tenant_id, exc.detail)
            raise
        finally:
            self._pending.pop(tenant_id, None)

    async def shutdown(self) -> None:
        pending = list(self._pending.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

        clients = list(self._clients.items())
        self._clients.clear()
        for tenant_id, client in clients:
            await _safe_disconnect(client)
            logger.info("Disconnected storage client for tenant %s", tenant_id)


async def _safe_disconnect(client: TenantClient) -> None:
    try:
        await client.disconnect()
    except Exception:
        logger.exception("Error disconnecting storage client for tenant %s", client.tenant_id)


def _consume_result(task: asyncio.Task) -> None:
    # Failures are re-raised to every waiter; this only keeps asyncio from
    # reporting them as never retrieved when all waiters went away.
    if not task.cancelled():
        task.exception()

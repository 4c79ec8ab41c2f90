"""Tenant schema provisioning.

Two entry points share the same machinery:

* :meth:`SchemaProvisioner.ensure_schema` runs on the request path, right
  before a tenant client is created. Depending on
  ``TENANT_PROVISIONING_MODE`` it either refuses unknown schemas
  (``fail_closed``) or creates and migrates them on demand (``auto``).
* :meth:`SchemaProvisioner.provision_tenant` is the administrative
  operation behind the ``cameyo-provision-tenant`` command.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

from sqlalchemy import create_engine, inspect, pool
from sqlalchemy.engine import Engine
from sqlalchemy.schema import CreateSchema, DropSchema
from starlette.concurrency import run_in_threadpool

from ..core.config import Settings
from .errors import ConnectionFailure, ProvisioningFailure, SchemaNotProvisioned
from .identifiers import PUBLIC_TENANT, validate_tenant_id


logger = logging.getLogger(__name__)

FAIL_CLOSED = "fail_closed"
AUTO = "auto"


class TenantMigrator:
    """Applies the Alembic migration set to one tenant schema in a subprocess."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def command(self, tenant_id: str) -> list[str]:
        return [
            sys.executable,
            "-m",
            "alembic",
            "-c",
            self.settings.ALEMBIC_CONFIG,
            "-x",
            f"tenant={tenant_id}",
            "upgrade",
            "head",
        ]

    async def upgrade(self, tenant_id: str) -> None:
        env = dict(os.environ)
        if self.settings.DATABASE_URL:
            env["CAMEYO_DATABASE_URL"] = self.settings.DATABASE_URL
        cwd = Path(self.settings.ALEMBIC_CONFIG).resolve().parent

        logger.info("Running migrations for tenant schema %s", tenant_id)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command(tenant_id),
                cwd=str(cwd),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise ProvisioningFailure(f"Could not start migration process: {exc}", tenant_id) from exc

        try:
            output, _ = await asyncio.wait_for(proc.communicate(), timeout=self.settings.MIGRATION_TIMEOUT)
        except asyncio.TimeoutError as exc:
            await _kill(proc)
            raise ProvisioningFailure(
                f"Migrations timed out after {self.settings.MIGRATION_TIMEOUT:.0f}s", tenant_id
            ) from exc
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        text = output.decode("utf-8", errors="replace").strip() if output else ""
        if proc.returncode != 0:
            logger.error("Migrations failed for tenant %s (exit=%s)\n%s", tenant_id, proc.returncode, text)
            raise ProvisioningFailure(f"Migrations exited with status {proc.returncode}", tenant_id)
        if text:
            logger.debug("Migration output for tenant %s:\n%s", tenant_id, text)


class SchemaProvisioner:
    def __init__(
        self,
        settings: Settings,
        *,
        engine: Engine | None = None,
        migrator: TenantMigrator | None = None,
        mode: str | None = None,
    ) -> None:
        self.settings = settings
        self.mode = mode or settings.TENANT_PROVISIONING_MODE
        if self.mode not in (FAIL_CLOSED, AUTO):
            raise ValueError(f"Unknown tenant provisioning mode '{self.mode}'")
        self.migrator = migrator or TenantMigrator(settings)
        self._engine = engine
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            if not self.settings.DATABASE_URL:
                raise RuntimeError("DATABASE_URL is not configured")
            # Short-lived admin connections only; tenant traffic has its own pools
            self._engine = create_engine(self.settings.DATABASE_URL, poolclass=pool.NullPool, future=True)
        return self._engine

    async def schema_exists(self, tenant_id: str) -> bool:
        return await run_in_threadpool(self._schema_exists, tenant_id)

    async def ensure_schema(self, tenant_id: str) -> None:
        validate_tenant_id(tenant_id, max_length=self.settings.TENANT_ID_MAX_LENGTH)
        if tenant_id == PUBLIC_TENANT:
            return

        if await self._checked_exists(tenant_id):
            return

        if self.mode == FAIL_CLOSED:
            raise SchemaNotProvisioned(
                f'Schema "{tenant_id}" does not exist and must be provisioned first',
                tenant_id,
            )

        await self.provision_tenant(tenant_id)

    async def provision_tenant(self, tenant_id: str) -> bool:
        """Create and migrate ``tenant_id``'s schema if it is missing.

        Returns ``True`` when this call did the work. Concurrent callers for
        the same tenant serialize on a per-tenant lock, and only the first
        one runs migrations.
        """
        validate_tenant_id(tenant_id, max_length=self.settings.TENANT_ID_MAX_LENGTH)
        if tenant_id == PUBLIC_TENANT:
            return False

        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        async with lock:
            if await self._checked_exists(tenant_id):
                return False

            logger.info("Provisioning schema for tenant %s", tenant_id)
            try:
                await run_in_threadpool(self._create_schema, tenant_id)
            except asyncio.CancelledError:
                await run_in_threadpool(self._drop_schema, tenant_id)
                raise
            except Exception as exc:
                raise ProvisioningFailure(f"Could not create schema: {exc}", tenant_id) from exc

            try:
                await self.migrator.upgrade(tenant_id)
            except (Exception, asyncio.CancelledError):
                # A half-migrated schema would pass the existence check forever
                await run_in_threadpool(self._drop_schema, tenant_id)
                raise

            logger.info("Schema for tenant %s provisioned", tenant_id)
            return True

    async def migrate_existing(self, tenant_id: str) -> None:
        validate_tenant_id(tenant_id, max_length=self.settings.TENANT_ID_MAX_LENGTH)
        await self.migrator.upgrade(tenant_id)

    async def _checked_exists(self, tenant_id: str) -> bool:
        try:
            return await self.schema_exists(tenant_id)
        except Exception as exc:
            logger.error("Error checking schema %s: %s", tenant_id, exc)
            raise ConnectionFailure(f"Could not verify schema: {exc}", tenant_id) from exc

    def _schema_exists(self, tenant_id: str) -> bool:
        with self.engine.connect() as conn:
            return inspect(conn).has_schema(tenant_id)

    def _create_schema(self, tenant_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(CreateSchema(tenant_id, if_not_exists=True))

    def _drop_schema(self, tenant_id: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(DropSchema(tenant_id, cascade=True, if_exists=True))
        except Exception:
            logger.exception("Failed to drop partially provisioned schema %s", tenant_id)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from ..core.config import Settings, get_settings
from ..core.logging import configure_logging
from ..tenancy.errors import TenantError
from ..tenancy.identifiers import PUBLIC_TENANT, normalize_tenant_id
from ..tenancy.provisioning import SchemaProvisioner


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create tenant schemas and bring them up to the current migration set",
    )
    parser.add_argument(
        "tenants",
        nargs="+",
        metavar="TENANT_ID",
        help="Tenant ids to provision (lowercase letters, digits, '_' and '-')",
    )
    parser.add_argument(
        "--migrate-existing",
        action="store_true",
        help="Also run migrations on schemas that already exist (including 'public')",
    )
    return parser.parse_args(argv)


async def provision(settings: Settings, tenants: list[str], *, migrate_existing: bool = False) -> int:
    provisioner = SchemaProvisioner(settings, mode="auto")
    failures = 0
    try:
        for tenant_id in tenants:
            try:
                created = await provisioner.provision_tenant(tenant_id)
                state = "created"
                if not created:
                    state = "exists"
                    if migrate_existing or tenant_id == PUBLIC_TENANT:
                        await provisioner.migrate_existing(tenant_id)
                        state = "migrated"
            except TenantError as exc:
                failures += 1
                sys.stderr.write(f"[{tenant_id}] {exc.detail}\n")
                continue
            sys.stdout.write(f"[{tenant_id}] {state}\n")
    finally:
        provisioner.close()
    return 1 if failures else 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if not settings.DATABASE_URL:
        sys.stderr.write("DATABASE_URL is not configured. Set CAMEYO_DATABASE_URL.\n")
        return 1

    try:
        tenants = [normalize_tenant_id(value, max_length=settings.TENANT_ID_MAX_LENGTH) for value in args.tenants]
    except TenantError as exc:
        sys.stderr.write(f"{exc.detail}\n")
        return 2

    return asyncio.run(provision(settings, tenants, migrate_existing=args.migrate_existing))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

"""Tenant resolution and per-tenant storage routing."""

from .client import TenantClient, tenant_database_url
from .context import current_tenant_id, get_tenant_id_or_none, run_in_tenant, use_tenant
from .errors import (
    ConnectionFailure,
    InvalidTenantId,
    ProvisioningFailure,
    SchemaNotProvisioned,
    TenantError,
)
from .identifiers import PUBLIC_TENANT, normalize_tenant_id, validate_tenant_id
from .provisioning import SchemaProvisioner, TenantMigrator
from .registry import TenantClientRegistry

__all__ = [
    "ConnectionFailure",
    "InvalidTenantId",
    "PUBLIC_TENANT",
    "ProvisioningFailure",
    "SchemaNotProvisioned",
    "SchemaProvisioner",
    "TenantClient",
    "TenantClientRegistry",
    "TenantError",
    "TenantMigrator",
    "current_tenant_id",
    "get_tenant_id_or_none",
    "normalize_tenant_id",
    "run_in_tenant",
    "tenant_database_url",
    "use_tenant",
    "validate_tenant_id",
]

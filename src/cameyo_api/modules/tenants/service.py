from __future__ import annotations

from ...core.config import Settings
from ...tenancy.registry import TenantClientRegistry
from .schemas import TenantInfo


def get_current_tenant(tenant_id: str, registry: TenantClientRegistry, settings: Settings) -> TenantInfo:
    # The tenant id is the schema name; see tenancy.client.tenant_database_url
    return TenantInfo(
        tenant_id=tenant_id,
        schema_name=tenant_id,
        client_cached=registry.is_cached(tenant_id),
        provisioning_mode=settings.TENANT_PROVISIONING_MODE,
    )

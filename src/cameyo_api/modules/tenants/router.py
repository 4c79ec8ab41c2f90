from fastapi import APIRouter, Depends

from ...api.deps import get_settings_dep, get_tenant_id, get_tenant_registry
from ...core.config import Settings
from ...tenancy.registry import TenantClientRegistry
from .schemas import TenantInfo
from .service import get_current_tenant


router = APIRouter()


@router.get("/me", response_model=TenantInfo)
def read_my_tenant(
    tenant_id: str = Depends(get_tenant_id),
    registry: TenantClientRegistry = Depends(get_tenant_registry),
    settings: Settings = Depends(get_settings_dep),
) -> TenantInfo:
    return get_current_tenant(tenant_id, registry, settings)

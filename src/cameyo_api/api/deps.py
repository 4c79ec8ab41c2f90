from typing import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..core.config import Settings, get_settings
from ..tenancy.client import TenantClient
from ..tenancy.context import current_tenant_id
from ..tenancy.registry import TenantClientRegistry


def get_settings_dep(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_tenant_id(request: Request) -> str:
    return getattr(request.state, "tenant_id", None) or current_tenant_id()


def get_tenant_registry(request: Request) -> TenantClientRegistry:
    return request.app.state.tenant_registry


async def get_tenant_client(request: Request) -> TenantClient:
    registry = get_tenant_registry(request)
    return await registry.get_client(get_tenant_id(request))


def get_db(client: TenantClient = Depends(get_tenant_client)) -> Generator[Session, None, None]:
    with client.session() as db:
        yield db

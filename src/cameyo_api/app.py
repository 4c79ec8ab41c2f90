import logging
from functools import partial

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from .api.errors import register_exception_handlers
from .api.v1.router import router as api_v1_router
from .common.middleware import (
    AccessLogMiddleware,
    RequestIDMiddleware,
    TenantContextMiddleware,
)
from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .core.tracing import init_tracing, instrument_fastapi
from .tenancy.client import TenantClient
from .tenancy.provisioning import SchemaProvisioner
from .tenancy.registry import TenantClientRegistry


logger = logging.getLogger(__name__)


def build_tenant_registry(settings: Settings) -> TenantClientRegistry:
    return TenantClientRegistry(
        SchemaProvisioner(settings),
        partial(TenantClient.for_tenant, settings),
        max_tenant_id_length=settings.TENANT_ID_MAX_LENGTH,
    )


def create_app(
    settings: Settings | None = None,
    *,
    tenant_registry: TenantClientRegistry | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    init_tracing(settings)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        debug=settings.DEBUG,
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.tenant_registry = tenant_registry or build_tenant_registry(settings)

    # Middlewares (order matters: first added = innermost, last added = outermost)
    app.add_middleware(TenantContextMiddleware, settings=settings)
    app.add_middleware(GZipMiddleware)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", settings.TENANT_HEADER],
    )

    # Exception handlers
    register_exception_handlers(app)

    # Routers (versioned)
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    instrument_fastapi(app, settings)

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - runtime
        logger.info(
            "Tenant router ready (provisioning=%s, header=%s)",
            settings.TENANT_PROVISIONING_MODE,
            settings.TENANT_HEADER,
        )

    # Lifespan: every cached tenant client is closed with the app
    @app.on_event("shutdown")
    async def _shutdown() -> None:
        registry: TenantClientRegistry = app.state.tenant_registry
        await registry.shutdown()
        registry.provisioner.close()

    return app

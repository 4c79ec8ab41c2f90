import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..tenancy.errors import TenantError


logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_, exc: RequestValidationError):  # type: ignore[override]
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(TenantError)
    async def tenant_exception_handler(request: Request, exc: TenantError):  # type: ignore[override]
        status_code = int(exc.status_code)
        message = "%s %s %s - tenant=%s %s: %s"
        args = (request.method, request.url.path, status_code, exc.tenant_id, type(exc).__name__, exc.detail)
        if status_code >= 500:
            logger.error(message, *args)
        else:
            logger.warning(message, *args)
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.detail, "error": type(exc).__name__, "tenant_id": exc.tenant_id},
        )

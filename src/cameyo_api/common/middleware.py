from __future__ import annotations

import contextvars
import ipaddress
import logging
import time
import uuid
from typing import Callable

from opentelemetry import baggage, trace
from opentelemetry.context import attach, detach
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from ..core.config import Settings, get_settings
from ..core.tracing import tag_current_span
from ..tenancy.context import tenant_id_ctx_var
from ..tenancy.errors import InvalidTenantId, TenantError
from ..tenancy.identifiers import PUBLIC_TENANT, normalize_tenant_id


request_id_ctx_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:  # type: ignore[override]
        req_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        token = request_id_ctx_var.set(req_id)
        try:
            request.state.request_id = req_id
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        response.headers.setdefault(self.header_name, req_id)
        return response


def resolve_tenant(request: Request, settings: Settings) -> str:
    """Pick the tenant for ``request``: header, then subdomain, then default.

    A header that is present always decides, even when it is blank. Blank
    values resolve to the default tenant. Raises :class:`InvalidTenantId`
    when the chosen source holds a value that is not a safe schema name.
    """
    default = settings.DEFAULT_TENANT or PUBLIC_TENANT

    header_value = request.headers.get(settings.TENANT_HEADER)
    if header_value:
        return _normalize(header_value, default, settings)

    if settings.TENANT_SUBDOMAIN_ENABLED:
        host = _hostname(request.headers.get("host", ""))
        if host and "." in host and not _is_ip_address(host):
            return _normalize(host.split(".", 1)[0], default, settings)

    return default


def _normalize(value: str, default: str, settings: Settings) -> str:
    if not value.strip():
        return default
    return normalize_tenant_id(value, max_length=settings.TENANT_ID_MAX_LENGTH)


def _hostname(host_header: str) -> str:
    host = host_header.strip()
    if host.startswith("["):
        # bracketed IPv6 literal, with or without a port
        return host[1:].split("]", 1)[0]
    return host.split(":", 1)[0]


def _is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Resolve the tenant, bind it for the request, and open its storage.

    The tenant's client is acquired before the route runs so a missing
    schema or a dead database fails the request up front.
    """

    def __init__(self, app: ASGIApp, settings: Settings | None = None) -> None:
        super().__init__(app)
        self.settings = settings or get_settings()
        self.exempt_paths = set(self.settings.tenant_eager_exempt_paths_list)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:  # type: ignore[override]
        try:
            tenant_id = resolve_tenant(request, self.settings)
        except InvalidTenantId as exc:
            logger.warning("Rejected tenant id on %s %s: %s", request.method, request.url.path, exc.detail)
            return _tenant_error_response(exc)

        token = tenant_id_ctx_var.set(tenant_id)
        baggage_token = None
        try:
            request.state.tenant_id = tenant_id
            tag_current_span("tenant.id", tenant_id)
            baggage_token = attach(baggage.set_baggage("tenant.id", tenant_id))

            if request.url.path not in self.exempt_paths:
                registry = request.app.state.tenant_registry
                try:
                    await registry.get_client(tenant_id)
                except TenantError as exc:
                    logger.error(
                        "Storage unavailable for tenant %s on %s %s: %s",
                        tenant_id,
                        request.method,
                        request.url.path,
                        exc.detail,
                    )
                    return _tenant_error_response(exc)

            response = await call_next(request)
        finally:
            tenant_id_ctx_var.reset(token)
            if baggage_token is not None:
                detach(baggage_token)
        return response


def _tenant_error_response(exc: TenantError) -> JSONResponse:
    return JSONResponse(
        {"detail": exc.detail, "error": type(exc).__name__, "tenant_id": exc.tenant_id},
        status_code=int(exc.status_code),
    )


class RequestIDLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - pure logging
        record.request_id = request_id_ctx_var.get()
        record.tenant_id = tenant_id_ctx_var.get() or "-"

        span_ctx = trace.get_current_span().get_span_context()
        if span_ctx and span_ctx.trace_id:
            record.trace_id = f"{span_ctx.trace_id:032x}"
            record.span_id = f"{span_ctx.span_id:016x}"
        else:
            record.trace_id = record.span_id = "-"
        return True


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One line per request: method, path, status and duration."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self.logger = logging.getLogger("cameyo_api.access")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:  # type: ignore[override]
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.logger.error("%s %s 500 %.0fms", request.method, request.url.path, duration_ms)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log = self.logger.error
        elif status >= 400:
            log = self.logger.warning
        else:
            log = self.logger.info
        log("%s %s %s %.0fms", request.method, request.url.path, status, duration_ms)
        return response

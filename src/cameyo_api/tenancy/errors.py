from __future__ import annotations

from http import HTTPStatus


class TenantError(Exception):
    """Base class for failures while routing a request to tenant storage."""

    status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, tenant_id: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.tenant_id = tenant_id

    def __str__(self) -> str:  # pragma: no cover
        return self.detail


class InvalidTenantId(TenantError):
    status_code = HTTPStatus.BAD_REQUEST


class SchemaNotProvisioned(TenantError):
    pass


class ConnectionFailure(TenantError):
    pass


class ProvisioningFailure(TenantError):
    pass

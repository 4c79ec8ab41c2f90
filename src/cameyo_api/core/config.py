from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = Field(default="cameyo-api")
    ENV: str = Field(default="dev")
    DEBUG: bool = Field(default=True)

    API_V1_PREFIX: str = Field(default="/api/v1")
    CORS_ORIGINS: list[str] | str = Field(default_factory=lambda: ["*"])  # allow list or comma string
    LOG_LEVEL: str = Field(default="INFO")

    DATABASE_URL: str | None = Field(default=None)
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=20)
    DB_POOL_TIMEOUT: float = Field(default=30.0)
    DB_ECHO: bool = Field(default=False)

    # Tenant routing
    TENANT_HEADER: str = Field(default="X-Tenant-ID")
    DEFAULT_TENANT: str = Field(default="public")
    TENANT_ID_MAX_LENGTH: int = Field(default=63)
    TENANT_SUBDOMAIN_ENABLED: bool = Field(default=True)
    TENANT_PROVISIONING_MODE: Literal["fail_closed", "auto"] = Field(default="fail_closed")
    TENANT_EAGER_EXEMPT_PATHS: list[str] | str = Field(
        default_factory=lambda: ["/api/v1/health", "/docs", "/redoc", "/openapi.json"]
    )

    ALEMBIC_CONFIG: str = Field(default="alembic.ini")
    MIGRATION_TIMEOUT: float = Field(default=300.0)

    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = Field(default=None)
    OTEL_EXPORTER_OTLP_PROTOCOL: str = Field(default="grpc")
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(default=None)
    OTEL_SERVICE_NAME: str | None = Field(default=None)
    OTEL_SAMPLE_RATIO: float | None = Field(default=None)
    OTEL_ENABLED: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CAMEYO_",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        value = self.CORS_ORIGINS
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            if value.strip() == "*":
                return ["*"]
            # split on commas and strip
            return [p.strip() for p in value.split(",") if p.strip()]
        return ["*"]

    @property
    def tenant_eager_exempt_paths_list(self) -> list[str]:
        value = self.TENANT_EAGER_EXEMPT_PATHS
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [path.strip() for path in value.split(",") if path.strip()]
        return []

    @property
    def otel_headers_dict(self) -> dict[str, str]:
        value = self.OTEL_EXPORTER_OTLP_HEADERS
        if not value:
            return {}
        headers: dict[str, str] = {}
        parts = value.split(",")
        for part in parts:
            if "=" not in part:
                continue
            key, val = part.split("=", 1)
            key = key.strip()
            val = val.strip()
            if key:
                headers[key] = val
        return headers


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
        # normalize CORS to list for starlette
        _settings.CORS_ORIGINS = _settings.cors_origins_list
        _settings.TENANT_EAGER_EXEMPT_PATHS = _settings.tenant_eager_exempt_paths_list
    return _settings

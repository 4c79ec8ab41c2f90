from __future__ import annotations

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as OTLPGrpcExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as OTLPHttpExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_ON, TraceIdRatioBased

from .config import Settings


logger = logging.getLogger(__name__)

_tracing_configured = False
_instrumented_fastapi_ids: set[int] = set()
_instrumented_sqlalchemy = False


def init_tracing(settings: Settings) -> None:
    global _tracing_configured

    if _tracing_configured:
        return

    if not settings.OTEL_ENABLED:
        logger.info("Tracing is disabled via configuration flag")
        return

    endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        logger.info("Tracing is disabled; no OTLP endpoint configured")
        return

    protocol = (settings.OTEL_EXPORTER_OTLP_PROTOCOL or "grpc").lower()
    headers = settings.otel_headers_dict

    exporter = _create_exporter(protocol=protocol, endpoint=endpoint, headers=headers)
    if exporter is None:
        logger.warning("Tracing exporter not created (protocol=%s) -- disabling tracing", protocol)
        return

    sampler = _create_sampler(settings)

    resource_attributes: dict[str, Any] = {
        "service.name": settings.OTEL_SERVICE_NAME or settings.PROJECT_NAME,
        "service.version": "1.0.0",
        "deployment.environment": settings.ENV,
    }
    provider = TracerProvider(resource=Resource.create(resource_attributes), sampler=sampler)
    provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)

    # Tenant engines are created lazily, so hook engine creation up front
    instrument_sqlalchemy()

    _tracing_configured = True
    logger.info("Tracing initialized with OTLP exporter", extra={"otel_endpoint": endpoint, "otel_protocol": protocol})


def instrument_fastapi(app, settings: Settings) -> None:
    if not _tracing_configured:
        return

    app_id = id(app)
    if app_id in _instrumented_fastapi_ids:
        return

    provider = trace.get_tracer_provider()

    try:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
        _instrumented_fastapi_ids.add(app_id)
    except Exception as exc:  # pragma: no cover
        logger.warning("Failed to instrument FastAPI for tracing: %s", exc)


def instrument_sqlalchemy() -> None:
    global _instrumented_sqlalchemy
    if _instrumented_sqlalchemy:
        return
    try:
        SQLAlchemyInstrumentor().instrument(tracer_provider=trace.get_tracer_provider())
        _instrumented_sqlalchemy = True
    except Exception as exc:  # pragma: no cover
        logger.warning("Failed to instrument SQLAlchemy: %s", exc)


def tag_current_span(key: str, value: str) -> None:
    span = trace.get_current_span()
    if span is not None and span.is_recording():
        span.set_attribute(key, value)


def _create_exporter(protocol: str, endpoint: str, headers: dict[str, str]):
    protocol = protocol.lower()
    if protocol == "grpc":
        return OTLPGrpcExporter(endpoint=endpoint, headers=headers)
    if protocol in {"http", "http/protobuf", "http_protobuf"}:
        return OTLPHttpExporter(endpoint=endpoint, headers=headers)
    logger.warning("Unsupported OTLP protocol '%s'", protocol)
    return None


def _create_sampler(settings: Settings):
    ratio = settings.OTEL_SAMPLE_RATIO
    if ratio is None:
        return ALWAYS_ON
    ratio = max(0.0, min(1.0, ratio))
    if ratio >= 1.0:
        return ALWAYS_ON
    return TraceIdRatioBased(ratio)

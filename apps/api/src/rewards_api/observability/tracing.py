from __future__ import annotations

import os
from typing import Dict

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.semconv.resource import ResourceAttributes

_CONFIGURED = False
_TRACER_NAME = "rewards_api"


def _parse_headers(raw: str | None) -> Dict[str, str] | None:
    if not raw:
        return None
    headers: Dict[str, str] = {}
    for pair in raw.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers


def _build_exporter() -> SpanExporter:
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        return OTLPSpanExporter(endpoint=endpoint, headers=_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS")))
    return ConsoleSpanExporter()


def _ensure_provider(*, service_name: str, service_version: str, environment: str) -> trace.TracerProvider:
    global _CONFIGURED

    if _CONFIGURED:
        return trace.get_tracer_provider()

    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: service_name,
            ResourceAttributes.SERVICE_VERSION: service_version,
            ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
        }
    )
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(_build_exporter()))
    trace.set_tracer_provider(tracer_provider)
    LoggingInstrumentor().instrument(set_logging_format=False)
    _CONFIGURED = True
    return tracer_provider


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
) -> None:
    """Configure OpenTelemetry tracing + log correlation for the FastAPI app."""

    tracer_provider = _ensure_provider(
        service_name=service_name,
        service_version=service_version,
        environment=environment,
    )
    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)


def configure_worker_tracing(*, service_name: str, service_version: str, environment: str) -> None:
    """Tracing for processes without an ASGI app (Celery workers)."""

    _ensure_provider(service_name=service_name, service_version=service_version, environment=environment)


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(_TRACER_NAME)


__all__ = ["configure_tracing", "configure_worker_tracing", "get_tracer"]

"""OpenTelemetry wiring for the HTTP surface."""

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
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.semconv.resource import ResourceAttributes

_PROVIDER: TracerProvider | None = None


def _parse_headers(raw: str | None) -> Dict[str, str] | None:
    if not raw:
        return None
    headers: Dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers or None


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
) -> None:
    """Install a tracer provider once per process and instrument ``app``.

    Spans are exported over OTLP only when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is
    set; otherwise they still supply trace ids to the log records.
    """

    global _PROVIDER

    if _PROVIDER is None:
        resource = Resource.create(
            {
                ResourceAttributes.SERVICE_NAME: service_name,
                ResourceAttributes.SERVICE_VERSION: service_version,
                ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
            }
        )
        provider = TracerProvider(resource=resource)
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if endpoint:
            exporter = OTLPSpanExporter(
                endpoint=endpoint,
                headers=_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS")),
            )
            provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        LoggingInstrumentor().instrument(set_logging_format=False)
        _PROVIDER = provider

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_PROVIDER)


__all__ = ["configure_tracing"]

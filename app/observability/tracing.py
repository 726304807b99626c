"""
Distributed Tracing with OpenTelemetry.

The API process and the chain listener export to the same collector under one
service name; the storefront.component resource attribute tells them apart.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from app.config import settings

SpanValue = str | int | float | bool


def setup_tracing(component: str = "api") -> None:
    """Install an OTLP-exporting TracerProvider when tracing is enabled."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": settings.api_version,
                "storefront.component": component,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace queries on an AsyncEngine (instrumented through its sync engine)."""
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


def _span_value(value: Any) -> SpanValue:
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """
    Set attributes on span. None values are dropped; Decimals, enums and other
    objects are recorded as strings.

    Usage:
        add_span_attributes(span, payment_request_id=42, outcome="fulfilled")
    """
    span.set_attributes(
        {key: _span_value(value) for key, value in attributes.items() if value is not None}
    )


def set_span_error(span: Span, error: Exception) -> None:
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, f"{type(error).__name__}: {error}"))

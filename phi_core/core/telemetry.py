"""OpenTelemetry tracing for the PHI core.

Spans carry ids, resource types and status codes only. Query strings are
stripped from HTTP span attributes because search terms are PHI.
"""

from __future__ import annotations

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from phi_core.core.config import Settings, settings

logger = logging.getLogger(__name__)

GATE_TRACER_NAME = "phi_core.gate"

# HTTP span attributes that may embed the raw query string
_URL_ATTRIBUTES = ("http.url", "http.target", "url.full")
_QUERY_ATTRIBUTE = "url.query"
_REDACTED = "redacted"

# Never traced
_EXCLUDED_URLS = "/health"


def get_gate_tracer() -> trace.Tracer:
    """Tracer for phi_gate.* spans. A no-op until a provider is installed."""
    return trace.get_tracer(GATE_TRACER_NAME, settings.VERSION)


def parse_otlp_headers(value: str) -> dict[str, str]:
    """Parse ``key=value,key2=value2``; malformed pairs are skipped."""
    pairs = (item.split("=", 1) for item in value.split(",") if "=" in item)
    return {key.strip(): val.strip() for key, val in pairs if key.strip()}


def redact_query(url: str) -> str:
    base, sep, _ = url.partition("?")
    return f"{base}?{_REDACTED}" if sep else base


def scrub_http_span(span: Any, scope: dict[str, Any] | None = None) -> None:
    """FastAPI server request hook: drop query strings from a request span."""
    if span is None or not span.is_recording():
        return
    attributes = getattr(span, "attributes", None) or {}
    for name in _URL_ATTRIBUTES:
        value = attributes.get(name)
        if isinstance(value, str) and "?" in value:
            span.set_attribute(name, redact_query(value))
    if attributes.get(_QUERY_ATTRIBUTE):
        span.set_attribute(_QUERY_ATTRIBUTE, _REDACTED)


def build_tracer_provider(config: Settings) -> TracerProvider:
    resource = Resource.create(
        {
            SERVICE_NAME: config.OTEL_SERVICE_NAME,
            SERVICE_VERSION: config.VERSION,
            "deployment.environment": config.ENV,
        }
    )
    sampler = ParentBased(TraceIdRatioBased(config.OTEL_SAMPLE_RATE))
    return TracerProvider(resource=resource, sampler=sampler)


def configure_telemetry(app, engine=None, config: Settings = settings) -> TracerProvider | None:
    """
    Install an OTLP tracer provider and instrument the app when enabled.

    SQLAlchemy spans are opt-in (OTEL_INSTRUMENT_SQLALCHEMY). Returns the
    installed provider, or None when tracing stays off.
    """
    if not config.OTEL_ENABLED or not config.OTEL_EXPORTER_OTLP_ENDPOINT:
        return None

    try:
        provider = build_tracer_provider(config)
        exporter = OTLPSpanExporter(
            endpoint=config.OTEL_EXPORTER_OTLP_ENDPOINT,
            headers=parse_otlp_headers(config.OTEL_EXPORTER_OTLP_HEADERS),
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)

        FastAPIInstrumentor.instrument_app(
            app,
            tracer_provider=provider,
            server_request_hook=scrub_http_span,
            excluded_urls=_EXCLUDED_URLS,
        )
        if config.OTEL_INSTRUMENT_SQLALCHEMY and engine is not None:
            SQLAlchemyInstrumentor().instrument(engine=engine, tracer_provider=provider)
        logger.info("OpenTelemetry tracing enabled for %s", config.OTEL_SERVICE_NAME)
        return provider
    except Exception:
        logger.exception("Failed to initialize OpenTelemetry tracing")
        return None

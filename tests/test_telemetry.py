"""
Tracing tests.

Tests cover:
- OTLP header parsing
- Query strings scrubbed from HTTP span attributes
- Resource attributes and the disabled default
"""

from fastapi import FastAPI
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from phi_core.core.config import Settings
from phi_core.core.telemetry import (
    build_tracer_provider,
    configure_telemetry,
    parse_otlp_headers,
    redact_query,
    scrub_http_span,
)


def test_parse_otlp_headers():
    assert parse_otlp_headers("api-key=abc, x-team = phi ,broken") == {"api-key": "abc", "x-team": "phi"}
    assert parse_otlp_headers("") == {}


def test_redact_query():
    assert redact_query("/resources/patient/search?field=name&q=Jane") == "/resources/patient/search?redacted"
    assert redact_query("/resources/patient/123") == "/resources/patient/123"


def test_scrub_http_span_drops_search_terms():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    tracer = provider.get_tracer("test")

    attributes = {
        "http.url": "http://test/resources/patient/search?field=contact_email&q=jane@example.com",
        "http.target": "/resources/patient/search?field=contact_email&q=jane@example.com",
        "url.query": "field=contact_email&q=jane@example.com",
        "http.method": "GET",
    }
    with tracer.start_as_current_span("GET /resources/{resource_type}/search", attributes=attributes) as span:
        scrub_http_span(span, {})

    recorded = dict(exporter.get_finished_spans()[0].attributes)
    assert "jane" not in str(recorded)
    assert recorded["http.target"] == "/resources/patient/search?redacted"
    assert recorded["url.query"] == "redacted"
    assert recorded["http.method"] == "GET"


def test_tracer_provider_resource():
    config = Settings(_env_file=None, ENV="test", OTEL_SERVICE_NAME="phi-core-test", VERSION="1.2.3")
    resource = build_tracer_provider(config).resource.attributes

    assert resource["service.name"] == "phi-core-test"
    assert resource["service.version"] == "1.2.3"
    assert resource["deployment.environment"] == "test"


def test_disabled_by_default():
    config = Settings(_env_file=None, ENV="test")
    assert configure_telemetry(FastAPI(), config=config) is None

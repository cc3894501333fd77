"""OpenTelemetry tracing configuration."""

from __future__ import annotations

from typing import Dict

from flask import Flask
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[import-not-found]
    OTLPSpanExporter,
)
from opentelemetry.instrumentation.flask import FlaskInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)


_provider: TracerProvider | None = None
_requests_instrumented = False


def _parse_headers(raw: str | None) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for item in (raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _build_exporter(app: Flask) -> SpanExporter | None:
    if exporter := app.config.get("OTEL_SPAN_EXPORTER"):
        return exporter

    exporter_name = str(app.config.get("OTEL_EXPORTER", "none")).lower()
    if exporter_name == "console":
        return ConsoleSpanExporter()
    if exporter_name != "otlp":
        return None

    endpoint = app.config.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None
    headers = _parse_headers(app.config.get("OTEL_EXPORTER_OTLP_HEADERS"))
    return OTLPSpanExporter(endpoint=endpoint, headers=headers or None)


def configure_tracing(app: Flask) -> TracerProvider:
    """Configure OpenTelemetry tracing for the Flask application.

    Spans are always created; they are only exported when ``OTEL_EXPORTER``
    is ``otlp`` or ``console`` or an exporter instance is supplied through
    ``OTEL_SPAN_EXPORTER``.
    """

    global _provider, _requests_instrumented

    if app.extensions.get("tracing_configured"):
        return app.extensions["tracer_provider"]

    if _provider is None:
        existing_provider = trace.get_tracer_provider()
        if isinstance(existing_provider, TracerProvider):
            _provider = existing_provider
        else:
            service_name = app.config.get("OTEL_SERVICE_NAME") or "schema-gateway"
            _provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
            trace.set_tracer_provider(_provider)

    exporter = _build_exporter(app)
    if exporter is not None:
        use_simple = bool(app.config.get("OTEL_USE_SIMPLE_PROCESSOR")) or isinstance(
            exporter, ConsoleSpanExporter
        )
        processor_class = SimpleSpanProcessor if use_simple else BatchSpanProcessor
        _provider.add_span_processor(processor_class(exporter))

    if not _requests_instrumented:
        RequestsInstrumentor().instrument(raise_on_double_instrumentation=False)
        _requests_instrumented = True

    FlaskInstrumentor().instrument_app(app, excluded_urls=r"/health|/metrics")
    app.extensions["tracing_configured"] = True
    app.extensions["tracer_provider"] = _provider
    return _provider

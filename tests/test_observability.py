"""Tests covering observability helpers."""

from __future__ import annotations

import json
import logging
from unittest.mock import Mock

import requests
from opentelemetry import trace
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from schema_gateway import app as app_module
from schema_gateway.app import create_app
from schema_gateway.config import InMemoryConfigStore
from schema_gateway.observability import tracing as tracing_module
from schema_gateway.observability.logging import JsonFormatter, resolve_log_level


def _build_response(status: int = 200, body: bytes | None = None):
    response = requests.Response()
    response.status_code = status
    response._content = body or b"{}"
    response._content_consumed = True
    response.headers["Content-Type"] = "application/json"
    return response


def _patch_proxy_session(monkeypatch, handler):
    mock_session = Mock()
    mock_session.request = handler
    monkeypatch.setattr("schema_gateway.routes.proxy._get_http_session", lambda: mock_session)
    return mock_session


def test_metrics_endpoint_records_requests(monkeypatch):
    monkeypatch.setenv("UPSTREAM_API", "http://upstream")
    monkeypatch.setenv("TRANSFORMATION_TIMEOUT_MS", "1000")
    app = create_app(config_store=InMemoryConfigStore())
    _patch_proxy_session(monkeypatch, lambda **_: _build_response(body=b'{"id": 1}'))

    client = app.test_client()
    response = client.get("/users/1", headers={"API-Version": "v1"})
    assert response.status_code == 200

    metrics_response = client.get("/metrics")
    assert metrics_response.status_code == 200
    assert metrics_response.mimetype == "text/plain"
    assert "schema_gateway_http_requests_total" in metrics_response.data.decode()

    registry = app.extensions["metrics"].registry
    assert registry.get_sample_value(
        "schema_gateway_http_requests_total",
        {"method": "GET", "status": "200", "api_version": "v1"},
    ) == 1.0
    assert registry.get_sample_value(
        "schema_gateway_upstream_request_duration_seconds_count", {"status": "200"}
    ) == 1.0
    assert registry.get_sample_value(
        "schema_gateway_transformation_duration_seconds_count",
        {"direction": "response", "from_version": "v2", "to_version": "v1"},
    ) == 1.0
    assert registry.get_sample_value("schema_gateway_expression_cache_entries") == 1.0


def test_transformation_failures_are_counted(monkeypatch):
    monkeypatch.setenv("UPSTREAM_API", "http://upstream")
    document = {
        "schemaVersion": "1.0.0",
        "defaultVersion": "v2",
        "transformations": {
            "v1": {"request": {"source": "{ broken"}, "response": {"source": "$"}},
            "v2": {"request": {"source": "$"}, "response": {"source": "$"}},
        },
    }
    app = create_app(config_store=InMemoryConfigStore({"config:main": json.dumps(document)}))

    client = app.test_client()
    response = client.post("/users", json={"user_id": 1}, headers={"API-Version": "v1"})
    assert response.status_code == 400

    registry = app.extensions["metrics"].registry
    assert registry.get_sample_value(
        "schema_gateway_transformation_failures_total",
        {"direction": "request", "from_version": "v1", "to_version": "v2"},
    ) == 1.0


def test_proxy_tracing_creates_spans(monkeypatch):
    exporter = InMemorySpanExporter()

    monkeypatch.setenv("UPSTREAM_API", "http://upstream")
    monkeypatch.setenv("TRANSFORMATION_TIMEOUT_MS", "1000")

    monkeypatch.setattr(app_module, "configure_tracing", lambda app: None)

    app = create_app(config_store=InMemoryConfigStore())

    tracing_module._provider = None
    tracing_module._requests_instrumented = False
    app.config["OTEL_SPAN_EXPORTER"] = exporter
    app.config["OTEL_USE_SIMPLE_PROCESSOR"] = True
    app.extensions.pop("tracing_configured", None)

    tracing_module.configure_tracing(app)
    _patch_proxy_session(monkeypatch, lambda **_: _build_response(body=b'{"id": 1}'))

    client = app.test_client()
    resp = client.post("/users", json={"user_id": 1}, headers={"API-Version": "v1"})
    assert resp.status_code == 200

    trace.get_tracer_provider().force_flush()
    spans = exporter.get_finished_spans()
    span_names = {span.name for span in spans}
    assert {
        "proxy.forward",
        "proxy.transform_request",
        "proxy.upstream_request",
        "proxy.transform_response",
    } <= span_names

    forward_span = next(span for span in spans if span.name == "proxy.forward")
    assert forward_span.attributes.get("http.status_code") == 200
    assert forward_span.attributes.get("api.version") == "v1"
    assert forward_span.attributes.get("api.upstream_version") == "v2"

    request_span = next(span for span in spans if span.name == "proxy.transform_request")
    assert request_span.attributes.get("transformation.success") is True


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord(
        "schema_gateway", logging.INFO, __file__, 1, "request completed", (), None
    )
    record.request_id = "abc"
    record.status = 200

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "request completed"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "abc"
    assert payload["status"] == 200
    assert "msg" not in payload


def test_resolve_log_level():
    assert resolve_log_level("debug") == logging.DEBUG
    assert resolve_log_level("nonsense") == logging.INFO
    assert resolve_log_level(None) == logging.INFO

"""Prometheus metrics helpers."""

from __future__ import annotations
from flask import Flask, Response
from prometheus_client import (  # type: ignore[import-not-found]
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ..transformations.engine import TransformationOutcome


class MetricsRegistry:
    """Container around the Prometheus collectors used by the gateway."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        self.http_requests_total = Counter(
            "schema_gateway_http_requests_total",
            "Total number of HTTP requests processed by the gateway.",
            ("method", "status", "api_version"),
            registry=self.registry,
        )
        self.http_request_latency = Histogram(
            "schema_gateway_http_request_duration_seconds",
            "Latency of HTTP requests processed by the gateway.",
            ("method",),
            registry=self.registry,
        )
        self.upstream_latency = Histogram(
            "schema_gateway_upstream_request_duration_seconds",
            "Latency of upstream requests performed by the gateway.",
            ("status",),
            registry=self.registry,
        )
        self.transformation_latency = Histogram(
            "schema_gateway_transformation_duration_seconds",
            "Duration of expression evaluations, including compilation on cache misses.",
            ("direction", "from_version", "to_version"),
            buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
            registry=self.registry,
        )
        self.transformation_failures = Counter(
            "schema_gateway_transformation_failures_total",
            "Number of transformations that failed or timed out.",
            ("direction", "from_version", "to_version"),
            registry=self.registry,
        )
        self.expression_cache_size = Gauge(
            "schema_gateway_expression_cache_entries",
            "Number of compiled expressions currently cached.",
            registry=self.registry,
        )

    def observe_http_request(
        self,
        *,
        method: str,
        status: int,
        api_version: str | None,
        duration_seconds: float | None,
    ) -> None:
        self.http_requests_total.labels(
            method=method, status=str(status), api_version=api_version or ""
        ).inc()
        if duration_seconds is not None:
            self.http_request_latency.labels(method=method).observe(max(duration_seconds, 0.0))

    def observe_upstream_latency(self, *, status: int, duration_seconds: float) -> None:
        self.upstream_latency.labels(status=str(status)).observe(max(duration_seconds, 0.0))

    def observe_transformation(self, outcome: TransformationOutcome) -> None:
        metrics = outcome.metrics
        if metrics is None:
            return
        labels = {
            "direction": metrics.direction,
            "from_version": metrics.from_version,
            "to_version": metrics.to_version,
        }
        self.transformation_latency.labels(**labels).observe(
            max(metrics.duration_ms / 1000.0, 0.0)
        )
        if not outcome.success:
            self.transformation_failures.labels(**labels).inc()


def configure_metrics(app: Flask) -> MetricsRegistry:
    """Initialise Prometheus metrics and expose the `/metrics` endpoint."""

    if "metrics" in app.extensions:
        return app.extensions["metrics"]

    metrics = MetricsRegistry()
    app.extensions["metrics"] = metrics

    @app.route("/metrics")
    def metrics_endpoint() -> Response:
        engine = app.extensions.get("transformation_engine")
        if engine is not None:
            metrics.expression_cache_size.set(engine.cache_stats()["size"])
        return Response(generate_latest(metrics.registry), mimetype=CONTENT_TYPE_LATEST)

    return metrics

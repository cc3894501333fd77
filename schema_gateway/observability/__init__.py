"""Observability helpers for the schema gateway."""

from .logging import configure_structured_logging  # noqa: F401
from .metrics import MetricsRegistry, configure_metrics  # noqa: F401
from .tracing import configure_tracing  # noqa: F401

__all__ = [
    "configure_structured_logging",
    "configure_metrics",
    "configure_tracing",
    "MetricsRegistry",
]

"""Route registration helpers for the gateway."""

from __future__ import annotations

from flask import Flask

from .proxy import proxy_bp

__all__ = ["register_proxy_blueprint"]


def register_proxy_blueprint(app: Flask) -> None:
    """Register the catch-all proxy after the gateway's own endpoints."""

    app.register_blueprint(proxy_bp)

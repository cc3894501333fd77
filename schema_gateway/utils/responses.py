"""Utilities for building JSON API responses."""

from typing import Any, Dict, Optional

from flask import g, jsonify

POWERED_BY = "Schema-Gateway"


def error_response(
    status_code: int,
    error: str,
    message: str,
    *,
    api_version: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
):
    """Return a JSON error envelope.

    The body always carries ``error`` and ``message``; ``requestId`` is added
    when the current request has one. ``details`` are merged into the body.
    """

    payload: Dict[str, Any] = {"error": error, "message": message}
    if details:
        payload.update(details)

    request_id = getattr(g, "request_id", None)
    if request_id:
        payload.setdefault("requestId", request_id)

    response = jsonify(payload)
    response.status_code = status_code
    response.headers["X-Powered-By"] = POWERED_BY
    if request_id:
        response.headers["X-Request-ID"] = request_id
    if api_version:
        response.headers["X-API-Version"] = api_version
    return response

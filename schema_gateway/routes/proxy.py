"""Version-aware proxy route.

Every request that is not a gateway endpoint lands here. The request body is
rewritten from the client's API version into the upstream version, forwarded,
and a JSON response is rewritten back into the client's version.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import re
import time
from typing import Any, Dict, Iterable, Mapping, Tuple

import requests
from flask import Blueprint, Response, current_app, g, request, stream_with_context
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ..config.resolver import ConfigResolver
from ..transformations import (
    TransformationContext,
    TransformationEngine,
    TransformationExpression,
    TransformationOutcome,
)
from ..utils.responses import POWERED_BY, error_response

proxy_bp = Blueprint("proxy", __name__)
tracer = trace.get_tracer(__name__)

VERSION_HEADERS = ("API-Version", "X-API-Version")
VERSION_QUERY_PARAMS = ("api-version", "version")
_PATH_VERSION = re.compile(r"^/(v\d+)/")

_HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
_NOT_FORWARDED = _HOP_BY_HOP | {
    "host",
    "content-length",
    "content-type",
    "accept-encoding",
    "x-forwarded-for",
    "x-request-id",
    *(header.lower() for header in VERSION_HEADERS),
}
# requests decodes compressed bodies, so length and encoding no longer apply.
# Version and request id headers are always the gateway's own.
_NOT_RETURNED = _HOP_BY_HOP | {
    "content-length",
    "content-encoding",
    "x-api-version",
    "x-upstream-version",
    "x-request-id",
}


@dataclass
class RequestContext:
    """What the gateway knows about an inbound request."""

    method: str
    path: str
    query_params: Tuple[Tuple[str, str], ...]
    body: Any
    api_version: str
    request_id: str
    client_ip: str

    @property
    def has_body(self) -> bool:
        return self.body is not None


def detect_api_version(
    headers: Mapping[str, str], query: Mapping[str, str], path: str
) -> str:
    """Return the version requested by the client, or ``""``.

    Precedence: ``API-Version``/``X-API-Version`` header, then the
    ``api-version``/``version`` query parameter, then a ``/v<digits>/`` path
    prefix.
    """

    for header in VERSION_HEADERS:
        value = (headers.get(header) or "").strip()
        if value:
            return value
    for param in VERSION_QUERY_PARAMS:
        value = (query.get(param) or "").strip()
        if value:
            return value
    match = _PATH_VERSION.match(path)
    if match:
        return match.group(1)
    return ""


def route_path(path: str) -> str:
    """Strip a leading version segment so ``/v1/users`` routes as ``/users``."""

    match = _PATH_VERSION.match(path)
    if match:
        return path[len(match.group(1)) + 1:]
    return path


def _is_json(content_type: str | None) -> bool:
    mimetype = (content_type or "").split(";", 1)[0].strip().lower()
    return mimetype == "application/json" or mimetype.endswith("+json")


def _parse_body() -> Any:
    if request.method in {"GET", "HEAD"} or not _is_json(request.headers.get("Content-Type")):
        return None
    raw = request.get_data(cache=True)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        current_app.logger.warning(
            "Failed to parse request body: %s", exc, extra={"request_id": g.request_id}
        )
        return None


def build_request_context() -> RequestContext:
    return RequestContext(
        method=request.method,
        path=request.path,
        query_params=tuple(request.args.items(multi=True)),
        body=_parse_body(),
        api_version=detect_api_version(request.headers, request.args, request.path),
        request_id=g.request_id,
        client_ip=getattr(g, "client_ip", "") or "",
    )


def _get_http_session() -> requests.Session:
    return current_app.extensions["http_session"]


def _prepare_headers(context: RequestContext) -> Dict[str, str]:
    """Build upstream headers; ``Content-Type`` only accompanies a body."""

    headers: Dict[str, str] = {
        key: value
        for key, value in request.headers
        if key.lower() not in _NOT_FORWARDED
    }
    headers["X-Request-ID"] = context.request_id
    headers["X-Forwarded-For"] = context.client_ip
    if context.has_body:
        headers["Content-Type"] = "application/json"
    return headers


def _filter_response_headers(headers: Iterable[Tuple[str, str]]):
    return [(key, value) for key, value in headers if key.lower() not in _NOT_RETURNED]


def _run_leg(
    engine: TransformationEngine,
    data: Any,
    expression: TransformationExpression,
    transformation_context: TransformationContext,
) -> TransformationOutcome:
    span_name = f"proxy.transform_{transformation_context.direction}"
    with tracer.start_as_current_span(span_name) as span:
        outcome = engine.transform(data, expression, transformation_context)
        span.set_attribute("transformation.from_version", transformation_context.from_version)
        span.set_attribute("transformation.to_version", transformation_context.to_version)
        span.set_attribute("transformation.success", outcome.success)
        if outcome.metrics is not None:
            span.set_attribute("transformation.duration_ms", outcome.metrics.duration_ms)
        if not outcome.success:
            span.set_status(Status(StatusCode.ERROR, description=outcome.error))

    metrics = current_app.extensions.get("metrics")
    if metrics:
        metrics.observe_transformation(outcome)
    return outcome


def _send_upstream(context: RequestContext, body: Any) -> requests.Response:
    base_url = current_app.config.get("UPSTREAM_API", "").rstrip("/")
    url = f"{base_url}{context.path}"
    timeout = (
        current_app.config.get("PROXY_TIMEOUT_CONNECT", 2.0),
        current_app.config.get("PROXY_TIMEOUT_READ", 10.0),
    )
    data = json.dumps(body).encode("utf-8") if body is not None else None

    with tracer.start_as_current_span(
        "proxy.upstream_request", attributes={"http.method": context.method, "upstream.url": url}
    ) as span:
        start = time.perf_counter()
        upstream = _get_http_session().request(
            method=context.method,
            url=url,
            headers=_prepare_headers(context),
            params=list(context.query_params),
            data=data,
            timeout=timeout,
            stream=True,
        )
        duration = time.perf_counter() - start
        span.set_attribute("http.status_code", upstream.status_code)

    metrics = current_app.extensions.get("metrics")
    if metrics:
        metrics.observe_upstream_latency(status=upstream.status_code, duration_seconds=duration)
    return upstream


def _passthrough(upstream: requests.Response, api_version: str, request_id: str) -> Response:
    headers = _filter_response_headers(upstream.headers.items())
    headers.extend([("X-API-Version", api_version), ("X-Request-ID", request_id)])
    chunk_size = int(current_app.config.get("PROXY_STREAM_CHUNK_SIZE", 65536))
    response = Response(
        stream_with_context(upstream.iter_content(chunk_size=chunk_size)),
        status=upstream.status_code,
        headers=headers,
    )
    response.call_on_close(upstream.close)
    return response


def _forward() -> Response:
    """Run the version pipeline for the current request."""

    resolver: ConfigResolver = current_app.extensions["config_resolver"]
    engine: TransformationEngine = current_app.extensions["transformation_engine"]
    logger = current_app.logger

    context = build_request_context()
    config = resolver.load_config()
    api_version = context.api_version or config.default_version
    g.api_version = api_version
    upstream_version = config.upstream_version

    logger.info(
        "%s %s - Version: %s",
        context.method,
        context.path,
        api_version,
        extra={"request_id": context.request_id},
    )

    with tracer.start_as_current_span(
        "proxy.forward",
        attributes={
            "http.method": context.method,
            "http.target": context.path,
            "http.request_id": context.request_id,
            "api.version": api_version,
            "api.upstream_version": upstream_version,
        },
    ) as span:
        if not resolver.is_supported_version(api_version):
            span.set_status(Status(StatusCode.ERROR, description="unsupported_version"))
            return error_response(
                400,
                "Unsupported API version",
                f"Version '{api_version}' is not supported",
                api_version=api_version,
                details={
                    "supportedVersions": list(
                        resolver.get_supported_versions(route_path(context.path))
                    )
                },
            )

        version_transform = resolver.get_version_transformation(api_version)
        if version_transform is None:
            span.set_status(Status(StatusCode.ERROR, description="missing_transformation"))
            return error_response(
                500,
                "Configuration error",
                f"No transformation found for version '{api_version}'",
                api_version=api_version,
            )

        needs_transformation = api_version != upstream_version

        upstream_body = context.body
        if (
            context.has_body
            and needs_transformation
            and not version_transform.request.is_identity
        ):
            outcome = _run_leg(
                engine,
                context.body,
                version_transform.request,
                TransformationContext(
                    from_version=api_version,
                    to_version=upstream_version,
                    direction="request",
                ),
            )
            if not outcome.success:
                logger.error(
                    "Request transformation failed: %s",
                    outcome.error,
                    extra={"request_id": context.request_id},
                )
                span.set_status(
                    Status(StatusCode.ERROR, description="request_transformation_failed")
                )
                return error_response(
                    400,
                    "Request transformation failed",
                    outcome.error or "Unknown transformation error",
                    api_version=api_version,
                )
            upstream_body = outcome.data

        upstream = _send_upstream(context, upstream_body)
        span.set_attribute("http.status_code", upstream.status_code)

        content_type = upstream.headers.get("Content-Type")
        if not _is_json(content_type):
            return _passthrough(upstream, api_version, context.request_id)

        try:
            raw = upstream.content
        finally:
            upstream.close()

        headers = {
            "X-API-Version": api_version,
            "X-Upstream-Version": upstream_version,
            "X-Request-ID": context.request_id,
            "X-Powered-By": POWERED_BY,
        }
        if not raw:
            return Response(
                status=upstream.status_code, headers=headers, mimetype="application/json"
            )
        try:
            response_data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning(
                "Upstream returned invalid JSON, passing it through: %s",
                exc,
                extra={"request_id": context.request_id},
            )
            return Response(
                raw, status=upstream.status_code, headers=headers, content_type=content_type
            )

        if (
            response_data is not None
            and needs_transformation
            and not version_transform.response.is_identity
        ):
            outcome = _run_leg(
                engine,
                response_data,
                version_transform.response,
                TransformationContext(
                    from_version=upstream_version,
                    to_version=api_version,
                    direction="response",
                ),
            )
            if outcome.success:
                response_data = outcome.data
            else:
                logger.error(
                    "Response transformation failed, returning upstream payload: %s",
                    outcome.error,
                    extra={"request_id": context.request_id},
                )

        return Response(
            json.dumps(response_data),
            status=upstream.status_code,
            headers=headers,
            mimetype="application/json",
        )


# HEAD and OPTIONS are added by Flask; CORS preflights never reach upstream.
_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@proxy_bp.route("/", defaults={"path": ""}, methods=_METHODS)
@proxy_bp.route("/<path:path>", methods=_METHODS)
def proxy(path: str) -> Response:
    """Proxy any request to the upstream API through the version pipeline."""

    return _forward()

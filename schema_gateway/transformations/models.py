"""Validated models for transformation configuration documents."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

IDENTITY_EXPRESSION = "$"
DEFAULT_EXPRESSION_TTL_SECONDS = 3600


class ConfigValidationError(ValueError):
    """Raised when a configuration document does not have the expected shape."""


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _require_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(message)
    return value


@dataclass(frozen=True)
class TransformationExpression:
    """A single transformation leg expressed as JSONata source."""

    source: str
    cache_ttl_seconds: float = DEFAULT_EXPRESSION_TTL_SECONDS
    description: str | None = None

    @property
    def is_identity(self) -> bool:
        return self.source.strip() == IDENTITY_EXPRESSION

    def with_source(self, source: str) -> "TransformationExpression":
        return replace(self, source=source)

    @classmethod
    def from_mapping(cls, data: Any, *, where: str) -> "TransformationExpression":
        if not isinstance(data, Mapping):
            raise ConfigValidationError(f"{where} must be an object")

        source = _require_text(
            _first_present(data, "source", "expression"),
            f"{where} is missing its expression source",
        )

        ttl = _first_present(data, "cacheTtlSeconds", "cacheTtl")
        if ttl is None:
            ttl = DEFAULT_EXPRESSION_TTL_SECONDS
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl <= 0:
            raise ConfigValidationError(f"{where} has an invalid cache TTL: {ttl!r}")

        description = data.get("description")
        if description is not None and not isinstance(description, str):
            raise ConfigValidationError(f"{where} description must be a string")

        return cls(source=source, cache_ttl_seconds=ttl, description=description)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "source": self.source,
            "cacheTtlSeconds": self.cache_ttl_seconds,
        }
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True)
class VersionTransformation:
    """Request and response legs for one client version."""

    request: TransformationExpression
    response: TransformationExpression
    target_version: str | None = None

    @classmethod
    def from_mapping(cls, version: str, data: Any) -> "VersionTransformation":
        if not isinstance(data, Mapping):
            raise ConfigValidationError(f"Invalid transformation for version {version}")
        if data.get("request") is None or data.get("response") is None:
            raise ConfigValidationError(
                f"Invalid transformation for version {version}: missing request or response"
            )

        target = data.get("targetVersion")
        if target is not None:
            target = _require_text(
                target, f"Invalid targetVersion for version {version}"
            )

        return cls(
            request=TransformationExpression.from_mapping(
                data["request"], where=f"{version}.request"
            ),
            response=TransformationExpression.from_mapping(
                data["response"], where=f"{version}.response"
            ),
            target_version=target,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "request": self.request.to_dict(),
            "response": self.response.to_dict(),
        }
        if self.target_version is not None:
            payload["targetVersion"] = self.target_version
        return payload


def _ordered_versions(raw: Any, *, route: str) -> tuple[str, ...]:
    if isinstance(raw, (str, bytes)) or not isinstance(raw, (list, tuple)):
        raise ConfigValidationError(f"Routing entry for {route} must be a list of versions")
    seen: dict[str, None] = {}
    for item in raw:
        version = _require_text(item, f"Routing entry for {route} contains an invalid version")
        seen.setdefault(version, None)
    return tuple(seen)


@dataclass(frozen=True)
class TransformationConfig:
    """The complete version mapping served by the gateway."""

    schema_version: str
    default_version: str
    upstream_version: str
    transformations: Mapping[str, VersionTransformation]
    routing: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Any) -> "TransformationConfig":
        """Build a configuration from a decoded document.

        Raises:
            ConfigValidationError: If any part of the document is invalid.
                Nothing is accepted partially.
        """

        if not isinstance(data, Mapping):
            raise ConfigValidationError("Configuration must be an object")

        schema_version = _require_text(
            _first_present(data, "schemaVersion", "version"),
            "Configuration missing schemaVersion field",
        )
        default_version = _require_text(
            data.get("defaultVersion"), "Configuration missing defaultVersion field"
        )
        upstream_version = data.get("upstreamVersion")
        if upstream_version is None:
            upstream_version = default_version
        upstream_version = _require_text(
            upstream_version, "Configuration has an invalid upstreamVersion field"
        )

        raw_transformations = data.get("transformations")
        if not isinstance(raw_transformations, Mapping) or not raw_transformations:
            raise ConfigValidationError("Configuration missing transformations object")

        transformations: dict[str, VersionTransformation] = {}
        for version, entry in raw_transformations.items():
            if not isinstance(version, str) or not version.strip():
                raise ConfigValidationError("Transformation versions must be non-empty strings")
            transformations[version] = VersionTransformation.from_mapping(version, entry)

        raw_routing = data.get("routing") or {}
        if not isinstance(raw_routing, Mapping):
            raise ConfigValidationError("Configuration routing must be an object")
        routing = {
            str(route): _ordered_versions(versions, route=str(route))
            for route, versions in raw_routing.items()
        }

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ConfigValidationError("Configuration metadata must be an object")

        return cls(
            schema_version=schema_version,
            default_version=default_version,
            upstream_version=upstream_version,
            transformations=MappingProxyType(transformations),
            routing=MappingProxyType(routing),
            metadata=MappingProxyType(dict(metadata)),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "defaultVersion": self.default_version,
            "upstreamVersion": self.upstream_version,
            "transformations": {
                version: entry.to_dict() for version, entry in self.transformations.items()
            },
        }
        if self.routing:
            payload["routing"] = {route: list(v) for route, v in self.routing.items()}
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


__all__ = [
    "ConfigValidationError",
    "DEFAULT_EXPRESSION_TTL_SECONDS",
    "IDENTITY_EXPRESSION",
    "TransformationConfig",
    "TransformationExpression",
    "VersionTransformation",
]

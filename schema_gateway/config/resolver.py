"""Resolve the active transformation configuration.

Priority: cached document, then the configuration store, then the built-in
default. The resolver never raises store or validation errors to its callers.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
import threading
import time
from typing import Any, Callable, Dict

from ..transformations.models import (
    ConfigValidationError,
    TransformationConfig,
    TransformationExpression,
    VersionTransformation,
)
from .stores import DEFAULT_CONFIG_KEY, ConfigStore

REFERENCE_PREFIXES = ("ref:", "kv:")
DEFAULT_CONFIG_TTL_SECONDS = 3600.0

DEFAULT_CONFIG_DOCUMENT: Dict[str, Any] = {
    "schemaVersion": "1.0.0",
    "defaultVersion": "v2",
    "upstreamVersion": "v2",
    "transformations": {
        "v1": {
            "request": {
                "source": (
                    '{\n'
                    '  "id": user_id,\n'
                    '  "name": full_name,\n'
                    '  "username": user_name,\n'
                    '  "email": email_address\n'
                    '}'
                ),
                "description": "Transform v1 request to v2 format",
                "cacheTtlSeconds": 3600,
            },
            "response": {
                "source": (
                    '{\n'
                    '  "user_id": id,\n'
                    '  "full_name": name,\n'
                    '  "user_name": username,\n'
                    '  "email_address": email,\n'
                    '  "location": address\n'
                    '}'
                ),
                "description": "Transform v2 response back to v1 format",
                "cacheTtlSeconds": 3600,
            },
            "targetVersion": "v2",
        },
        "v2": {
            "request": {"source": "$", "description": "No transformation (current version)"},
            "response": {"source": "$", "description": "No transformation (current version)"},
            "targetVersion": "v2",
        },
    },
    "routing": {
        "/users": ["v1", "v2"],
        "/posts": ["v1", "v2"],
        "/comments": ["v1", "v2"],
    },
    "metadata": {"generatedBy": "default-config"},
}


@dataclass
class _ResolvedConfig:
    config: TransformationConfig
    source: str
    cached_at: float
    ttl: float

    def valid(self, now: float) -> bool:
        return now - self.cached_at < self.ttl


def default_config() -> TransformationConfig:
    return TransformationConfig.from_mapping(DEFAULT_CONFIG_DOCUMENT)


class ConfigResolver:
    """Load, validate and cache the transformation configuration."""

    def __init__(
        self,
        store: ConfigStore,
        *,
        logger: logging.Logger,
        ttl_seconds: float = DEFAULT_CONFIG_TTL_SECONDS,
        config_key: str = DEFAULT_CONFIG_KEY,
        time_func: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._logger = logger
        self._ttl = ttl_seconds if ttl_seconds > 0 else DEFAULT_CONFIG_TTL_SECONDS
        self._config_key = config_key
        self._time_func = time_func or time.monotonic
        self._cached: _ResolvedConfig | None = None
        # Reference resolutions live exactly as long as the cached document.
        self._references: Dict[str, str] = {}
        self._lock = threading.RLock()

    @property
    def source(self) -> str | None:
        """Where the cached document came from: ``"store"``, ``"default"`` or ``None``."""

        with self._lock:
            return self._cached.source if self._cached else None

    def load_config(self) -> TransformationConfig:
        with self._lock:
            now = self._time_func()
            if self._cached is not None and self._cached.valid(now):
                self._logger.debug("Using cached configuration")
                return self._cached.config

            self._cached = None
            self._references = {}

            config = self._load_from_store()
            if config is not None:
                self._cache(config, "store")
                self._logger.info("Loaded configuration from store")
                return config

            config = default_config()
            self._cache(config, "default")
            self._logger.info("Using default configuration")
            return config

    def get_version_transformation(self, version: str) -> VersionTransformation | None:
        config = self.load_config()
        transformation = config.transformations.get(version)
        if transformation is None:
            self._logger.warning("No transformation found for version: %s", version)
            return None

        request = self._resolve_reference(transformation.request)
        response = self._resolve_reference(transformation.response)
        if request is transformation.request and response is transformation.response:
            return transformation
        return replace(transformation, request=request, response=response)

    def is_supported_version(self, version: str) -> bool:
        return version in self.load_config().transformations

    def get_supported_versions(self, route_path: str) -> tuple[str, ...]:
        config = self.load_config()
        routed = config.routing.get(route_path)
        if routed is not None:
            return routed
        return tuple(config.transformations)

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None
            self._references = {}
        self._logger.info("Configuration cache cleared")

    def reload(self) -> TransformationConfig:
        with self._lock:
            self.clear_cache()
            return self.load_config()

    def _cache(self, config: TransformationConfig, source: str) -> None:
        self._cached = _ResolvedConfig(
            config=config, source=source, cached_at=self._time_func(), ttl=self._ttl
        )

    def _load_from_store(self) -> TransformationConfig | None:
        try:
            raw = self._store.get(self._config_key)
        except Exception as exc:
            self._logger.warning("Failed to read configuration from store: %s", exc)
            return None

        if not raw:
            self._logger.debug("No configuration found in store")
            return None

        try:
            return TransformationConfig.from_mapping(json.loads(raw))
        except (json.JSONDecodeError, ConfigValidationError, TypeError) as exc:
            self._logger.error("Invalid configuration in store: %s", exc)
            return None

    def _resolve_reference(self, expression: TransformationExpression) -> TransformationExpression:
        source = expression.source.strip()
        prefix = next((p for p in REFERENCE_PREFIXES if source.startswith(p)), None)
        if prefix is None:
            return expression

        key = source[len(prefix):]
        with self._lock:
            resolved = self._references.get(key)
        if resolved is None:
            resolved = self._load_expression(key)
            if resolved is None:
                return expression
            with self._lock:
                self._references[key] = resolved
        return expression.with_source(resolved)

    def _load_expression(self, key: str) -> str | None:
        try:
            value = self._store.get(key)
        except Exception as exc:
            self._logger.error("Failed to load expression %s: %s", key, exc)
            return None
        if not value:
            self._logger.warning("Referenced expression %s not found in store", key)
            return None
        self._logger.debug("Loaded expression from store: %s", key)
        return value


__all__ = [
    "ConfigResolver",
    "DEFAULT_CONFIG_DOCUMENT",
    "DEFAULT_CONFIG_TTL_SECONDS",
    "REFERENCE_PREFIXES",
    "default_config",
]

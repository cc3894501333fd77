"""Key/value stores holding transformation configuration.

The gateway reads one canonical key holding the JSON configuration document
and, optionally, auxiliary keys holding raw expression source referenced from
that document.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Protocol
import threading

import redis

from ..transformations.models import TransformationConfig
from .documents import load_config_document

DEFAULT_CONFIG_KEY = "config:main"
EXPRESSION_KEY_PREFIX = "transformations/"


class ConfigStoreError(RuntimeError):
    """Raised when a configuration store cannot be initialised."""


class ConfigStore(Protocol):
    """Interface for configuration stores."""

    def get(self, key: str) -> str | None:  # pragma: no cover - protocol
        ...

    def put(self, key: str, value: str) -> None:  # pragma: no cover - protocol
        ...


class InMemoryConfigStore:
    """Thread-safe process-local store."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value


class RedisConfigStore:
    """Redis-backed store with optional key namespacing."""

    def __init__(self, url: str, *, key_namespace: str = "", client: Any | None = None) -> None:
        self._client = client if client is not None else redis.Redis.from_url(url)
        self._namespace = key_namespace.rstrip(":") + ":" if key_namespace else ""

    def _namespaced(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def get(self, key: str) -> str | None:
        raw = self._client.get(self._namespaced(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)

    def put(self, key: str, value: str) -> None:
        self._client.set(self._namespaced(key), value.encode("utf-8"))


def create_config_store(config: Mapping[str, Any], *, logger: logging.Logger) -> ConfigStore:
    """Build the store selected by ``CONFIG_STORE_BACKEND``."""

    backend_name = str(config.get("CONFIG_STORE_BACKEND", "memory")).lower()
    if backend_name == "redis":
        redis_url = config.get("CONFIG_STORE_REDIS_URL", "")
        namespace = config.get("CONFIG_STORE_NAMESPACE", "schema-gateway")
        if redis_url:
            try:
                return RedisConfigStore(redis_url, key_namespace=namespace)
            except (ValueError, redis.RedisError) as exc:
                logger.warning(
                    "Redis configuration store unavailable (%s), falling back to in-memory", exc
                )
        else:
            logger.warning(
                "CONFIG_STORE_BACKEND is set to redis but CONFIG_STORE_REDIS_URL is missing; "
                "using in-memory store"
            )
    elif backend_name != "memory":
        raise ConfigStoreError(f"Unknown configuration store backend: {backend_name}")
    return InMemoryConfigStore()


def seed_config_store(
    store: ConfigStore,
    *,
    config_key: str = DEFAULT_CONFIG_KEY,
    document_path: str | Path | None = None,
    expressions_dir: str | Path | None = None,
    logger: logging.Logger,
) -> list[str]:
    """Upload a configuration document and expression files into ``store``.

    Expression files (``*.jsonata``) are stored under
    ``transformations/<file name>`` so the document can reference them as
    ``ref:transformations/<file name>``. The document is validated and stored
    in canonical form.

    Returns:
        The keys written.

    Raises:
        ConfigValidationError: If the document is not a valid configuration.
    """

    written: list[str] = []

    if expressions_dir:
        directory = Path(expressions_dir)
        if not directory.is_dir():
            raise ConfigStoreError(f"Expression directory not found: {directory}")
        for path in sorted(directory.glob("*.jsonata")):
            key = f"{EXPRESSION_KEY_PREFIX}{path.name}"
            store.put(key, path.read_text(encoding="utf-8"))
            written.append(key)

    if document_path:
        config = TransformationConfig.from_mapping(load_config_document(Path(document_path)))
        store.put(config_key, json.dumps(config.to_dict()))
        written.append(config_key)

    if written:
        logger.info("Seeded configuration store", extra={"keys": written})
    return written


__all__ = [
    "ConfigStore",
    "ConfigStoreError",
    "DEFAULT_CONFIG_KEY",
    "EXPRESSION_KEY_PREFIX",
    "InMemoryConfigStore",
    "RedisConfigStore",
    "create_config_store",
    "seed_config_store",
]

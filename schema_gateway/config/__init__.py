"""Configuration storage and resolution for the transformation pipeline."""

from .documents import DocumentError, load_config_document
from .resolver import ConfigResolver, default_config
from .stores import (
    ConfigStore,
    ConfigStoreError,
    InMemoryConfigStore,
    RedisConfigStore,
    create_config_store,
    seed_config_store,
)

__all__ = [
    "ConfigResolver",
    "ConfigStore",
    "ConfigStoreError",
    "DocumentError",
    "InMemoryConfigStore",
    "RedisConfigStore",
    "create_config_store",
    "default_config",
    "load_config_document",
    "seed_config_store",
]

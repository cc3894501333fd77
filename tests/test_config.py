"""Tests for configuration documents, stores and environment settings."""
from __future__ import annotations

import json
import logging
from unittest.mock import Mock

import pytest

from schema_gateway.config import (
    ConfigStoreError,
    DocumentError,
    InMemoryConfigStore,
    RedisConfigStore,
    create_config_store,
    load_config_document,
    seed_config_store,
)
from schema_gateway.transformations import ConfigValidationError
from schema_gateway.utils.config import (
    load_environment_settings,
    parse_bool,
    split_env_list,
)

LOGGER = logging.getLogger("tests.config")

YAML_DOCUMENT = """
schemaVersion: "1.0.0"
defaultVersion: v2
transformations:
  v1:
    request:
      source: "ref:transformations/v1-request.jsonata"
    response:
      source: "$"
  v2:
    request: {source: "$"}
    response: {source: "$"}
"""


def test_load_yaml_document_from_file(tmp_path):
    path = tmp_path / "transformations.yaml"
    path.write_text(YAML_DOCUMENT, encoding="utf-8")

    document = load_config_document(path)

    assert document["defaultVersion"] == "v2"
    assert document["transformations"]["v1"]["response"]["source"] == "$"


def test_load_json_document_relative_to_base_dir(tmp_path):
    (tmp_path / "config.json").write_text(
        json.dumps({"schemaVersion": "1.0.0", "defaultVersion": "v1"}), encoding="utf-8"
    )

    document = load_config_document("config.json", base_dir=tmp_path)

    assert document == {"schemaVersion": "1.0.0", "defaultVersion": "v1"}


def test_load_raw_document_text():
    assert load_config_document('{"defaultVersion": "v3"}') == {"defaultVersion": "v3"}
    assert load_config_document(YAML_DOCUMENT)["schemaVersion"] == "1.0.0"


@pytest.mark.parametrize("raw", ["", "   ", "- v1\n- v2\n", '{"broken": '])
def test_invalid_documents_raise(raw):
    with pytest.raises(DocumentError):
        load_config_document(raw)


def test_missing_file_raises(tmp_path):
    with pytest.raises(DocumentError):
        load_config_document(tmp_path / "missing.yaml")


def test_in_memory_store_round_trip():
    store = InMemoryConfigStore({"b": "2"})
    store.put("a", "1")

    assert store.get("a") == "1"
    assert store.get("b") == "2"
    assert store.get("missing") is None


def test_redis_store_namespaces_and_decodes_keys():
    client = Mock()
    client.get.return_value = b'{"defaultVersion": "v2"}'
    store = RedisConfigStore("redis://unused", key_namespace="gateway", client=client)

    assert store.get("config:main") == '{"defaultVersion": "v2"}'
    client.get.assert_called_once_with("gateway:config:main")

    store.put("transformations/a.jsonata", "$")
    client.set.assert_called_once_with("gateway:transformations/a.jsonata", b"$")


def test_redis_store_returns_none_for_missing_key():
    client = Mock()
    client.get.return_value = None
    store = RedisConfigStore("redis://unused", client=client)

    assert store.get("config:main") is None
    client.get.assert_called_once_with("config:main")


def test_create_config_store_selects_backend():
    assert isinstance(
        create_config_store({"CONFIG_STORE_BACKEND": "memory"}, logger=LOGGER),
        InMemoryConfigStore,
    )
    assert isinstance(
        create_config_store(
            {"CONFIG_STORE_BACKEND": "redis", "CONFIG_STORE_REDIS_URL": "redis://localhost:6379/0"},
            logger=LOGGER,
        ),
        RedisConfigStore,
    )
    # Redis without a URL degrades to the in-memory store.
    assert isinstance(
        create_config_store({"CONFIG_STORE_BACKEND": "redis"}, logger=LOGGER),
        InMemoryConfigStore,
    )
    with pytest.raises(ConfigStoreError):
        create_config_store({"CONFIG_STORE_BACKEND": "etcd"}, logger=LOGGER)


def test_seed_config_store(tmp_path):
    document_path = tmp_path / "transformations.yaml"
    document_path.write_text(YAML_DOCUMENT, encoding="utf-8")
    expressions = tmp_path / "expressions"
    expressions.mkdir()
    (expressions / "v1-request.jsonata").write_text('{"id": user_id}', encoding="utf-8")
    (expressions / "notes.txt").write_text("ignored", encoding="utf-8")
    store = InMemoryConfigStore()

    written = seed_config_store(
        store,
        document_path=document_path,
        expressions_dir=expressions,
        logger=LOGGER,
    )

    assert written == ["transformations/v1-request.jsonata", "config:main"]
    assert store.get("transformations/v1-request.jsonata") == '{"id": user_id}'
    seeded = json.loads(store.get("config:main"))
    assert seeded["defaultVersion"] == "v2"
    assert seeded["upstreamVersion"] == "v2"
    assert seeded["transformations"]["v1"]["request"] == {
        "source": "ref:transformations/v1-request.jsonata",
        "cacheTtlSeconds": 3600,
    }


def test_seed_config_store_rejects_invalid_document(tmp_path):
    document_path = tmp_path / "transformations.yaml"
    document_path.write_text("schemaVersion: \"1.0.0\"\ndefaultVersion: v2\n", encoding="utf-8")
    store = InMemoryConfigStore()

    with pytest.raises(ConfigValidationError):
        seed_config_store(store, document_path=document_path, logger=LOGGER)

    assert store.get("config:main") is None


def test_seed_config_store_rejects_missing_directory(tmp_path):
    with pytest.raises(ConfigStoreError):
        seed_config_store(
            InMemoryConfigStore(), expressions_dir=tmp_path / "missing", logger=LOGGER
        )


def test_environment_files_are_layered(tmp_path, monkeypatch):
    # Registered first so values written by the loader are undone afterwards.
    for key in ("UPSTREAM_API", "CACHE_TTL_SECONDS"):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    (tmp_path / ".env").write_text(
        "UPSTREAM_API=http://base\nCACHE_TTL_SECONDS=60\nLOG_LEVEL=DEBUG\n", encoding="utf-8"
    )
    (tmp_path / ".env.staging").write_text("UPSTREAM_API=http://staging\n", encoding="utf-8")

    settings = load_environment_settings(env="staging", project_root=tmp_path)

    assert settings.name == "staging"
    assert len(settings.loaded_files) == 2
    assert settings.file_values["UPSTREAM_API"] == "http://staging"
    assert settings.get("UPSTREAM_API") == "http://staging"
    assert settings.get_float("CACHE_TTL_SECONDS", 3600.0) == 60.0
    assert settings.get("LOG_LEVEL") == "WARNING"
    assert settings.get_int("EXPRESSION_CACHE_SIZE", 100) == 100


def test_env_helpers():
    assert split_env_list(" a, b ,,c ") == ["a", "b", "c"]
    assert split_env_list(None) == []
    assert parse_bool("yes")
    assert not parse_bool("off")
    assert parse_bool(None, default=True)

"""Configuration helpers for environment-aware setup."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping
import os

from dotenv import dotenv_values

__all__ = [
    "EnvironmentSettings",
    "load_environment_settings",
    "log_configuration_snapshot",
    "parse_bool",
    "split_env_list",
]


@dataclass(frozen=True)
class EnvironmentSettings:
    """Represents the environment configuration detected at runtime."""

    name: str
    loaded_files: tuple[str, ...]
    file_values: Mapping[str, str]

    def get(self, key: str, default: str | None = None) -> str | None:
        """Return ``key`` from the process environment, then the ``.env`` files."""

        value = os.getenv(key)
        if value is not None:
            return value
        value = self.file_values.get(key)
        if value is not None:
            return value
        return default

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        if raw is None or not raw.strip():
            return default
        return int(raw)

    def get_float(self, key: str, default: float) -> float:
        raw = self.get(key)
        if raw is None or not raw.strip():
            return default
        return float(raw)


def split_env_list(raw: str | None) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_environment_settings(
    *, env: str | None = None, project_root: str | Path | None = None
) -> EnvironmentSettings:
    """Load environment settings supporting layered ``.env`` files.

    Files are applied in order ``.env``, ``.env.local``, ``.env.<env>`` and
    ``.env.<env>.local``; later files win. Variables already present in the
    process environment always take precedence.
    """

    root = Path(project_root or Path.cwd())
    name = (env or os.getenv("APP_ENV") or os.getenv("FLASK_ENV") or "development").strip()
    name = name or "development"
    slug = name.lower()
    ordered_files = [
        root / ".env",
        root / ".env.local",
        root / f".env.{slug}",
        root / f".env.{slug}.local",
    ]

    preset = set(os.environ)
    loaded_files: list[str] = []
    file_values: dict[str, str] = {}
    for candidate in ordered_files:
        if not candidate.exists():
            continue
        loaded_files.append(str(candidate))
        for key, value in dotenv_values(candidate).items():
            if value is not None:
                file_values[key] = value

    for key, value in file_values.items():
        if key not in preset:
            os.environ[key] = value

    return EnvironmentSettings(
        name=name,
        loaded_files=tuple(loaded_files),
        file_values=file_values,
    )


def _sanitize_value(key: str, value: Any) -> Any:
    markers = ("SECRET", "PASSWORD", "TOKEN", "REDIS_URL")
    upper_key = key.upper()
    if value and any(marker in upper_key for marker in markers):
        return "***"
    return value


def log_configuration_snapshot(
    *,
    logger: Any,
    settings: EnvironmentSettings,
    config: Mapping[str, Any],
    keys_of_interest: Iterable[str],
) -> None:
    """Log a sanitized snapshot of the runtime configuration."""

    snapshot = {
        key: _sanitize_value(key, config.get(key))
        for key in keys_of_interest
        if key in config
    }
    logger.info(
        "Runtime configuration initialised",
        extra={
            "environment": settings.name,
            "env_files": settings.loaded_files,
            "config_snapshot": snapshot,
        },
    )

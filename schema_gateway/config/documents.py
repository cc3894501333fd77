"""Read configuration documents written as JSON or YAML."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import yaml


class DocumentError(ValueError):
    """Raised when a configuration document cannot be read or parsed."""


def load_config_document(
    source: str | Path | Mapping[str, Any],
    *,
    base_dir: str | Path | None = None,
) -> dict[str, Any]:
    """Load a configuration document from a mapping, file path or raw text.

    Args:
        source: A mapping, a path to a ``.json``/``.yaml`` file or the raw
            document text.
        base_dir: Directory used to resolve a relative ``source`` path.

    Returns:
        The decoded document. Its shape is not validated here; see
        :meth:`TransformationConfig.from_mapping`.

    Raises:
        DocumentError: If the document cannot be read or is not a mapping.
    """

    if isinstance(source, Mapping):
        return dict(source)

    if isinstance(source, Path):
        path: Path | None = source
        if not source.is_absolute() and base_dir:
            path = Path(base_dir) / source
    else:
        path = _as_path(str(source), base_dir)

    if path is not None:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DocumentError(f"Cannot read configuration file: {exc}") from exc
    else:
        text = str(source)

    text = text.strip()
    if not text:
        raise DocumentError("Configuration document is empty")

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DocumentError(f"Invalid JSON configuration: {exc}") from exc
    else:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise DocumentError("Invalid YAML configuration") from exc

    if not isinstance(data, dict):
        raise DocumentError("Configuration document must be a mapping")
    return data


def _as_path(candidate: str, base_dir: str | Path | None) -> Path | None:
    if not candidate.strip() or "\n" in candidate or candidate.lstrip().startswith("{"):
        return None
    path = Path(candidate)
    if path.exists():
        return path
    if base_dir and (Path(base_dir) / path).exists():
        return Path(base_dir) / path
    return None


__all__ = ["DocumentError", "load_config_document"]

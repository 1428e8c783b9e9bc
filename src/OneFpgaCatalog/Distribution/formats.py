"""Descriptor parsing and compact JSON serialisation."""

from __future__ import annotations

import json
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Union

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback path for <3.11
    import tomli as tomllib  # type: ignore[import-not-found,no-redef]

from .errors import ConfigError

__all__ = [
    "dump_compact_json",
    "load_descriptor",
    "load_json",
    "load_toml",
    "write_compact_json",
]


def _json_default(value: Any) -> Any:
    # TOML carries native date/time values that JSON has no type for.
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_compact_json(payload: Any) -> str:
    """Serialise ``payload`` without insignificant whitespace."""

    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def write_compact_json(path: Union[str, Path], payload: Any) -> Path:
    """Write ``payload`` as compact UTF-8 JSON to ``path`` and return the path."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dump_compact_json(payload), encoding="utf-8")
    return target


def load_toml(path: Union[str, Path]) -> Any:
    source = Path(path)
    try:
        return tomllib.loads(source.read_text(encoding="utf-8"))
    except (tomllib.TOMLDecodeError, ValueError) as exc:
        raise ConfigError(f"Failed to parse TOML document {str(source)!r}: {exc}") from exc


def load_json(path: Union[str, Path]) -> Any:
    source = Path(path)
    try:
        return json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse JSON document {str(source)!r}: {exc}") from exc


def load_descriptor(path: Union[str, Path]) -> Any:
    """Load a TOML or JSON descriptor, dispatching on the file extension."""

    source = Path(path)
    if source.suffix == ".toml":
        return load_toml(source)
    return load_json(source)

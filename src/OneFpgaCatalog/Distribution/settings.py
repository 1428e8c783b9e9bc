# === NAVMAP v1 ===
# {
#   "module": "OneFpgaCatalog.Distribution.settings",
#   "purpose": "Pydantic v2 settings for catalog builds with config-file and environment layering",
#   "sections": [
#     {"id": "enums", "name": "Validated Choices", "anchor": "ENM", "kind": "models"},
#     {"id": "buildsettings", "name": "BuildSettings", "anchor": "class-buildsettings", "kind": "class"},
#     {"id": "load-settings", "name": "load_settings", "anchor": "function-load-settings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Typed settings for the catalog build.

Precedence follows the usual layering: explicit overrides (CLI) > environment
(``ONEFPGA_`` prefix) > config file (TOML or YAML) > defaults.  Paths stay
relative until :meth:`BuildSettings.resolve_paths` anchors them to a working
directory, so nothing here depends on the process working directory at import
time.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .formats import load_toml
from .integrity import OFFICIAL_PUBLIC_KEY

__all__ = ["BuildSettings", "LogFormat", "LogLevel", "load_settings"]


class LogLevel(str, Enum):
    """Supported logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    """Supported log output formats."""

    CONSOLE = "console"
    JSON = "json"


class BuildSettings(BaseSettings):
    """Configuration for one distribution build."""

    model_config = SettingsConfigDict(
        env_prefix="ONEFPGA_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    source_root: Path = Field(Path("files"), description="Root of the declarative source tree")
    dist_root: Path = Field(Path("dist"), description="Distribution tree produced by the build")
    catalog_paths: List[str] = Field(
        default_factory=lambda: ["catalog.json"],
        description="Catalog documents, relative to the distribution root",
    )
    hash_algorithm: str = Field("sha256", description="Digest algorithm stamped into manifests")
    public_key_path: Optional[Path] = Field(
        None, description="PEM file overriding the embedded signature public key"
    )
    sql_debug: bool = Field(
        False,
        description="Trace every SQL statement issued during ingestion",
        validation_alias=AliasChoices("sql_debug", "ONEFPGA_SQL_DEBUG", "SQL_DEBUG"),
    )
    log_level: LogLevel = Field(LogLevel.INFO, description="Root logging level")
    log_format: LogFormat = Field(LogFormat.CONSOLE, description="Console text or JSON lines")
    log_dir: Optional[Path] = Field(None, description="Directory for rotating JSONL logs")
    clean_dist: bool = Field(True, description="Remove the distribution tree before building")

    @field_validator("hash_algorithm")
    @classmethod
    def validate_hash_algorithm(cls, value: str) -> str:
        """Ensure the digest algorithm is a fixed-length :mod:`hashlib` digest."""

        normalized = value.strip().lower()
        if normalized not in hashlib.algorithms_available:
            raise ValueError(f"unsupported hash algorithm '{value}'")
        # SHAKE digests need an explicit length and cannot be stamped as-is.
        if hashlib.new(normalized).digest_size == 0:
            raise ValueError(f"variable-length hash algorithm '{value}' is not supported")
        return normalized

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_level(cls, value: Any) -> Any:
        """Accept lowercase level names."""

        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("catalog_paths", mode="before")
    @classmethod
    def split_catalog_paths(cls, value: Any) -> Any:
        """Accept a comma-separated string in addition to a list."""

        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    def resolve_paths(self, base: Path) -> "BuildSettings":
        """Return a copy whose relative roots are anchored at ``base``."""

        def _anchor(path: Optional[Path]) -> Optional[Path]:
            if path is None:
                return None
            return path if path.is_absolute() else (base / path)

        return self.model_copy(
            update={
                "source_root": _anchor(self.source_root),
                "dist_root": _anchor(self.dist_root),
                "public_key_path": _anchor(self.public_key_path),
                "log_dir": _anchor(self.log_dir),
            }
        )

    def public_key_pem(self) -> str:
        """Return the PEM used for signature checks."""

        if self.public_key_path is None:
            return OFFICIAL_PUBLIC_KEY
        try:
            return self.public_key_path.read_text(encoding="ascii")
        except OSError as exc:
            raise ConfigError(f"Cannot read public key {str(self.public_key_path)!r}") from exc


def _load_config_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    if path.suffix in {".yaml", ".yml"}:
        import yaml

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse YAML config {str(path)!r}: {exc}") from exc
    else:
        data = load_toml(path)
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {str(path)!r} must contain a mapping")
    # Allow a dedicated table so the file can live inside a larger project config.
    section = data.get("catalog", data)
    if not isinstance(section, dict):
        raise ConfigError(f"[catalog] section of {str(path)!r} must be a table")
    return section


def load_settings(config_file: Optional[Path] = None, **overrides: Any) -> BuildSettings:
    """Build settings from defaults, an optional config file, env, and overrides.

    Args:
        config_file: TOML or YAML file; values may sit under a ``[catalog]`` table.
        **overrides: Explicit values (typically CLI options); ``None`` is ignored.

    Raises:
        ConfigError: If the config file is malformed or validation fails.
    """

    file_values = _load_config_file(config_file) if config_file is not None else {}
    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        env_layer = BuildSettings()
        merged: Dict[str, Any] = dict(file_values)
        merged.update(env_layer.model_dump(exclude_unset=True))
        merged.update(explicit)
        return BuildSettings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid build settings: {exc}") from exc

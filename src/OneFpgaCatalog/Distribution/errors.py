"""Exception hierarchy shared across the catalog build and ingestion phases.

A distribution build spans tree transformation, build-step execution, hash and
signature stamping, and per-system database ingestion.  Every failure in those
phases is fatal: the hierarchy exists so the CLI can report a diagnostic that
names the offending artifact, not so callers can recover and continue.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

__all__ = [
    "CatalogBuildError",
    "ConfigError",
    "SandboxViolation",
    "SignatureError",
    "BuildStepError",
    "VersionError",
    "IngestionError",
    "LookupInsertError",
]

PathLike = Union[str, Path]


class CatalogBuildError(RuntimeError):
    """Base exception for every fatal catalog build or ingestion failure."""


class ConfigError(CatalogBuildError):
    """Raised when settings, build-step markers, or descriptor files are invalid."""


class SandboxViolation(CatalogBuildError):
    """Raised when a source path resolves outside the declared source root."""

    def __init__(self, source: PathLike, root: PathLike) -> None:
        super().__init__(
            f"Source path {str(source)!r} must stay inside the source root {str(root)!r}"
        )
        self.source = str(source)
        self.root = str(root)


class SignatureError(CatalogBuildError):
    """Raised when a detached ``.sig`` file exists but does not verify."""

    def __init__(self, path: PathLike, message: Optional[str] = None) -> None:
        super().__init__(message or f"Could not validate signature for {str(path)!r}")
        self.path = Path(path)


class BuildStepError(CatalogBuildError):
    """Raised when a directory build step fails; the whole build is aborted."""

    def __init__(self, directory: PathLike, cause: BaseException) -> None:
        super().__init__(f"Build step failed in {str(directory)!r}: {cause}")
        self.directory = Path(directory)
        self.cause = cause


class VersionError(CatalogBuildError):
    """Raised when a version value is not a comparable numeral."""


class IngestionError(CatalogBuildError):
    """Raised when a game list cannot be written to the relational store."""


class LookupInsertError(IngestionError):
    """Raised when a lookup row can neither be inserted nor found."""

    def __init__(self, table: str, name: str) -> None:
        super().__init__(f"Could not find {table} {name!r} but could not insert it either")
        self.table = table
        self.name = name

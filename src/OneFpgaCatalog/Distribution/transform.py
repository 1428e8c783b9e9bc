# === NAVMAP v1 ===
# {
#   "module": "OneFpgaCatalog.Distribution.transform",
#   "purpose": "Recursive source-to-distribution tree transformer with sandboxed paths and build-step delegation",
#   "sections": [
#     {"id": "stats", "name": "TransformStats", "anchor": "class-transformstats", "kind": "class"},
#     {"id": "transformer", "name": "TreeTransformer", "anchor": "class-treetransformer", "kind": "class"},
#     {"id": "sandbox", "name": "Sandbox Resolution", "anchor": "SBX", "kind": "helpers"},
#     {"id": "files", "name": "Per-Format File Handling", "anchor": "FMT", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Source tree -> distribution tree transformation.

The transformer mirrors the source tree into the distribution root:

- ``.toml`` descriptors become compact ``.json`` documents;
- ``.json`` documents are re-serialised compactly (which also validates them);
- ``.md`` documentation is dropped;
- everything else is copied byte for byte, following symlinks.

Directories registered in the :class:`BuildStepRegistry` are handed to their
build step instead, together with a ``copy`` helper scoped to the directory.
Source paths are always resolved against the source root and may never escape
it.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .build_steps import BUILD_MARKER, BuildStepRegistry
from .errors import BuildStepError, SandboxViolation
from .formats import load_json, load_toml, write_compact_json

__all__ = ["TransformStats", "TreeTransformer"]

PathInput = Union[str, Path]


@dataclass
class TransformStats:
    """Counters describing what one transformation run produced."""

    converted: int = 0
    minified: int = 0
    copied: int = 0
    dropped: int = 0
    steps: int = 0

    def as_dict(self) -> dict:
        return {
            "converted": self.converted,
            "minified": self.minified,
            "copied": self.copied,
            "dropped": self.dropped,
            "steps": self.steps,
        }


class TreeTransformer:
    """Copy a source tree into a distribution tree, converting files on the way."""

    def __init__(
        self,
        source_root: Path,
        dist_root: Path,
        registry: Optional[BuildStepRegistry] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.source_root = Path(source_root).resolve()
        self.dist_root = Path(dist_root).resolve()
        self.registry = registry if registry is not None else BuildStepRegistry()
        self.logger = logger or logging.getLogger(__name__)
        self.stats = TransformStats()

    # -- sandbox -----------------------------------------------------------------

    def _relative_source(self, source: PathInput) -> Path:
        """Return ``source`` relative to the source root or raise ``SandboxViolation``."""

        candidate = Path(source)
        if candidate.is_absolute():
            raise SandboxViolation(source, self.source_root)
        resolved = (self.source_root / candidate).resolve()
        try:
            return resolved.relative_to(self.source_root)
        except ValueError:
            raise SandboxViolation(source, self.source_root) from None

    def _destination(self, relative: Path, dest: Optional[PathInput]) -> Path:
        if dest is None:
            return self.dist_root / relative
        target = Path(dest)
        return target if target.is_absolute() else self.dist_root / target

    # -- traversal ---------------------------------------------------------------

    def copy(self, source: PathInput = ".", dest: Optional[PathInput] = None) -> Path:
        """Copy ``source`` (relative to the source root) into the distribution tree.

        Args:
            source: Path relative to the source root.
            dest: Destination relative to the distribution root, or absolute. When
                omitted the source's relative path is mirrored.

        Returns:
            The destination path written (for TOML files, the ``.json`` path).

        Raises:
            SandboxViolation: If ``source`` is absolute or resolves outside the root.
            BuildStepError: If a directory build step fails.
        """

        # Validates the fully resolved location before anything is written.
        relative = self._relative_source(source)
        lexical = Path(os.path.normpath(source))
        destination = self._destination(lexical, dest)

        if (self.source_root / lexical).is_symlink():
            # The link itself is never reproduced; its (sandboxed) target is.
            self.logger.debug(
                "following symlink",
                extra={
                    "stage": "transform",
                    "extra_fields": {"link": lexical.as_posix(), "target": relative.as_posix()},
                },
            )
            return self.copy(relative, destination)

        source_path = self.source_root / relative
        destination.parent.mkdir(parents=True, exist_ok=True)

        if source_path.is_dir():
            return self._copy_directory(relative, destination)
        return self._copy_file(source_path, destination)

    def _copy_directory(self, relative: Path, destination: Path) -> Path:
        step = self.registry.get(relative)
        if step is not None:
            return self._run_step(step, relative, destination)

        destination.mkdir(parents=True, exist_ok=True)
        for child in sorted((self.source_root / relative).iterdir()):
            if child.name == BUILD_MARKER:
                continue
            self.copy(relative / child.name, destination / child.name)
        return destination

    def _run_step(self, step, relative: Path, destination: Path) -> Path:
        destination.mkdir(parents=True, exist_ok=True)

        def scoped_copy(src: PathInput, dest: Optional[PathInput] = None) -> Path:
            target = dest if dest is not None else destination / src
            return self.copy(relative / src, target)

        self.logger.info(
            "running build step",
            extra={
                "stage": "transform",
                "extra_fields": {
                    "directory": relative.as_posix(),
                    "step": type(step).__name__,
                },
            },
        )
        try:
            step.build(scoped_copy, destination)
        except BuildStepError:
            raise
        except Exception as exc:
            self.logger.error(
                "build step failed",
                extra={
                    "stage": "transform",
                    "extra_fields": {"directory": relative.as_posix(), "error": str(exc)},
                },
            )
            raise BuildStepError(self.source_root / relative, exc) from exc
        self.stats.steps += 1
        return destination

    # -- files -------------------------------------------------------------------

    def _copy_file(self, source_path: Path, destination: Path) -> Path:
        suffix = source_path.suffix
        if suffix == ".toml":
            stem = destination.stem if destination.suffix == ".toml" else destination.name
            target = destination.with_name(stem + ".json")
            write_compact_json(target, load_toml(source_path))
            self.stats.converted += 1
            return target
        if suffix == ".md":
            self.stats.dropped += 1
            return destination
        if suffix == ".json":
            write_compact_json(destination, load_json(source_path))
            self.stats.minified += 1
            return destination
        shutil.copyfile(source_path, destination)
        self.stats.copied += 1
        return destination

"""Build-step registry and discovery for directory-local build overrides.

Any source directory may replace the default recursive copy with its own build
logic.  A directory opts in with a ``_build.toml`` marker::

    step = "games-db"

    [options]
    games = "nes.json"

The ``step`` name is looked up in a registry of factories.  Built-in steps are
registered by :mod:`OneFpgaCatalog.Distribution.steps`; third-party steps are
discovered through the ``onefpga_catalog.build_steps`` entry-point group.  The
source tree is scanned once, before the transformer starts, and the resulting
:class:`BuildStepRegistry` maps each directory to a ready-to-run step.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    Mapping,
    MutableMapping,
    Optional,
    Protocol,
    Union,
)

from .errors import ConfigError, SandboxViolation
from .formats import load_toml

__all__ = [
    "BUILD_MARKER",
    "ENTRY_POINT_GROUP",
    "BuildStep",
    "BuildStepFactory",
    "BuildStepRegistry",
    "CopyFn",
    "StepContext",
    "discover_build_steps",
    "get_step_factories",
    "register_build_step",
    "unregister_build_step",
]

BUILD_MARKER = "_build.toml"
ENTRY_POINT_GROUP = "onefpga_catalog.build_steps"

CopyFn = Callable[..., Path]


class BuildStep(Protocol):
    """A directory-local build override."""

    def build(self, copy: CopyFn, dest: Path) -> None:  # pragma: no cover - protocol only
        """Populate ``dest``; ``copy(source, dest=None)`` is scoped to the step directory."""


@dataclass(frozen=True)
class StepContext:
    """Explicit paths handed to a build step when it is constructed."""

    name: str
    source_root: Path
    relative_dir: Path
    options: Mapping[str, Any] = field(default_factory=dict)
    sql_debug: bool = False

    @property
    def source_dir(self) -> Path:
        return self.source_root / self.relative_dir

    def resolve(self, relative: Union[str, Path]) -> Path:
        """Resolve ``relative`` against the step directory, staying inside the source root."""

        candidate = Path(relative)
        if candidate.is_absolute():
            raise SandboxViolation(relative, self.source_root)
        resolved = (self.source_dir / candidate).resolve()
        try:
            resolved.relative_to(self.source_root)
        except ValueError:
            raise SandboxViolation(relative, self.source_root) from None
        return resolved


BuildStepFactory = Callable[[StepContext], BuildStep]

_FACTORIES_LOCK = threading.Lock()
_FACTORIES: Dict[str, BuildStepFactory] = {}
_ENTRY_POINTS_LOADED = False


def register_build_step(
    name: str, factory: BuildStepFactory, *, overwrite: bool = False
) -> BuildStepFactory:
    """Register ``factory`` under ``name``; returns the factory for decorator use."""

    with _FACTORIES_LOCK:
        if name in _FACTORIES and not overwrite and _FACTORIES[name] is not factory:
            raise ValueError(f"Build step {name!r} is already registered")
        _FACTORIES[name] = factory
    return factory


def unregister_build_step(name: str) -> None:
    with _FACTORIES_LOCK:
        del _FACTORIES[name]


def _load_entry_point_steps(logger: logging.Logger) -> None:
    global _ENTRY_POINTS_LOADED

    with _FACTORIES_LOCK:
        if _ENTRY_POINTS_LOADED:
            return
        _ENTRY_POINTS_LOADED = True
        entry_points = list(metadata.entry_points().select(group=ENTRY_POINT_GROUP))

    for entry in entry_points:
        factory = entry.load()
        if not callable(factory):
            raise ConfigError(f"Build step entry point {entry.name!r} is not callable")
        register_build_step(entry.name, factory, overwrite=True)
        logger.info(
            "build step plugin registered",
            extra={"stage": "init", "extra_fields": {"step": entry.name}},
        )


def get_step_factories(*, logger: Optional[logging.Logger] = None) -> Dict[str, BuildStepFactory]:
    """Return a snapshot of registered step factories, loading plugins once."""

    # Importing the package registers the built-in steps.
    from . import steps  # noqa: F401

    _load_entry_point_steps(logger or logging.getLogger(__name__))
    with _FACTORIES_LOCK:
        return dict(_FACTORIES)


class BuildStepRegistry:
    """Mapping of source-relative directory -> build step instance."""

    def __init__(self, steps: Optional[Mapping[Union[str, Path], BuildStep]] = None) -> None:
        self._steps: MutableMapping[Path, BuildStep] = {
            Path(key): step for key, step in (steps or {}).items()
        }

    def add(self, relative_dir: Union[str, Path], step: BuildStep) -> None:
        self._steps[Path(relative_dir)] = step

    def get(self, relative_dir: Union[str, Path]) -> Optional[BuildStep]:
        return self._steps.get(Path(relative_dir))

    def __contains__(self, relative_dir: object) -> bool:
        return isinstance(relative_dir, (str, Path)) and Path(relative_dir) in self._steps

    def __iter__(self) -> Iterator[Path]:
        return iter(sorted(self._steps))

    def __len__(self) -> int:
        return len(self._steps)

    def items(self):
        return sorted(self._steps.items())


def _read_marker(marker: Path) -> tuple[str, Dict[str, Any]]:
    data = load_toml(marker)
    name = data.get("step")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"{marker}: 'step' must name a registered build step")
    options = data.get("options", {})
    if not isinstance(options, dict):
        raise ConfigError(f"{marker}: 'options' must be a table")
    return name.strip(), options


def discover_build_steps(
    source_root: Path,
    *,
    sql_debug: bool = False,
    logger: Optional[logging.Logger] = None,
) -> BuildStepRegistry:
    """Scan ``source_root`` once and instantiate every declared build step.

    Raises:
        ConfigError: If a marker is malformed or names an unknown step.
    """

    log = logger or logging.getLogger(__name__)
    root = source_root.resolve()
    factories = get_step_factories(logger=log)
    registry = BuildStepRegistry()

    for marker in sorted(root.rglob(BUILD_MARKER)):
        if not marker.is_file():
            continue
        relative_dir = marker.parent.relative_to(root)
        name, options = _read_marker(marker)
        factory = factories.get(name)
        if factory is None:
            known = ", ".join(sorted(factories)) or "none"
            raise ConfigError(f"{marker}: unknown build step {name!r} (known: {known})")
        context = StepContext(
            name=name,
            source_root=root,
            relative_dir=relative_dir,
            options=options,
            sql_debug=sql_debug,
        )
        registry.add(relative_dir, factory(context))
        log.debug(
            "build step discovered",
            extra={
                "stage": "discover",
                "extra_fields": {"step": name, "directory": relative_dir.as_posix()},
            },
        )
    return registry

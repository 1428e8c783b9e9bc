"""End-to-end distribution build: clean, discover, transform, propagate."""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Optional

from .build_steps import discover_build_steps
from .errors import ConfigError
from .propagate import CatalogPropagator
from .settings import BuildSettings
from .transform import TransformStats, TreeTransformer
from .versions import Version

__all__ = ["BuildSummary", "propagate_catalogs", "run_build"]

logger = logging.getLogger(__name__)


@dataclass
class BuildSummary:
    """Outcome of one build run."""

    dist_root: Path
    transform: TransformStats = field(default_factory=TransformStats)
    catalogs: Dict[str, Version] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    def as_dict(self) -> dict:
        return {
            "dist_root": str(self.dist_root),
            "transform": self.transform.as_dict(),
            "catalogs": dict(self.catalogs),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


def propagate_catalogs(
    settings: BuildSettings, *, today: Optional[date] = None
) -> Dict[str, Version]:
    """Run the propagator for every configured catalog under ``settings.dist_root``.

    Returns:
        Mapping of catalog path (relative to the dist root) to its new version.
    """

    public_key = settings.public_key_pem()
    versions: Dict[str, Version] = {}
    for relative in settings.catalog_paths:
        catalog_path = settings.dist_root / relative
        if not catalog_path.is_file():
            raise ConfigError(f"Catalog document not found: {catalog_path}")
        propagator = CatalogPropagator(
            catalog_path,
            hash_algorithm=settings.hash_algorithm,
            public_key=public_key,
            logger=logger,
        )
        versions[relative] = propagator.run(today)["version"]
    return versions


def run_build(settings: BuildSettings, *, today: Optional[date] = None) -> BuildSummary:
    """Rebuild the whole distribution tree described by ``settings``.

    Every run is a full rebuild: the previous tree is removed first unless
    ``clean_dist`` is disabled.

    Raises:
        CatalogBuildError: On any configuration, sandbox, build-step, integrity,
            version or ingestion failure.
    """

    started = time.monotonic()
    source_root = settings.source_root
    dist_root = settings.dist_root
    if not source_root.is_dir():
        raise ConfigError(f"Source root does not exist: {source_root}")

    if settings.clean_dist and dist_root.exists():
        logger.info(
            "removing previous distribution tree",
            extra={"stage": "clean", "extra_fields": {"dist_root": str(dist_root)}},
        )
        shutil.rmtree(dist_root)

    registry = discover_build_steps(source_root, sql_debug=settings.sql_debug, logger=logger)
    transformer = TreeTransformer(source_root, dist_root, registry, logger=logger)
    transformer.copy(".")
    logger.info(
        "distribution tree written",
        extra={"stage": "transform", "extra_fields": transformer.stats.as_dict()},
    )

    summary = BuildSummary(dist_root=transformer.dist_root, transform=transformer.stats)
    summary.catalogs = propagate_catalogs(settings, today=today)
    summary.elapsed_seconds = time.monotonic() - started
    logger.info("build complete", extra={"stage": "build", "extra_fields": summary.as_dict()})
    return summary

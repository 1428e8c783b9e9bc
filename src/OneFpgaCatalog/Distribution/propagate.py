# === NAVMAP v1 ===
# {
#   "module": "OneFpgaCatalog.Distribution.propagate",
#   "purpose": "Bottom-up version propagation and integrity stamping over a built catalog",
#   "sections": [
#     {"id": "propagator", "name": "CatalogPropagator", "anchor": "class-catalogpropagator", "kind": "class"},
#     {"id": "cores", "name": "Cores Pass", "anchor": "function-build-cores", "kind": "method"},
#     {"id": "systems", "name": "Systems Pass", "anchor": "function-build-systems", "kind": "method"},
#     {"id": "releases", "name": "Releases Pass", "anchor": "function-build-releases", "kind": "method"}
#   ]
# }
# === /NAVMAP ===

"""Catalog version propagation.

After the tree transformer has produced the distribution tree, the catalog
documents still carry the versions and file metadata found in the source tree.
:class:`CatalogPropagator` walks the three catalog branches, recomputes the size
and digest of every referenced artifact, verifies release signatures, and
raises each parent's ``version`` to the newest version found beneath it:

``releases`` / ``cores`` / ``systems`` documents -> root ``catalog.json``.

Each pass collects its rewritten documents and writes them only once the whole
pass has succeeded, so an integrity failure never leaves a half-stamped branch.
Running the propagator twice over the same tree yields identical documents
(apart from the root build date).
"""

from __future__ import annotations

import hashlib
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ConfigError
from .formats import load_json, write_compact_json
from .integrity import (
    OFFICIAL_PUBLIC_KEY,
    PublicKeyInput,
    hash_and_size,
    load_public_key,
    verify_signature,
)
from .versions import (
    Version,
    build_date_version,
    coerce_version,
    max_version,
    parse_version,
)

__all__ = ["LATEST_TAG", "CatalogPropagator"]

LATEST_TAG = "latest"

PendingWrites = List[Tuple[Path, Any]]

# Digest fields a source descriptor may carry; only the freshly computed one ships.
DIGEST_KEYS = frozenset(hashlib.algorithms_guaranteed)


class CatalogPropagator:
    """Stamp versions, sizes, digests and signatures into one catalog tree.

    Args:
        catalog_path: Root ``catalog.json`` inside the distribution tree.
        hash_algorithm: Digest algorithm; its name is also the manifest key.
        public_key: PEM text or key used for release signatures.
        logger: Optional logger; defaults to the module logger.
    """

    def __init__(
        self,
        catalog_path: Union[str, Path],
        *,
        hash_algorithm: str = "sha256",
        public_key: PublicKeyInput = OFFICIAL_PUBLIC_KEY,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.catalog_path = Path(catalog_path)
        self.hash_algorithm = hash_algorithm
        self.public_key = load_public_key(public_key)
        self.logger = logger or logging.getLogger(__name__)
        catalog = load_json(self.catalog_path)
        if not isinstance(catalog, dict):
            raise ConfigError(f"Catalog {str(self.catalog_path)!r} must be a JSON object")
        self.catalog: Dict[str, Any] = catalog
        self.channel_versions: Dict[str, Version] = {}

    # -- helpers -----------------------------------------------------------------

    def _branch(self, key: str) -> Optional[Tuple[Dict[str, Any], Path]]:
        entry = self.catalog.get(key)
        if not isinstance(entry, dict):
            return None
        url = entry.get("url")
        if not isinstance(url, str):
            raise ConfigError(f"Catalog entry {key!r} has no 'url'")
        return entry, self.catalog_path.parent / url

    @staticmethod
    def _load_object(path: Path) -> Dict[str, Any]:
        data = load_json(path)
        if not isinstance(data, dict):
            raise ConfigError(f"{str(path)!r} must contain a JSON object")
        return data

    @staticmethod
    def _url_path(entry: Dict[str, Any], base_dir: Path) -> Path:
        url = entry.get("url")
        if not isinstance(url, str):
            raise ConfigError(f"Entry without 'url' under {str(base_dir)!r}")
        return base_dir / url

    def _stamp(self, manifest: Dict[str, Any], base_dir: Path) -> Path:
        path = self._url_path(manifest, base_dir)
        size, digest = hash_and_size(path, self.hash_algorithm)
        for key in DIGEST_KEYS.intersection(manifest):
            del manifest[key]
        manifest["size"] = size
        manifest[self.hash_algorithm] = digest
        return path

    @staticmethod
    def _flush(pending: PendingWrites) -> None:
        for path, payload in pending:
            write_compact_json(path, payload)

    def _log_pass(self, name: str, version: Version, documents: int) -> None:
        self.logger.info(
            "catalog pass complete",
            extra={
                "stage": "propagate",
                "extra_fields": {"pass": name, "version": version, "documents": documents},
            },
        )

    # -- passes ------------------------------------------------------------------

    def build_cores(self) -> Optional[Version]:
        """Stamp core release files and raise core and catalog core versions."""

        branch = self._branch("cores")
        if branch is None:
            return None
        entry, cores_path = branch
        cores = self._load_object(cores_path)
        pending: PendingWrites = []
        latest = coerce_version(entry.get("version"))

        for core in cores.values():
            if not isinstance(core, dict):
                continue
            core_path = self._url_path(core, cores_path.parent)
            document = self._load_object(core_path)
            core_version = coerce_version(core.get("version"))
            for release in document.get("releases", []):
                core_version = max_version([core_version, release.get("version")])
                for manifest in release.get("files", []):
                    self._stamp(manifest, core_path.parent)
            core["version"] = core_version
            latest = max_version([latest, core_version])
            pending.append((core_path, document))

        entry["version"] = latest
        pending.append((cores_path, cores))
        self._flush(pending)
        self._log_pass("cores", latest, len(pending))
        return latest

    def build_systems(self) -> Optional[Version]:
        """Stamp system databases and raise system and catalog system versions."""

        branch = self._branch("systems")
        if branch is None:
            return None
        entry, systems_path = branch
        systems = self._load_object(systems_path)
        pending: PendingWrites = []
        latest = coerce_version(entry.get("version"))

        for system in systems.values():
            # Stray scalars such as a top-level "version" are left untouched.
            if not isinstance(system, dict):
                continue
            system_path = self._url_path(system, systems_path.parent)
            document = self._load_object(system_path)
            version = max_version(
                [
                    coerce_version(system.get("version")),
                    coerce_version(document.get("version")),
                    "0",
                ]
            )

            games_db = document.get("gamesDb")
            if isinstance(games_db, dict):
                self._stamp(games_db, system_path.parent)
                if games_db.get("version") is not None:
                    version = max_version([version, games_db["version"]])

            db = document.get("db")
            if isinstance(db, dict):
                self._stamp(db, system_path.parent)

            system["version"] = version
            document["version"] = version
            latest = max_version([latest, version])
            pending.append((system_path, document))

        entry["version"] = latest
        pending.append((systems_path, systems))
        self._flush(pending)
        self._log_pass("systems", latest, len(pending))
        return latest

    def build_releases(self) -> Optional[Version]:
        """Stamp and verify release files, then set the catalog release version.

        A channel exposes the version of its entry tagged ``latest`` (the last
        such entry) or, without a tag, its newest entry.  Pinned channels are
        authoritative: the catalog takes the last pinned version in document
        order, and the prior stamp only takes part when no channel carries the tag.

        Raises:
            SignatureError: If any release file has a ``.sig`` that does not verify.
        """

        branch = self._branch("releases")
        if branch is None:
            return None
        entry, releases_path = branch
        releases = self._load_object(releases_path)
        base_dir = releases_path.parent
        every: List[Version] = []
        pinned: Optional[Version] = None

        for name, channel in releases.items():
            if not isinstance(channel, list):
                continue
            channel_versions: List[Version] = []
            channel_pin: Optional[Version] = None
            for release in channel:
                version = release.get("version")
                parse_version(version)
                channel_versions.append(version)
                if LATEST_TAG in (release.get("tags") or []):
                    channel_pin = version
                for manifest in release.get("files", []):
                    path = self._stamp(manifest, base_dir)
                    signature = verify_signature(path, self.public_key)
                    if signature is None:
                        manifest.pop("signature", None)
                    else:
                        manifest["signature"] = signature
            if not channel_versions:
                continue
            every.extend(channel_versions)
            if channel_pin is not None:
                pinned = channel_pin
                self.channel_versions[name] = channel_pin
            else:
                self.channel_versions[name] = max_version(channel_versions)

        if pinned is not None:
            latest = pinned
        else:
            latest = max_version([coerce_version(entry.get("version")), *every])

        entry["version"] = latest
        self._flush([(releases_path, releases)])
        self._log_pass("releases", latest, 1)
        return latest

    def run(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Run every pass, stamp the build date, and write the root catalog."""

        self.build_cores()
        self.build_systems()
        self.build_releases()
        self.catalog["version"] = build_date_version(today)
        write_compact_json(self.catalog_path, self.catalog)
        self.logger.info(
            "catalog written",
            extra={
                "stage": "propagate",
                "extra_fields": {
                    "catalog": str(self.catalog_path),
                    "version": self.catalog["version"],
                },
            },
        )
        return self.catalog

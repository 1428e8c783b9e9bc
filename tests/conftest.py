"""
Pytest Configuration

Shared fixtures for the catalog build suite: freshly generated Ed25519 key
pairs for the signature contract, helpers that lay out small source and
distribution trees, and isolation of ``ONEFPGA_`` environment variables so the
developer's shell never leaks into settings tests.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from OneFpgaCatalog.Distribution.logging_utils import LOGGER_NAME


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    for key in list(os.environ):
        if key.upper().startswith("ONEFPGA_") or key.upper() == "SQL_DEBUG":
            monkeypatch.delenv(key, raising=False)
    yield
    # CLI invocations install handlers bound to captured streams.
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_onefpga_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True


class Signer:
    """Test key pair able to produce detached ``.sig`` files."""

    def __init__(self) -> None:
        self.private_key = Ed25519PrivateKey.generate()
        self.public_key = self.private_key.public_key()
        self.public_pem = self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")

    def sign(self, path: Path) -> Path:
        sig_path = path.with_name(path.name + ".sig")
        sig_path.write_bytes(self.private_key.sign(path.read_bytes()))
        return sig_path


@pytest.fixture
def signer() -> Signer:
    return Signer()


@pytest.fixture
def write_json() -> Callable[[Path, Any], Path]:
    def _write(path: Path, payload: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def read_json() -> Callable[[Path], Any]:
    def _read(path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    return _read


@pytest.fixture
def catalog_tree(tmp_path, write_json):
    """Distribution-shaped tree with one core, one system and two release channels."""

    root = tmp_path / "dist"
    write_json(
        root / "catalog.json",
        {
            "version": "20200101",
            "cores": {"url": "cores.json", "version": "20200101"},
            "systems": {"url": "systems.json", "version": "20200101"},
            "releases": {"url": "releases.json", "version": "20200101"},
        },
    )

    write_json(root / "cores.json", {"nes": {"url": "cores/nes.json"}})
    (root / "cores" / "nes").mkdir(parents=True)
    (root / "cores" / "nes" / "nes_20240105.rbf").write_bytes(b"core-bitstream")
    write_json(
        root / "cores" / "nes.json",
        {
            "releases": [
                {"version": "20240105", "files": [{"url": "nes/nes_20240105.rbf"}]},
                {"version": "20231201", "files": []},
            ]
        },
    )

    write_json(root / "systems.json", {"nes": {"url": "systems/nes.json", "version": "20230101"}})
    (root / "systems").mkdir()
    (root / "systems" / "nes.sqlite").write_bytes(b"sqlite-bytes")
    write_json(
        root / "systems" / "nes.json",
        {
            "name": "Nintendo Entertainment System",
            "version": "20230601",
            "gamesDb": {"url": "nes.sqlite", "version": "20240301", "size": 0, "sha256": "stale"},
        },
    )

    (root / "releases").mkdir()
    (root / "releases" / "1fpga-20240101.tgz").write_bytes(b"stable-payload")
    (root / "releases" / "1fpga-20240601.tgz").write_bytes(b"beta-payload")
    write_json(
        root / "releases.json",
        {
            "stable": [
                {
                    "version": "20240101",
                    "tags": ["latest"],
                    "files": [{"url": "releases/1fpga-20240101.tgz", "signature": "stale"}],
                }
            ],
            "beta": [
                {"version": "20240601", "files": [{"url": "releases/1fpga-20240601.tgz"}]},
            ],
        },
    )
    return root


@pytest.fixture
def source_tree(tmp_path, write_json):
    """Minimal source tree covering every branch of a real catalog."""

    root = tmp_path / "files"
    root.mkdir()
    # Catalog urls name the built documents, so systems.toml is referenced as .json.
    (root / "catalog.toml").write_text(
        "[cores]\nurl = \"cores.json\"\n\n"
        "[systems]\nurl = \"systems.json\"\n\n"
        "[releases]\nurl = \"releases.json\"\nversion = \"20200101\"\n",
        encoding="utf-8",
    )
    (root / "README.md").write_text("# Catalog sources\n", encoding="utf-8")

    write_json(root / "cores.json", {"nes": {"url": "cores/nes.json"}})
    (root / "cores" / "nes").mkdir(parents=True)
    (root / "cores" / "nes" / "nes_20240105.rbf").write_bytes(b"core-bitstream")
    (root / "cores" / "nes.toml").write_text(
        '[[releases]]\nversion = "20240105"\nfiles = [{ url = "nes/nes_20240105.rbf" }]\n',
        encoding="utf-8",
    )

    (root / "systems.toml").write_text('[nes]\nurl = "systems/nes.json"\n', encoding="utf-8")
    (root / "systems" / "nes").mkdir(parents=True)
    (root / "systems" / "nes.toml").write_text(
        'name = "NES"\ntags = ["8-bit"]\n\n'
        '[gamesDb]\nurl = "nes/nes.sqlite"\nversion = "20240301"\n',
        encoding="utf-8",
    )
    (root / "systems" / "nes" / "_build.toml").write_text('step = "games-db"\n', "utf-8")
    write_json(
        root / "systems" / "nes" / "nes.json",
        {
            "games": [
                {
                    "name": "Super Game (USA) (Proto)",
                    "region": "USA",
                    "sources": [{"files": [{"extension": "nes", "sha256": "00" * 32}]}],
                }
            ]
        },
    )

    (root / "releases").mkdir()
    (root / "releases" / "1fpga-20240101.tgz").write_bytes(b"stable-payload")
    write_json(
        root / "releases.json",
        {
            "stable": [
                {
                    "version": "20240101",
                    "tags": ["latest"],
                    "files": [{"url": "releases/1fpga-20240101.tgz"}],
                }
            ]
        },
    )
    return root

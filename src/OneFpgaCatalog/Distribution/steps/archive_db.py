"""``archive-db`` build step: publish a downloader database as ``db.json.zip``."""

from __future__ import annotations

import logging
import time
import zipfile
from pathlib import Path
from typing import List

from ..build_steps import CopyFn, StepContext
from ..errors import ConfigError
from ..formats import dump_compact_json, load_descriptor
from ..integrity import md5_and_size

logger = logging.getLogger(__name__)

__all__ = ["ArchiveDbStep"]


class ArchiveDbStep:
    """Stamp ``db.toml`` with a timestamp and file MD5 sums, then zip it."""

    def __init__(self, context: StepContext) -> None:
        options = context.options
        self.context = context
        self.source: str = options.get("source", "db.toml")
        self.archive: str = options.get("archive", "db.json.zip")
        self.entry: str = options.get("entry", "db.json")
        self.copy_paths: List[str] = list(options.get("copy", ["Scripts"]))

    def build(self, copy: CopyFn, dest: Path) -> None:
        db = load_descriptor(self.context.resolve(self.source))
        if not isinstance(db, dict):
            raise ConfigError(f"{self.source!r} must contain an object")

        db["timestamp"] = int(time.time())

        files = db.get("files") or {}
        if not isinstance(files, dict):
            raise ConfigError(f"'files' in {self.source!r} must be a table")
        for key, entry in files.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"Entry {key!r} in {self.source!r} must be a table")
            path = self.context.resolve(key)
            if not path.is_file():
                raise ConfigError(f"File {key!r} listed in {self.source!r} does not exist")
            size, md5 = md5_and_size(path)
            entry["hash"] = md5
            entry["size"] = size

        archive_path = Path(dest) / self.archive
        with zipfile.ZipFile(
            archive_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as archive:
            archive.writestr(self.entry, dump_compact_json(db))
        logger.info(
            "database archive written",
            extra={
                "stage": "archive-db",
                "extra_fields": {"archive": str(archive_path), "files": len(files)},
            },
        )

        for item in self.copy_paths:
            copy(item)

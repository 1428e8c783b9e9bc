"""``games-db`` build step: ship a game list and its SQLite identification database."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from OneFpgaCatalog.GamesDb.ingest import ingest_games
from OneFpgaCatalog.GamesDb.store import default_schema_sql

from ..build_steps import CopyFn, StepContext
from ..errors import ConfigError
from ..formats import dump_compact_json, load_descriptor

logger = logging.getLogger(__name__)

__all__ = ["GamesDbStep"]


class GamesDbStep:
    """Copy ``<name>.json`` and build ``<name>.sqlite`` beside it in the destination.

    Options (all relative to the step directory):

    ``games``
        Game list, default ``<dirname>.json``.
    ``system``
        System descriptor, default ``../<dirname>.toml`` then ``../<dirname>.json``.
    ``schema``
        Schema script, default ``init.sql`` when present, else the packaged schema.
    ``database``
        Output file name, default ``<dirname>.sqlite``; written inside the step's
        destination directory.
    """

    def __init__(self, context: StepContext) -> None:
        self.context = context
        name = context.relative_dir.name
        options = context.options
        self.games: str = options.get("games", f"{name}.json")
        self.system: Optional[str] = options.get("system")
        self.schema: Optional[str] = options.get("schema")
        self.database: str = options.get("database", f"{name}.sqlite")
        self._name = name

    def _system_path(self) -> Path:
        if self.system is not None:
            return self.context.resolve(self.system)
        for suffix in (".toml", ".json"):
            candidate = self.context.resolve(f"../{self._name}{suffix}")
            if candidate.is_file():
                return candidate
        raise ConfigError(
            f"No system descriptor for {self._name!r} next to {str(self.context.source_dir)!r}"
        )

    def _schema_sql(self) -> str:
        if self.schema is not None:
            return self.context.resolve(self.schema).read_text(encoding="utf-8")
        local = self.context.resolve("init.sql")
        if local.is_file():
            return local.read_text(encoding="utf-8")
        return default_schema_sql()

    def build(self, copy: CopyFn, dest: Path) -> None:
        copy(self.games)

        games_doc: Dict[str, Any] = load_descriptor(self.context.resolve(self.games))
        # Round-trip through the shipped JSON form so TOML dates become ISO strings.
        system_doc = json.loads(dump_compact_json(load_descriptor(self._system_path())))
        if not isinstance(system_doc, dict):
            raise ConfigError(f"System descriptor for {self._name!r} must be an object")

        logger.info(
            "building games database",
            extra={
                "stage": "games-db",
                "extra_fields": {"system": self._name, "games": self.games},
            },
        )
        ingest_games(
            Path(dest) / self.database,
            games_doc,
            system_doc,
            self._schema_sql(),
            sql_debug=self.context.sql_debug,
        )

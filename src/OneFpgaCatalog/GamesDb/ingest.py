"""Relational ingestion of a system's game list.

``ingest_games`` rebuilds one system database from scratch: system metadata,
system tags, the list version, and then every game inside a single
transaction.  Any failure rolls the whole transaction back, so a database is
either complete or empty.
"""

from __future__ import annotations

import logging
import sqlite3
import sys
from dataclasses import asdict, dataclass
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from tqdm import tqdm

from OneFpgaCatalog.Distribution.errors import IngestionError
from OneFpgaCatalog.Distribution.versions import build_date_version
from OneFpgaCatalog.GamesDb.records import parse_game
from OneFpgaCatalog.GamesDb.store import GamesDbStore

logger = logging.getLogger(__name__)

__all__ = ["IngestionSummary", "ingest_games"]


@dataclass
class IngestionSummary:
    """Counts of what one ingestion run wrote."""

    database: Path
    version: str
    games: int = 0
    sources: int = 0
    tags: int = 0
    regions: int = 0
    languages: int = 0
    playlists: int = 0
    system_tags: int = 0

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["database"] = str(self.database)
        return payload


def _count(store: GamesDbStore, table: str) -> int:
    return store.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def ingest_games(
    db_path: Union[str, Path],
    games_doc: Mapping[str, Any],
    system_doc: Mapping[str, Any],
    schema_sql: Optional[str] = None,
    *,
    sql_debug: bool = False,
    today: Optional[date] = None,
    show_progress: Optional[bool] = None,
) -> IngestionSummary:
    """Write ``games_doc`` and ``system_doc`` into a fresh SQLite database.

    Args:
        db_path: Output database; an existing file is removed first.
        games_doc: Game list document with ``games`` and optional ``version``.
        system_doc: System descriptor; its string values become metadata.
        schema_sql: Schema script, defaulting to the packaged one.
        sql_debug: Trace every SQL statement.
        today: Date used for the version when the list carries none.
        show_progress: Force the progress bar on or off; defaults to TTY detection.

    Returns:
        IngestionSummary with per-table counts.

    Raises:
        IngestionError: If a game cannot be parsed or inserted, including a
            duplicate ``fullname``.  Nothing is committed in that case.
    """

    path = Path(db_path)
    games = games_doc.get("games")
    if not isinstance(games, list):
        raise IngestionError(f"Game list for {str(path)!r} has no 'games' array")

    path.unlink(missing_ok=True)
    version = str(games_doc.get("version") or build_date_version(today))
    disable = not sys.stderr.isatty() if show_progress is None else not show_progress

    logger.info(
        "ingesting games",
        extra={
            "stage": "ingest",
            "extra_fields": {"database": str(path), "games": len(games), "version": version},
        },
    )

    with GamesDbStore(path, schema_sql, sql_debug=sql_debug) as store:
        summary = IngestionSummary(database=path, version=version)
        with store.transaction():
            for key, value in system_doc.items():
                if isinstance(value, str):
                    store.set_metadata(key, value)
            for tag in system_doc.get("tags") or []:
                store.add_system_tag(tag)
                summary.system_tags += 1
            store.set_metadata("version", version)

            for entry in tqdm(games, desc=path.stem, unit="game", disable=disable):
                record = parse_game(entry)
                try:
                    store.insert_game(record)
                except sqlite3.Error as exc:
                    raise IngestionError(
                        f"Cannot insert game {record.fullname!r} into {str(path)!r}: {exc}"
                    ) from exc
                summary.games += 1
                summary.sources += len(record.sources)

            summary.tags = _count(store, "Tags")
            summary.regions = _count(store, "Regions")
            summary.languages = _count(store, "Languages")
            summary.playlists = _count(store, "Playlists")
        store.vacuum()

    logger.info(
        "games database written",
        extra={"stage": "ingest", "extra_fields": summary.as_dict()},
    )
    return summary

"""SQLite store for per-system game identification databases."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from OneFpgaCatalog.Distribution.errors import IngestionError, LookupInsertError
from OneFpgaCatalog.GamesDb.records import GameRecord

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_SCHEMA_PATH", "LOOKUP_TABLES", "GamesDbStore", "default_schema_sql"]

DEFAULT_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# Tables with an ``id`` primary key and a unique ``name`` column.
LOOKUP_TABLES = frozenset({"Tags", "Regions", "Languages", "Playlists"})


def default_schema_sql() -> str:
    """Return the packaged schema script."""
    return DEFAULT_SCHEMA_PATH.read_text(encoding="utf-8")


class GamesDbStore:
    """Thin wrapper over one SQLite connection building a games database.

    The connection runs in autocommit mode; :meth:`transaction` opens the
    single explicit transaction that ingestion writes into.
    """

    def __init__(
        self,
        path: Union[str, Path],
        schema_sql: Optional[str] = None,
        *,
        sql_debug: bool = False,
    ) -> None:
        """Create the database at ``path`` and apply ``schema_sql``.

        Args:
            path: SQLite file to create; parent directories are created.
            schema_sql: Schema script; defaults to the packaged ``schema.sql``.
            sql_debug: Log every statement at DEBUG level.

        Raises:
            IngestionError: If the schema script fails.
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.path), isolation_level=None)
        if sql_debug:
            self.conn.set_trace_callback(self._trace)
        try:
            self.conn.executescript(schema_sql if schema_sql is not None else default_schema_sql())
        except sqlite3.Error as exc:
            self.conn.close()
            raise IngestionError(f"Failed to apply schema to {str(self.path)!r}: {exc}") from exc
        logger.debug(
            "games database initialized",
            extra={"stage": "ingest", "extra_fields": {"database": str(self.path)}},
        )

    @staticmethod
    def _trace(statement: str) -> None:
        logger.debug(statement, extra={"stage": "sql"})

    @contextmanager
    def transaction(self) -> Iterator["GamesDbStore"]:
        """Commit everything written inside the block, or roll it all back."""
        self.conn.execute("BEGIN")
        try:
            yield self
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    # -- lookups -----------------------------------------------------------------

    def find_or_create(self, table: str, name: str) -> int:
        """Return the id of ``name`` in lookup ``table``, inserting it if missing.

        Raises:
            ValueError: If ``table`` is not a lookup table.
            LookupInsertError: If the row can neither be inserted nor found.
        """
        if table not in LOOKUP_TABLES:
            raise ValueError(f"{table!r} is not a lookup table")
        rows = self.conn.execute(
            f"INSERT INTO {table} (name) VALUES (?) ON CONFLICT DO NOTHING RETURNING id",
            (name,),
        ).fetchall()
        if not rows:
            rows = self.conn.execute(f"SELECT id FROM {table} WHERE name = ?", (name,)).fetchall()
        if not rows:
            raise LookupInsertError(table, name)
        return rows[0][0]

    # -- typed inserts -----------------------------------------------------------

    def set_metadata(self, key: str, value: str) -> None:
        # Later values win; the games list version overrides a system-level one.
        self.conn.execute(
            """
            INSERT INTO Metadata (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )

    def add_system_tag(self, tag: str) -> int:
        tags_id = self.find_or_create("Tags", tag)
        self.conn.execute("INSERT INTO SystemTags (tagsId) VALUES (?)", (tags_id,))
        return tags_id

    def insert_game(self, record: GameRecord) -> int:
        """Insert ``record`` with its tags, regions, languages, sources and playlists.

        Returns:
            The new ``GamesId.id``.

        Raises:
            sqlite3.IntegrityError: If a game with the same fullname exists.
        """
        (games_id,) = self.conn.execute(
            """
            INSERT INTO GamesId (fullname, title, originalTitle, year)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (record.fullname, record.title, record.original_title, record.year),
        ).fetchall()[0]

        for tag in record.tags:
            self.conn.execute(
                "INSERT INTO GamesTags (gamesId, tagsId) VALUES (?, ?)",
                (games_id, self.find_or_create("Tags", tag)),
            )
        for region in record.regions:
            self.conn.execute(
                "INSERT INTO GamesRegions (gamesId, regionsId) VALUES (?, ?)",
                (games_id, self.find_or_create("Regions", region)),
            )
        for language in record.languages:
            self.conn.execute(
                "INSERT INTO GamesLanguages (gamesId, languagesId) VALUES (?, ?)",
                (games_id, self.find_or_create("Languages", language)),
            )
        self.conn.executemany(
            "INSERT INTO GamesSources (gamesId, extension, sha256, size) VALUES (?, ?, ?, ?)",
            [(games_id, src.extension, src.sha256, src.size) for src in record.sources],
        )
        for playlist, priority in record.playlists.items():
            self.conn.execute(
                "INSERT INTO PlaylistsGamesId (playlistsId, gamesId, priority) VALUES (?, ?, ?)",
                (self.find_or_create("Playlists", playlist), games_id, priority),
            )
        return games_id

    # -- maintenance -------------------------------------------------------------

    def vacuum(self) -> None:
        self.conn.execute("VACUUM")

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            logger.debug("Database connection closed")

    def __enter__(self) -> "GamesDbStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

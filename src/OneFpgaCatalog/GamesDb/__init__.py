"""
Per-system game identification databases.

Normalises a flat game list (free-text names, regions, languages, dumps and
playlists) into the relational SQLite schema shipped as ``schema.sql``.
"""

from __future__ import annotations

from OneFpgaCatalog.GamesDb.ingest import IngestionSummary, ingest_games
from OneFpgaCatalog.GamesDb.records import GameRecord, SourceFile, parse_game
from OneFpgaCatalog.GamesDb.store import GamesDbStore

__all__ = [
    "GameRecord",
    "GamesDbStore",
    "IngestionSummary",
    "SourceFile",
    "ingest_games",
    "parse_game",
]

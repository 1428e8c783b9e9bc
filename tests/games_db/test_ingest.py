"""Relational ingestion tests against a real SQLite file."""

from __future__ import annotations

import logging
import sqlite3
from datetime import date

import pytest

from OneFpgaCatalog.Distribution.errors import IngestionError, LookupInsertError
from OneFpgaCatalog.GamesDb.ingest import ingest_games
from OneFpgaCatalog.GamesDb.store import GamesDbStore

SYSTEM = {
    "name": "Nintendo Entertainment System",
    "shortname": "NES",
    "tags": ["8-bit", "Cartridge"],
    "year": 1983,
}

GAMES = {
    "version": "20240301",
    "games": [
        {
            "name": "Super Game (USA) (Proto)",
            "region": "USA, USA",
            "languages": ["En", "En"],
            "year": 1990,
            "sources": [
                {"files": [{"extension": "nes", "sha256": "ab" * 32, "size": 40976}]},
            ],
            "playlists": {"Favourites": 1},
        },
        {
            "name": "Super Game (Europe) (Proto)",
            "region": "Europe",
            "languages": "En",
            "sources": [{"files": [{"extension": "nes", "sha256": "cd" * 32, "size": 40976}]}],
            "playlists": {"Favourites": 2},
        },
        {"name": "8-bit Tribute (USA)", "tags": ["8-bit"], "sources": []},
    ],
}


@pytest.fixture
def db(tmp_path):
    path = tmp_path / "nes.sqlite"
    summary = ingest_games(path, GAMES, SYSTEM, today=date(2024, 1, 1))
    return path, summary


def _rows(path, query, params=()):
    with sqlite3.connect(path) as conn:
        return conn.execute(query, params).fetchall()


def test_summary_counts(db):
    _, summary = db
    assert summary.games == 3
    assert summary.sources == 2
    assert summary.version == "20240301"
    # 8-bit is shared between the system and a game.
    assert summary.tags == 5
    assert summary.regions == 2
    assert summary.languages == 1
    assert summary.playlists == 1
    assert summary.system_tags == 2


def test_metadata_holds_string_keys_and_version(db):
    path, _ = db
    assert dict(_rows(path, "SELECT key, value FROM Metadata")) == {
        "name": "Nintendo Entertainment System",
        "shortname": "NES",
        "version": "20240301",
    }


def test_system_tags_reference_tags(db):
    path, _ = db
    names = _rows(
        path,
        "SELECT t.name FROM SystemTags s JOIN Tags t ON t.id = s.tagsId ORDER BY s.id",
    )
    assert names == [("8-bit",), ("Cartridge",)]


def test_lookup_tables_are_deduplicated(db):
    path, _ = db
    for table in ("Tags", "Regions", "Languages", "Playlists"):
        (total,) = _rows(path, f"SELECT COUNT(*) FROM {table}")[0]
        (distinct,) = _rows(path, f"SELECT COUNT(DISTINCT name) FROM {table}")[0]
        assert total == distinct, table


def test_game_links(db):
    path, _ = db
    tags = _rows(
        path,
        """
        SELECT t.name FROM GamesTags gt
        JOIN Tags t ON t.id = gt.tagsId
        JOIN GamesId g ON g.id = gt.gamesId
        WHERE g.fullname = ?
        ORDER BY gt.id
        """,
        ("Super Game (USA) (Proto)",),
    )
    assert tags == [("USA",), ("Proto",)]

    game = _rows(
        path,
        "SELECT title, originalTitle, year FROM GamesId WHERE fullname = ?",
        ("Super Game (USA) (Proto)",),
    )
    assert game == [("Super Game", None, 1990)]

    regions = _rows(
        path,
        "SELECT COUNT(*) FROM GamesRegions gr JOIN GamesId g ON g.id = gr.gamesId "
        "WHERE g.fullname = ?",
        ("Super Game (USA) (Proto)",),
    )
    assert regions == [(1,)]


def test_sources_store_raw_digest_bytes(db):
    path, _ = db
    rows = _rows(path, "SELECT extension, sha256, size FROM GamesSources ORDER BY id")
    assert rows[0] == ("nes", bytes([0xAB]) * 32, 40976)
    assert isinstance(rows[0][1], bytes)
    assert len(rows[0][1]) == 32


def test_playlists_keep_priorities(db):
    path, _ = db
    rows = _rows(
        path,
        """
        SELECT g.fullname, pg.priority FROM PlaylistsGamesId pg
        JOIN GamesId g ON g.id = pg.gamesId
        JOIN Playlists p ON p.id = pg.playlistsId
        WHERE p.name = 'Favourites'
        ORDER BY pg.priority
        """,
    )
    assert rows == [("Super Game (USA) (Proto)", 1), ("Super Game (Europe) (Proto)", 2)]


def test_version_defaults_to_build_date(tmp_path):
    path = tmp_path / "nes.sqlite"
    summary = ingest_games(path, {"games": []}, {}, today=date(2024, 2, 9))
    assert summary.version == "20240209"
    assert _rows(path, "SELECT value FROM Metadata WHERE key = 'version'") == [("20240209",)]


def test_existing_database_is_replaced(tmp_path):
    path = tmp_path / "nes.sqlite"
    path.write_bytes(b"not a database")
    ingest_games(path, {"games": [{"name": "Only (USA)"}]}, {})
    assert _rows(path, "SELECT fullname FROM GamesId") == [("Only (USA)",)]


def test_duplicate_fullname_rolls_back(tmp_path):
    path = tmp_path / "nes.sqlite"
    games = {"games": [{"name": "Twin (USA)"}, {"name": "Twin (USA)"}]}

    with pytest.raises(IngestionError, match="Twin"):
        ingest_games(path, games, SYSTEM)

    assert _rows(path, "SELECT COUNT(*) FROM GamesId") == [(0,)]
    assert _rows(path, "SELECT COUNT(*) FROM Metadata") == [(0,)]


def test_missing_games_array_is_rejected(tmp_path):
    with pytest.raises(IngestionError):
        ingest_games(tmp_path / "x.sqlite", {"version": "1"}, {})


def test_find_or_create_returns_existing_ids(tmp_path):
    with GamesDbStore(tmp_path / "s.sqlite") as store:
        with store.transaction():
            first = store.find_or_create("Tags", "Proto")
            again = store.find_or_create("Tags", "Proto")
            other = store.find_or_create("Regions", "Proto")
    assert first == again
    assert other == 1


def test_find_or_create_rejects_other_tables(tmp_path):
    with GamesDbStore(tmp_path / "s.sqlite") as store:
        with pytest.raises(ValueError):
            store.find_or_create("GamesId; DROP TABLE Tags", "x")


def test_lookup_insert_error_when_row_cannot_be_found(tmp_path):
    schema = (
        "CREATE TABLE Tags (id INTEGER PRIMARY KEY, name TEXT UNIQUE NOT NULL);\n"
        "CREATE TRIGGER swallow BEFORE INSERT ON Tags BEGIN SELECT RAISE(IGNORE); END;\n"
    )
    with GamesDbStore(tmp_path / "s.sqlite", schema) as store:
        with pytest.raises(LookupInsertError):
            store.find_or_create("Tags", "ghost")


def test_sql_debug_traces_statements(tmp_path, caplog):
    caplog.set_level(logging.DEBUG, logger="OneFpgaCatalog.GamesDb.store")
    ingest_games(tmp_path / "t.sqlite", {"games": []}, {"name": "NES"}, sql_debug=True)
    assert any("INSERT INTO Metadata" in record.getMessage() for record in caplog.records)

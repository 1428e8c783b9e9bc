"""Built-in build steps, registered on import."""

from __future__ import annotations

from ..build_steps import register_build_step
from .archive_db import ArchiveDbStep
from .games_db import GamesDbStep

__all__ = ["ArchiveDbStep", "GamesDbStep"]

register_build_step("games-db", GamesDbStep)
register_build_step("archive-db", ArchiveDbStep)

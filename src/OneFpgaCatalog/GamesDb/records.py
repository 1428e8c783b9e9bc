"""Typed records parsed from a system's game list.

A game list entry carries a free-text ``name`` such as
``"Super Game (USA) (Proto)"``.  Every parenthesised or bracketed group becomes
a tag and the text before the first group is the short title.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from OneFpgaCatalog.Distribution.errors import IngestionError

__all__ = [
    "GameRecord",
    "SourceFile",
    "derive_shortname",
    "extract_tags",
    "normalize_languages",
    "parse_game",
    "split_regions",
]

TAGS_PATTERN = re.compile(r"[(\[](?P<tag>.*?)[)\]]")
SHORTNAME_PATTERN = re.compile(r"^(?P<name>.*?)\s*[(\[]")


@dataclass(frozen=True)
class SourceFile:
    """One dump of a game: file extension, raw SHA-256 digest and byte size."""

    extension: str
    sha256: bytes
    size: Optional[int] = None


@dataclass(frozen=True)
class GameRecord:
    fullname: str
    title: Optional[str]
    original_title: Optional[str] = None
    year: Optional[int] = None
    tags: Tuple[str, ...] = ()
    regions: Tuple[str, ...] = ()
    languages: Tuple[str, ...] = ()
    sources: Tuple[SourceFile, ...] = ()
    playlists: Dict[str, int] = field(default_factory=dict)


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    # dict keeps first-seen order
    return tuple(dict.fromkeys(values))


def derive_shortname(name: str) -> Optional[str]:
    """Return the text before the first ``(`` or ``[`` group, or ``None``."""

    match = SHORTNAME_PATTERN.match(name)
    return match.group("name") if match else None


def extract_tags(name: str, explicit: Iterable[str] = ()) -> Tuple[str, ...]:
    """Return ``explicit`` tags followed by the tags embedded in ``name``.

    Tags are case-sensitive and deduplicated, keeping the first occurrence.

    >>> extract_tags("Super Game (USA) (Proto)")
    ('USA', 'Proto')
    """

    found = [match.group("tag") for match in TAGS_PATTERN.finditer(name)]
    return _unique([*explicit, *found])


def split_regions(region: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated region field into unique, non-blank names."""

    if not region:
        return ()
    return _unique(part.strip() for part in region.split(",") if part.strip())


def normalize_languages(languages: Union[None, str, Iterable[Optional[str]]]) -> Tuple[str, ...]:
    if languages is None:
        return ()
    items = [languages] if isinstance(languages, str) else list(languages)
    return _unique(item.strip() for item in items if item and item.strip())


def _parse_sources(fullname: str, sources: Iterable[Mapping[str, Any]]) -> Tuple[SourceFile, ...]:
    parsed: List[SourceFile] = []
    for source in sources:
        for entry in source.get("files", []):
            digest = entry.get("sha256")
            try:
                raw = bytes.fromhex(digest)
            except (TypeError, ValueError) as exc:
                raise IngestionError(
                    f"Game {fullname!r} has an invalid sha256 value {digest!r}"
                ) from exc
            extension = entry.get("extension")
            if not isinstance(extension, str):
                raise IngestionError(f"Game {fullname!r} has a source file without extension")
            parsed.append(SourceFile(extension=extension, sha256=raw, size=entry.get("size")))
    return tuple(parsed)


def parse_game(entry: Mapping[str, Any]) -> GameRecord:
    """Convert one game list entry into a :class:`GameRecord`.

    Raises:
        IngestionError: If the entry has no name or carries malformed sources.
    """

    name = entry.get("name")
    if not isinstance(name, str) or not name:
        raise IngestionError(f"Game entry without a name: {dict(entry)!r}")

    shortname = entry.get("shortname")
    if shortname is None:
        shortname = derive_shortname(name)

    playlists = entry.get("playlists") or {}
    return GameRecord(
        fullname=name,
        title=shortname,
        original_title=entry.get("nameAlt"),
        year=entry.get("year"),
        tags=extract_tags(name, entry.get("tags") or ()),
        regions=split_regions(entry.get("region")),
        languages=normalize_languages(entry.get("languages")),
        sources=_parse_sources(name, entry.get("sources") or ()),
        playlists={str(key): value for key, value in playlists.items()},
    )

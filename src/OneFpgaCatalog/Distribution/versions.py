"""Version ordering helpers for catalog stamps.

Catalog versions are date-like numerals (``YYYYMMDD`` in practice) stored as
strings, occasionally as integers when they come straight out of TOML.  They
are ordered numerically; anything that is not a numeral is rejected rather
than silently compared as ``NaN``.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Union

from .errors import VersionError

Version = Union[str, int]

__all__ = [
    "Version",
    "build_date_version",
    "coerce_version",
    "compare_versions",
    "max_version",
    "parse_version",
]

_VERSION_PATTERN = re.compile(r"^\d+(?:\.\d+)?$")


def parse_version(value: object) -> Decimal:
    """Return the numeric value of ``value`` or raise :class:`VersionError`."""

    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise VersionError(f"Version must be a numeric string, got {value!r}")
    text = str(value).strip()
    if not _VERSION_PATTERN.match(text):
        raise VersionError(f"Version {value!r} is not a numeric date-like value")
    return Decimal(text)


def compare_versions(a: Version, b: Version) -> int:
    """Compare two versions numerically.

    Returns:
        A negative number if ``a`` is older than ``b``, a positive number if it
        is newer, and ``0`` when both denote the same version.
    """

    difference = parse_version(a) - parse_version(b)
    if difference > 0:
        return 1
    if difference < 0:
        return -1
    return 0


def max_version(versions: Iterable[Version]) -> Version:
    """Return the greatest version of ``versions``, as it was given."""

    iterator = iter(versions)
    try:
        best = next(iterator)
    except StopIteration:
        raise VersionError("max_version() requires at least one version") from None
    parse_version(best)
    for candidate in iterator:
        best = best if compare_versions(best, candidate) > 0 else candidate
    return best


def coerce_version(value: Optional[Version], default: Version = "0") -> Version:
    """Return ``value`` or ``default`` when a document has no stamp yet."""

    return default if value is None else value


def build_date_version(today: Optional[date] = None) -> str:
    """Return the ``YYYYMMDD`` stamp for ``today`` (local date by default)."""

    return (today or date.today()).strftime("%Y%m%d")

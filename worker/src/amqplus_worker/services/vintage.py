"""Parsing and range checks for "Season Year" anime vintages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

SEASONS = ("Winter", "Spring", "Summer", "Fall")

_SEASON_LOOKUP = {name.casefold(): index for index, name in enumerate(SEASONS)}


@dataclass(frozen=True)
class Vintage:
    season: str
    year: int

    @property
    def ordinal(self) -> int:
        return self.year * 4 + _SEASON_LOOKUP.get(self.season.casefold(), 0)


SENTINEL_VINTAGE = Vintage(season="Winter", year=1944)

VintageBound = Union[Vintage, Mapping[str, Any]]


def parse_vintage(value: str | None) -> Vintage:
    """Parse ``"Fall 2023"``; anything unparsable becomes the Winter 1944 sentinel."""
    if not value:
        return SENTINEL_VINTAGE
    parts = value.split()
    if len(parts) < 2:
        return SENTINEL_VINTAGE
    season_key = parts[0].casefold()
    if season_key not in _SEASON_LOOKUP:
        return SENTINEL_VINTAGE
    try:
        year = int(parts[1])
    except ValueError:
        return SENTINEL_VINTAGE
    return Vintage(season=SEASONS[_SEASON_LOOKUP[season_key]], year=year)


def _as_vintage(bound: VintageBound) -> Vintage:
    if isinstance(bound, Vintage):
        return bound
    season = str(bound.get("season") or "Winter")
    try:
        year = int(bound.get("year"))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return SENTINEL_VINTAGE
    if season.casefold() not in _SEASON_LOOKUP:
        season = "Winter"
    return Vintage(season=SEASONS[_SEASON_LOOKUP[season.casefold()]], year=year)


def vintage_ordinal(value: str | None) -> int:
    return parse_vintage(value).ordinal


def is_in_vintage_range(value: str | None, start: VintageBound, end: VintageBound) -> bool:
    """Inclusive ``[start, end]`` membership by (year, season) order."""
    ordinal = parse_vintage(value).ordinal
    return _as_vintage(start).ordinal <= ordinal <= _as_vintage(end).ordinal

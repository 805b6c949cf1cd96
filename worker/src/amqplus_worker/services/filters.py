"""Filter registry: typed settings, song predicates and basket quotas per definition."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Tuple, Type, Union

from loguru import logger
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from ..app.models import CamelModel, FilterStatistic, RangeValue, Song
from .baskets import QuotaContext, count_or_percentage, range_from_settings, round_half_up
from .exceptions import InvalidConfiguration
from .types import BasketQuota, Candidate, ResolvedFilter, SongPredicate
from .vintage import is_in_vintage_range

SONG_TYPE_GROUPS = ("openings", "endings", "inserts")

_SONG_TYPE_KEYS = {
    "opening": "openings",
    "openings": "openings",
    "op": "openings",
    "ending": "endings",
    "endings": "endings",
    "ed": "endings",
    "insert": "inserts",
    "inserts": "inserts",
    "in": "inserts",
}

# (low, high, high bound inclusive)
DIFFICULTY_BANDS: Dict[str, Tuple[float, float, bool]] = {
    "easy": (60.0, 100.0, True),
    "medium": (25.0, 60.0, False),
    "hard": (0.0, 25.0, False),
}

TAG_RANK_THRESHOLD = 60

ValueMode = Literal["count", "percentage"]
QuotaValue = Union[float, RangeValue, None]


def _value_mode_field() -> Any:
    return Field(
        default="count",
        validation_alias=AliasChoices("valueMode", "value_mode", "mode"),
    )


def song_type_group(song_type: Union[str, int, None]) -> str:
    """Group a free-text song type such as ``"Opening 2"`` into openings/endings/inserts."""
    if isinstance(song_type, int):
        return {1: "openings", 2: "endings"}.get(song_type, "inserts")
    text = (song_type or "").strip().lower()
    if text.startswith("opening"):
        return "openings"
    if text.startswith("ending"):
        return "endings"
    return "inserts"


def _song_type_key(key: str) -> Optional[str]:
    return _SONG_TYPE_KEYS.get(key.strip().lower())


def normalize_player_score(score: Optional[float]) -> Optional[int]:
    if score is None:
        return None
    if score == 0:
        return 1
    return round_half_up(score)


def normalize_anime_score(average_score: Optional[float]) -> Optional[int]:
    """Map a 0-100 average score onto the 1-10 scale used by score filters."""
    if average_score is None:
        return None
    scaled = average_score / 10.0
    if scaled == 0:
        return 1
    return round_half_up(scaled)


def player_score_of(song: Song) -> Optional[int]:
    raw: Any = None
    if song.source_anime is not None:
        raw = song.source_anime.score
    if raw is None and song.model_extra:
        raw = song.model_extra.get("score")
    if raw is None:
        return None
    return normalize_player_score(float(raw))


def anime_score_of(song: Song) -> Optional[int]:
    if song.source_anime is not None and song.source_anime.average_score is not None:
        return normalize_anime_score(song.source_anime.average_score)
    if song.anime_score is not None:
        return normalize_anime_score(song.anime_score * 10.0)
    return None


def difficulty_band(difficulty: Optional[float]) -> Optional[str]:
    if difficulty is None:
        return None
    for name, (low, high, inclusive) in DIFFICULTY_BANDS.items():
        if low <= difficulty < high or (inclusive and difficulty == high):
            return name
    return None


def genre_names(song: Song) -> List[str]:
    if song.source_anime is None:
        return []
    return [genre.lower() for genre in song.source_anime.genres]


def tag_names(song: Song) -> List[str]:
    """Tag names whose rank clears the relevance threshold."""
    if song.source_anime is None:
        return []
    return [
        tag.name.lower()
        for tag in song.source_anime.tags
        if (tag.rank or 0) > TAG_RANK_THRESHOLD
    ]


def _number_label(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _open_quota(key: str, target: int, matcher: SongPredicate) -> BasketQuota:
    return BasketQuota(key=key, min=0, max=target, matcher=matcher)


# songs-and-types


class SongsAndTypesSettings(CamelModel):
    value_mode: ValueMode = _value_mode_field()
    types: Dict[str, float] = Field(default_factory=dict)
    types_ranges: Dict[str, RangeValue] = Field(default_factory=dict)
    song_selection: Dict[str, float] = Field(default_factory=dict)
    song_selection_ranges: Dict[str, RangeValue] = Field(default_factory=dict)

    def type_quota(self, group: str) -> QuotaValue:
        for key, value in self.types_ranges.items():
            if _song_type_key(key) == group:
                return value
        for key, value in self.types.items():
            if _song_type_key(key) == group:
                return value
        return None

    def selection_quota(self, kind: str) -> QuotaValue:
        if kind in self.song_selection_ranges:
            return self.song_selection_ranges[kind]
        return self.song_selection.get(kind)


def _song_type_matcher(group: str) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return song_type_group(candidate.song.song_type) == group

    return _match


def _source_type_matcher(kind: str) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return candidate.source_type == kind

    return _match


def _plan_songs_and_types(
    settings: SongsAndTypesSettings, context: QuotaContext
) -> List[BasketQuota]:
    target = context.target
    planned: List[BasketQuota] = []
    for group in SONG_TYPE_GROUPS:
        quota = settings.type_quota(group)
        if quota is None:
            continue
        low, high = range_from_settings(quota, settings.value_mode, target)
        planned.append(BasketQuota(f"songType-{group}", low, high, _song_type_matcher(group)))

    random_quota = settings.selection_quota("random")
    watched_quota = settings.selection_quota("watched")
    if random_quota is None and watched_quota is None:
        return planned
    random_low, random_high = range_from_settings(random_quota, settings.value_mode, target)
    watched_low, watched_high = range_from_settings(watched_quota, settings.value_mode, target)
    if context.has_masterlist_source:
        # every song already counts as watched when the master list is a source
        watched_low = min(target, watched_low + random_low)
        watched_high = min(target, watched_high + random_high)
        random_low = random_high = 0
    planned.append(
        BasketQuota("songSelection-random", random_low, random_high, _source_type_matcher("random"))
    )
    planned.append(
        BasketQuota(
            "songSelection-watched", watched_low, watched_high, _source_type_matcher("watched")
        )
    )
    return planned


def wants_random_songs(settings: BaseModel) -> bool:
    if not isinstance(settings, SongsAndTypesSettings):
        return False
    quota = settings.selection_quota("random")
    if quota is None:
        return False
    if isinstance(quota, RangeValue):
        return quota.max > 0
    return quota > 0


def has_selection_split(settings: BaseModel) -> bool:
    if not isinstance(settings, SongsAndTypesSettings):
        return False
    return bool(settings.song_selection or settings.song_selection_ranges)


# vintage


class VintageBoundModel(CamelModel):
    season: str = "Winter"
    year: int


class VintageRange(CamelModel):
    start: VintageBoundModel = Field(alias="from")
    end: VintageBoundModel = Field(alias="to")
    value: Optional[float] = Field(default=None, ge=0)
    value_range: Optional[RangeValue] = None

    @property
    def quota(self) -> QuotaValue:
        return self.value_range if self.value_range is not None else self.value

    @property
    def label(self) -> str:
        return (
            f"{self.start.season}-{self.start.year}-{self.end.season}-{self.end.year}"
        ).lower()

    def matches(self, song: Song) -> bool:
        return is_in_vintage_range(
            song.anime_vintage, self.start.model_dump(), self.end.model_dump()
        )


class VintageSettings(CamelModel):
    value_mode: ValueMode = _value_mode_field()
    ranges: List[VintageRange] = Field(default_factory=list)


def _vintage_predicate(settings: VintageSettings) -> Optional[SongPredicate]:
    if not settings.ranges:
        return None
    ranges = list(settings.ranges)

    def _match(candidate: Candidate) -> bool:
        return any(item.matches(candidate.song) for item in ranges)

    return _match


def _vintage_matcher(item: VintageRange) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return item.matches(candidate.song)

    return _match


def _plan_vintage(settings: VintageSettings, context: QuotaContext) -> List[BasketQuota]:
    if not any(item.quota is not None for item in settings.ranges):
        return []
    planned = []
    for item in settings.ranges:
        key = f"vintage-{item.label}"
        if item.quota is None:
            planned.append(_open_quota(key, context.target, _vintage_matcher(item)))
            continue
        low, high = range_from_settings(item.quota, settings.value_mode, context.target)
        planned.append(BasketQuota(key, low, high, _vintage_matcher(item)))
    return planned


# song-difficulty


class DifficultyBandQuota(CamelModel):
    enabled: bool = True
    value: Optional[float] = Field(default=None, ge=0)
    random_range: bool = False
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _coerce_scalar(cls, data: Any) -> Any:
        if isinstance(data, bool):
            return {"enabled": data}
        if isinstance(data, (int, float)):
            return {"value": data}
        return data

    @property
    def quota(self) -> QuotaValue:
        if not self.enabled:
            return None
        if self.random_range and self.min is not None and self.max is not None:
            return RangeValue(min=self.min, max=self.max)
        return self.value


class DifficultyRange(CamelModel):
    start: float = Field(alias="from", ge=0, le=100)
    end: float = Field(alias="to", ge=0, le=100)
    value: Optional[float] = Field(default=None, ge=0)
    value_range: Optional[RangeValue] = None

    @property
    def quota(self) -> QuotaValue:
        return self.value_range if self.value_range is not None else self.value

    def matches(self, difficulty: Optional[float]) -> bool:
        if difficulty is None:
            return False
        low, high = sorted((self.start, self.end))
        return low <= difficulty <= high


class DifficultySettings(CamelModel):
    value_mode: ValueMode = _value_mode_field()
    view_mode: Literal["basic", "advanced"] = "basic"
    difficulties: Dict[str, DifficultyBandQuota] = Field(default_factory=dict)
    ranges: List[DifficultyRange] = Field(default_factory=list)

    def band(self, name: str) -> DifficultyBandQuota:
        return self.difficulties.get(name) or DifficultyBandQuota()


def _band_matcher(names: Iterable[str]) -> SongPredicate:
    allowed = frozenset(names)

    def _match(candidate: Candidate) -> bool:
        return difficulty_band(candidate.song.song_difficulty) in allowed

    return _match


def _difficulty_range_matcher(item: DifficultyRange) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return item.matches(candidate.song.song_difficulty)

    return _match


def _difficulty_predicate(settings: DifficultySettings) -> Optional[SongPredicate]:
    if settings.view_mode == "advanced":
        if not settings.ranges:
            return None
        ranges = list(settings.ranges)

        def _match(candidate: Candidate) -> bool:
            difficulty = candidate.song.song_difficulty
            return any(item.matches(difficulty) for item in ranges)

        return _match
    enabled = [name for name in DIFFICULTY_BANDS if settings.band(name).enabled]
    if len(enabled) == len(DIFFICULTY_BANDS):
        return None
    return _band_matcher(enabled)


def _plan_difficulty(settings: DifficultySettings, context: QuotaContext) -> List[BasketQuota]:
    target = context.target
    planned: List[BasketQuota] = []
    if settings.view_mode == "advanced":
        if not any(item.quota is not None for item in settings.ranges):
            return []
        for item in settings.ranges:
            key = f"difficulty-{_number_label(item.start)}-{_number_label(item.end)}"
            if item.quota is None:
                planned.append(_open_quota(key, target, _difficulty_range_matcher(item)))
                continue
            low, high = range_from_settings(item.quota, settings.value_mode, target)
            planned.append(BasketQuota(key, low, high, _difficulty_range_matcher(item)))
        return planned

    enabled = [name for name in DIFFICULTY_BANDS if settings.band(name).enabled]
    if not any(settings.band(name).quota is not None for name in enabled):
        return []
    for name in enabled:
        quota = settings.band(name).quota
        if quota is None:
            planned.append(_open_quota(f"difficulty-{name}", target, _band_matcher([name])))
            continue
        low, high = range_from_settings(quota, settings.value_mode, target)
        planned.append(BasketQuota(f"difficulty-{name}", low, high, _band_matcher([name])))
    return planned


# anime-type


class AnimeTypeSettings(CamelModel):
    mode: Literal["basic", "advanced"] = "basic"
    value_mode: ValueMode = Field(default="count", validation_alias=AliasChoices("valueMode", "value_mode"))
    enabled: Optional[List[str]] = None
    rebroadcast: Optional[bool] = None
    dubbed: Optional[bool] = None
    types: Dict[str, float] = Field(default_factory=dict)
    types_ranges: Dict[str, RangeValue] = Field(default_factory=dict)


def _anime_type_predicate(settings: AnimeTypeSettings) -> Optional[SongPredicate]:
    allowed: Optional[frozenset] = None
    if settings.mode == "basic" and settings.enabled:
        allowed = frozenset(item.lower() for item in settings.enabled)
    skip_rebroadcast = settings.rebroadcast is False
    skip_dubbed = settings.dubbed is False
    if allowed is None and not skip_rebroadcast and not skip_dubbed:
        return None

    def _match(candidate: Candidate) -> bool:
        song = candidate.song
        if skip_rebroadcast and song.is_rebroadcast:
            return False
        if skip_dubbed and song.is_dub:
            return False
        if allowed is not None:
            return (song.anime_type or "").lower() in allowed
        return True

    return _match


def _anime_type_matcher(anime_type: str) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return (candidate.song.anime_type or "").lower() == anime_type

    return _match


def _plan_anime_type(settings: AnimeTypeSettings, context: QuotaContext) -> List[BasketQuota]:
    if settings.mode != "advanced":
        return []
    planned = []
    keys = list(dict.fromkeys([*settings.types, *settings.types_ranges]))
    for key in keys:
        quota: QuotaValue = settings.types_ranges.get(key, settings.types.get(key))
        low, high = range_from_settings(quota, settings.value_mode, context.target)
        planned.append(BasketQuota(f"animeType-{key.lower()}", low, high, _anime_type_matcher(key.lower())))
    return planned


# song-categories


class SongCategoriesSettings(CamelModel):
    mode: Literal["basic", "advanced"] = "basic"
    value_mode: ValueMode = Field(default="count", validation_alias=AliasChoices("valueMode", "value_mode"))
    enabled: Optional[Union[List[str], Dict[str, Dict[str, bool]]]] = None
    categories: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    categories_ranges: Dict[str, Dict[str, RangeValue]] = Field(default_factory=dict)


def _song_categories_predicate(settings: SongCategoriesSettings) -> Optional[SongPredicate]:
    if settings.mode != "basic" or not settings.enabled:
        return None
    if isinstance(settings.enabled, list):
        allowed = frozenset(item.lower() for item in settings.enabled)

        def _match_flat(candidate: Candidate) -> bool:
            return (candidate.song.song_category or "").lower() in allowed

        return _match_flat

    table = {
        group.lower(): {name.lower(): flag for name, flag in entries.items()}
        for group, entries in settings.enabled.items()
    }

    def _match_grouped(candidate: Candidate) -> bool:
        group = song_type_group(candidate.song.song_type)
        category = (candidate.song.song_category or "").lower()
        return table.get(group, {}).get(category) is True

    return _match_grouped


def _category_matcher(group: str, category: str) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        song = candidate.song
        if group in SONG_TYPE_GROUPS and song_type_group(song.song_type) != group:
            return False
        return (song.song_category or "").lower() == category

    return _match


def _plan_song_categories(
    settings: SongCategoriesSettings, context: QuotaContext
) -> List[BasketQuota]:
    if settings.mode != "advanced":
        return []
    planned = []
    groups = list(dict.fromkeys([*settings.categories, *settings.categories_ranges]))
    for group in groups:
        statics = settings.categories.get(group, {})
        ranges = settings.categories_ranges.get(group, {})
        group_key = _song_type_key(group) or group.lower()
        for category in dict.fromkeys([*statics, *ranges]):
            quota: QuotaValue = ranges.get(category, statics.get(category))
            low, high = range_from_settings(quota, settings.value_mode, context.target)
            planned.append(
                BasketQuota(
                    f"category-{group_key}-{category.lower()}",
                    low,
                    high,
                    _category_matcher(group_key, category.lower()),
                )
            )
    return planned


# genres / tags


class RatedItem(CamelModel):
    label: str
    status: Optional[Literal["include", "exclude", "optional"]] = None
    value: Optional[float] = Field(default=None, ge=0)


class IncludeExcludeSettings(CamelModel):
    value_mode: ValueMode = Field(default="count", validation_alias=AliasChoices("valueMode", "value_mode"))
    included: List[str] = Field(default_factory=list)
    excluded: List[str] = Field(default_factory=list)
    optional: List[str] = Field(default_factory=list)
    show_rates: bool = False
    items: List[RatedItem] = Field(default_factory=list)

    def roles(self) -> Tuple[List[str], List[str], List[str]]:
        if self.show_rates and self.items:
            included = [item.label for item in self.items if item.status == "include"]
            excluded = [item.label for item in self.items if item.status == "exclude"]
            optional = [item.label for item in self.items if item.status == "optional"]
        else:
            included, excluded, optional = self.included, self.excluded, self.optional
        return (
            [name.lower() for name in included],
            [name.lower() for name in excluded],
            [name.lower() for name in optional],
        )


def _membership_predicate(
    settings: IncludeExcludeSettings,
    names_of: Callable[[Song], List[str]],
    require_names: bool,
) -> Optional[SongPredicate]:
    included, excluded, optional = settings.roles()
    if not (included or excluded or optional):
        return None

    def _match(candidate: Candidate) -> bool:
        names = set(names_of(candidate.song))
        if require_names and not names:
            return False
        if any(name not in names for name in included):
            return False
        if any(name in names for name in excluded):
            return False
        if optional and not any(name in names for name in optional):
            return False
        return True

    return _match


def _membership_matcher(names_of: Callable[[Song], List[str]], label: str) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return label in names_of(candidate.song)

    return _match


def _rated_baskets(
    settings: IncludeExcludeSettings,
    prefix: str,
    names_of: Callable[[Song], List[str]],
    context: QuotaContext,
) -> List[BasketQuota]:
    if not settings.show_rates:
        return []
    wanted = [item for item in settings.items if item.status != "exclude"]
    if not any(item.value for item in wanted):
        return []
    planned = []
    for item in wanted:
        label = item.label.lower()
        matcher = _membership_matcher(names_of, label)
        if not item.value:
            planned.append(_open_quota(f"{prefix}-{label}", context.target, matcher))
            continue
        count = count_or_percentage(item.value, settings.value_mode, context.target)
        planned.append(BasketQuota(f"{prefix}-{label}", count, count, matcher))
    return planned


def _genres_predicate(settings: IncludeExcludeSettings) -> Optional[SongPredicate]:
    return _membership_predicate(settings, genre_names, require_names=False)


def _tags_predicate(settings: IncludeExcludeSettings) -> Optional[SongPredicate]:
    return _membership_predicate(settings, tag_names, require_names=True)


def _plan_genres(settings: IncludeExcludeSettings, context: QuotaContext) -> List[BasketQuota]:
    return _rated_baskets(settings, "genre", genre_names, context)


def _plan_tags(settings: IncludeExcludeSettings, context: QuotaContext) -> List[BasketQuota]:
    return _rated_baskets(settings, "tag", tag_names, context)


# player-score / anime-score


class ScoreSettings(CamelModel):
    value_mode: ValueMode = Field(default="count", validation_alias=AliasChoices("valueMode", "value_mode"))
    min: float = Field(default=1, ge=0, le=10)
    max: float = Field(default=10, ge=0, le=10)
    disabled: List[int] = Field(default_factory=list)
    counts: Dict[str, float] = Field(default_factory=dict)
    percentages: Dict[str, float] = Field(default_factory=dict)

    @property
    def full_range(self) -> bool:
        return self.min <= 1 and self.max >= 10 and not self.disabled

    def accepts(self, score: Optional[int]) -> bool:
        if score is None:
            return self.full_range
        return self.min <= score <= self.max and score not in self.disabled


def _score_predicate(
    settings: ScoreSettings, score_of: Callable[[Song], Optional[int]]
) -> Optional[SongPredicate]:
    if settings.counts or settings.percentages or settings.full_range:
        return None

    def _match(candidate: Candidate) -> bool:
        return settings.accepts(score_of(candidate.song))

    return _match


def _score_matcher(score_of: Callable[[Song], Optional[int]], score: int) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return score_of(candidate.song) == score

    return _match


def _plan_score(
    settings: ScoreSettings,
    context: QuotaContext,
    prefix: str,
    score_of: Callable[[Song], Optional[int]],
) -> List[BasketQuota]:
    if settings.percentages:
        quotas, value_mode = settings.percentages, "percentage"
    elif settings.counts:
        quotas, value_mode = settings.counts, settings.value_mode
    else:
        return []
    planned = []
    explicit: List[int] = []
    total = 0
    for key, value in quotas.items():
        try:
            score = int(key)
        except ValueError:
            logger.warning("Ignoring non-numeric {} score key {!r}", prefix, key)
            continue
        count = count_or_percentage(value, value_mode, context.target)
        explicit.append(score)
        total += count
        planned.append(BasketQuota(f"{prefix}Score-{score}", count, count, _score_matcher(score_of, score)))
    remaining = context.target - total
    if remaining > 0:
        listed = frozenset(explicit)

        def _match_rest(candidate: Candidate) -> bool:
            score = score_of(candidate.song)
            return score not in listed and settings.accepts(score)

        planned.append(BasketQuota(f"{prefix}Score-remaining", remaining, remaining, _match_rest))
    return planned


def _player_score_predicate(settings: ScoreSettings) -> Optional[SongPredicate]:
    return _score_predicate(settings, player_score_of)


def _anime_score_predicate(settings: ScoreSettings) -> Optional[SongPredicate]:
    return _score_predicate(settings, anime_score_of)


def _plan_player_score(settings: ScoreSettings, context: QuotaContext) -> List[BasketQuota]:
    return _plan_score(settings, context, "player", player_score_of)


def _plan_anime_score(settings: ScoreSettings, context: QuotaContext) -> List[BasketQuota]:
    return _plan_score(settings, context, "anime", anime_score_of)


# registry


@dataclass(frozen=True)
class FilterDefinition:
    definition_id: str
    settings_model: Type[BaseModel]
    compile_predicate: Callable[[Any], Optional[SongPredicate]]
    plan_baskets: Callable[[Any, QuotaContext], List[BasketQuota]]

    def parse_settings(self, raw: Dict[str, Any], instance_id: str) -> BaseModel:
        try:
            return self.settings_model.model_validate(raw)
        except ValidationError as exc:
            raise InvalidConfiguration(
                f"invalid settings for {self.definition_id} filter {instance_id}: {exc}"
            ) from exc


FILTER_REGISTRY: Dict[str, FilterDefinition] = {
    definition.definition_id: definition
    for definition in (
        FilterDefinition("songs-and-types", SongsAndTypesSettings, lambda _: None, _plan_songs_and_types),
        FilterDefinition("vintage", VintageSettings, _vintage_predicate, _plan_vintage),
        FilterDefinition("song-difficulty", DifficultySettings, _difficulty_predicate, _plan_difficulty),
        FilterDefinition("anime-type", AnimeTypeSettings, _anime_type_predicate, _plan_anime_type),
        FilterDefinition(
            "song-categories", SongCategoriesSettings, _song_categories_predicate, _plan_song_categories
        ),
        FilterDefinition("genres", IncludeExcludeSettings, _genres_predicate, _plan_genres),
        FilterDefinition("tags", IncludeExcludeSettings, _tags_predicate, _plan_tags),
        FilterDefinition("player-score", ScoreSettings, _player_score_predicate, _plan_player_score),
        FilterDefinition("anime-score", ScoreSettings, _anime_score_predicate, _plan_anime_score),
    )
}


def get_definition(definition_id: str) -> FilterDefinition:
    try:
        return FILTER_REGISTRY[definition_id]
    except KeyError:
        raise InvalidConfiguration(f"unknown filter definition: {definition_id}") from None


def evaluate_predicates(
    candidates: List[Candidate], filters: List[ResolvedFilter]
) -> Tuple[List[Candidate], List[FilterStatistic]]:
    """Apply every basic-mode predicate in order, recording pool sizes around each."""
    remaining = list(candidates)
    statistics: List[FilterStatistic] = []
    for resolved in filters:
        predicate = resolved.definition.compile_predicate(resolved.settings)
        if predicate is None:
            continue
        scope = resolved.source_scope
        before = len(remaining)
        remaining = [
            candidate
            for candidate in remaining
            if (scope is not None and not candidate.from_any(scope)) or predicate(candidate)
        ]
        statistics.append(
            FilterStatistic(
                filter_id=resolved.instance_id,
                definition_id=resolved.definition_id,
                before=before,
                after=len(remaining),
            )
        )
        logger.debug(
            "Filter {} ({}) kept {}/{} candidates",
            resolved.instance_id,
            resolved.definition_id,
            len(remaining),
            before,
        )
    return remaining, statistics

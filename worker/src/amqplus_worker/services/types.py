"""Shared service data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel

from ..app.models import BasicSettings, LoadingError, Song

if TYPE_CHECKING:
    from .filters import FilterDefinition


RANDOM_MASTERLIST_SOURCE_ID = "random-masterlist"


@dataclass(frozen=True)
class Candidate:
    """A song in the deduplicated pool together with where it came from."""

    index: int
    song: Song
    source_id: str
    source_info: str
    source_ids: FrozenSet[str] = frozenset()
    source_type: str = "watched"

    def from_any(self, sources: FrozenSet[str]) -> bool:
        return self.source_id in sources or bool(self.source_ids & sources)

    @property
    def show_key(self) -> Optional[str]:
        if self.song.mal_id is not None:
            return f"mal:{self.song.mal_id}"
        if self.song.anime_en_name:
            return f"name:{self.song.anime_en_name}"
        return None


SongPredicate = Callable[[Candidate], bool]


@dataclass(frozen=True)
class BasketQuota:
    """Quota produced by a filter definition before source scoping is applied."""

    key: str
    min: int
    max: int
    matcher: SongPredicate


@dataclass
class Basket:
    id: str
    min: int
    max: int
    matcher: SongPredicate
    family: str
    current: int = 0

    @property
    def meets_min(self) -> bool:
        return self.current >= self.min


@dataclass
class BasketFamily:
    """Baskets contributed by one filter; ``scope`` limits which sources they govern."""

    key: str
    baskets: List[Basket] = field(default_factory=list)
    scope: Optional[FrozenSet[str]] = None

    def covers(self, candidate: Candidate) -> bool:
        if self.scope is None:
            return True
        return candidate.from_any(self.scope)


@dataclass
class ResolvedFilter:
    instance_id: str
    definition: "FilterDefinition"
    settings: BaseModel
    target_source_ids: Tuple[str, ...] = ()
    category: Optional[str] = None

    @property
    def definition_id(self) -> str:
        return self.definition.definition_id

    @property
    def source_scope(self) -> Optional[FrozenSet[str]]:
        if not self.target_source_ids:
            return None
        return frozenset(self.target_source_ids)


@dataclass
class ResolutionResult:
    filters: List[ResolvedFilter]
    song_count_target: int
    basic_settings: BasicSettings
    selected_route: Optional[str] = None
    basic_settings_instance: Optional[str] = None
    forced_instances: List[str] = field(default_factory=list)
    source_percentages: Dict[str, float] = field(default_factory=dict)


@dataclass
class CandidatePool:
    candidates: List[Candidate]
    loading_errors: List[LoadingError] = field(default_factory=list)
    source_ids: List[str] = field(default_factory=list)

    @property
    def source_song_count(self) -> int:
        return len(self.candidates)


@dataclass
class SamplingOutcome:
    selected: List[Candidate]
    baskets: List[Basket]
    target_count: int

    @property
    def success(self) -> bool:
        return len(self.selected) >= self.target_count and all(
            basket.meets_min for basket in self.baskets
        )

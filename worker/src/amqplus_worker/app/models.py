from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RangeValue(CamelModel):
    min: float
    max: float


class SongTag(CamelModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    rank: Optional[float] = None


class SourceAnime(CamelModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    average_score: Optional[float] = None
    score: Optional[float] = None
    genres: list[str] = Field(default_factory=list)
    tags: list[SongTag] = Field(default_factory=list)


class Song(CamelModel):
    """Song record as served by list stores; unknown attributes are preserved."""

    model_config = ConfigDict(frozen=True, extra="allow")

    ann_song_id: Optional[int] = None
    song_name: Optional[str] = None
    song_artist: Optional[str] = None
    anime_en_name: Optional[str] = Field(default=None, alias="animeENName")
    anime_jp_name: Optional[str] = Field(default=None, alias="animeJPName")
    mal_id: Optional[int] = None
    song_type: Optional[Union[int, str]] = None
    anime_type: Optional[str] = None
    song_category: Optional[str] = None
    song_difficulty: Optional[float] = Field(default=None, ge=0, le=100)
    anime_vintage: Optional[str] = None
    anime_score: Optional[float] = None
    is_dub: Optional[bool] = None
    is_rebroadcast: Optional[bool] = None
    source_anime: Optional[SourceAnime] = None


class RouteBranch(CamelModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: Optional[str] = Field(default=None, max_length=128)
    percentage: Optional[float] = Field(default=None, ge=0)
    enabled: bool = True
    targets: list[str] = Field(default_factory=list)


class RouterNode(CamelModel):
    kind: Literal["router"] = "router"
    instance_id: str = Field(default="router", min_length=1, max_length=64)
    routes: list[RouteBranch] = Field(default_factory=list)


class GateNode(CamelModel):
    kind: Literal["gate"] = "gate"
    instance_id: str = Field(..., min_length=1, max_length=64)
    chance: Union[float, RangeValue] = 100.0
    targets: list[str] = Field(default_factory=list)


class SelectionModifierNode(CamelModel):
    kind: Literal["selection-modifier"] = "selection-modifier"
    instance_id: str = Field(..., min_length=1, max_length=64)
    targets: list[str] = Field(default_factory=list)
    min_selection: int = Field(default=1, ge=0)
    max_selection: Union[int, RangeValue]


class SourceSelectorNode(CamelModel):
    kind: Literal["source-selector"] = "source-selector"
    instance_id: str = Field(..., min_length=1, max_length=64)
    target_source_id: str = Field(..., min_length=1)
    targets: list[str] = Field(default_factory=list)


GraphNode = Annotated[
    Union[RouterNode, GateNode, SelectionModifierNode, SourceSelectorNode],
    Field(discriminator="kind"),
]


class BasicSettings(CamelModel):
    model_config = ConfigDict(extra="allow")

    guess_time: Any = 20
    extra_guess_time: Any = 0
    sample_point: Any = None
    playback_speed: Any = 1.0
    duplicate_shows: bool = True


class BasicSettingsInstance(CamelModel):
    instance_id: str = Field(..., min_length=1, max_length=64)
    category: Optional[str] = "basic-settings"
    execution_chance: Optional[Union[float, RangeValue]] = None
    settings: BasicSettings = Field(default_factory=BasicSettings)


class FilterInstance(CamelModel):
    definition_id: str = Field(..., min_length=1, max_length=64)
    instance_id: str = Field(..., min_length=1, max_length=64)
    settings: dict[str, Any] = Field(default_factory=dict)
    category: Optional[str] = None
    execution_chance: Optional[Union[float, RangeValue]] = None
    target_source_id: Optional[str] = None
    target_source_ids: list[str] = Field(default_factory=list)


class SavedListRef(CamelModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None


class UserListImport(CamelModel):
    platform: str = "anilist"
    username: str = ""
    selected_lists: dict[str, bool] = Field(default_factory=dict)


class SongPercentage(CamelModel):
    value: Optional[float] = Field(default=None, ge=0, le=100)
    random: bool = False
    min: Optional[float] = Field(default=None, ge=0, le=100)
    max: Optional[float] = Field(default=None, ge=0, le=100)


class SongListSource(CamelModel):
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    mode: Literal["masterlist", "saved-lists", "user-lists"]
    use_entire_pool: bool = False
    saved_list: Optional[SavedListRef] = None
    selected_list_id: Optional[str] = None
    selected_list_name: Optional[str] = None
    user_list_import: Optional[UserListImport] = None
    song_percentage: Optional[Union[float, SongPercentage]] = None

    @property
    def saved_list_id(self) -> Optional[str]:
        if self.saved_list is not None:
            return self.saved_list.id
        return self.selected_list_id

    def describe(self) -> str:
        if self.mode == "saved-lists":
            name = None
            if self.saved_list is not None:
                name = self.saved_list.name
            name = name or self.selected_list_name or self.saved_list_id or "unknown"
            return f"Saved list: {name}"
        if self.mode == "user-lists":
            username = self.user_list_import.username if self.user_list_import else ""
            return f"User list: {username or 'unknown'}"
        return "Master list"


class QuizConfiguration(CamelModel):
    seed: Optional[str] = Field(default=None, max_length=128)
    router: Optional[RouterNode] = None
    basic_settings: Optional[Union[list[BasicSettingsInstance], BasicSettings]] = None
    number_of_songs: Optional[Union[Annotated[int, Field(ge=1)], RangeValue]] = None
    filters: list[FilterInstance] = Field(default_factory=list)
    nodes: list[GraphNode] = Field(default_factory=list)
    required_categories: list[str] = Field(default_factory=lambda: ["basic-settings"])
    song_lists: list[SongListSource] = Field(default_factory=list)

    @model_validator(mode="after")
    def _normalise_graph(self) -> "QuizConfiguration":
        routers = [node for node in self.nodes if isinstance(node, RouterNode)]
        if len(routers) + (1 if self.router is not None else 0) > 1:
            raise ValueError("a quiz configuration may contain at most one router")
        if routers:
            self.router = routers[0]
            self.nodes = [node for node in self.nodes if not isinstance(node, RouterNode)]
        node_ids = self.source_node_ids()
        if len(set(node_ids)) != len(node_ids):
            raise ValueError("song list node ids must be unique")
        return self

    def source_node_ids(self) -> list[str]:
        return [
            source.node_id or f"source-{index}" for index, source in enumerate(self.song_lists)
        ]


class BasketStatus(CamelModel):
    id: str
    current: int
    min: int
    max: int
    meets_min: bool


class LoadingError(CamelModel):
    source: str
    error: str
    node_id: Optional[str] = None
    mode: Optional[str] = None


class FilterStatistic(CamelModel):
    filter_id: str
    definition_id: str
    before: int
    after: int


class SongSourceEntry(CamelModel):
    ann_song_id: Optional[int] = None
    source_id: str
    source_info: str


class RunMetadata(CamelModel):
    seed: str
    target_count: int
    final_count: int
    success: bool
    source_song_count: int
    eligible_song_count: int
    basket_status: list[BasketStatus] = Field(default_factory=list)
    loading_errors: list[LoadingError] = Field(default_factory=list)
    selected_route: Optional[str] = None
    forced_instances: list[str] = Field(default_factory=list)
    filter_statistics: list[FilterStatistic] = Field(default_factory=list)
    song_source_map: list[SongSourceEntry] = Field(default_factory=list)
    basic_settings: Optional[BasicSettings] = None


class GenerationResult(CamelModel):
    songs: list[Song]
    metadata: RunMetadata

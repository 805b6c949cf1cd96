"""End-to-end quiz song resolution."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from loguru import logger
from pydantic import ValidationError

from ..app.models import GenerationResult, QuizConfiguration, RunMetadata, SongSourceEntry
from ..app.settings import Settings
from .baskets import BasketPlanner
from .exceptions import InvalidConfiguration
from .filters import evaluate_predicates, has_selection_split, wants_random_songs
from .resolver import GraphResolver
from .rng import generate_seed, make_rng, shuffle_in_place
from .sampler import BasketSampler, build_basket_status
from .sources import CandidatePoolBuilder, SongListStore


def parse_configuration(payload: Union[QuizConfiguration, Mapping[str, Any]]) -> QuizConfiguration:
    if isinstance(payload, QuizConfiguration):
        return payload
    try:
        return QuizConfiguration.model_validate(payload)
    except ValidationError as exc:
        raise InvalidConfiguration(f"invalid quiz configuration: {exc}") from exc


class QuizSongEngine:
    """Turns a quiz configuration plus song lists into a concrete song selection."""

    def __init__(
        self,
        settings: Settings,
        store: SongListStore,
        resolver: Optional[GraphResolver] = None,
        planner: Optional[BasketPlanner] = None,
        sampler: Optional[BasketSampler] = None,
    ) -> None:
        self._settings = settings
        self._resolver = resolver or GraphResolver(max_song_count=settings.max_song_count)
        self._planner = planner or BasketPlanner()
        self._sampler = sampler or BasketSampler(max_attempts=settings.sampling_attempts)
        self._pool_builder = CandidatePoolBuilder(
            store, timeout_seconds=settings.source_timeout_seconds
        )

    async def generate(
        self, payload: Union[QuizConfiguration, Mapping[str, Any]]
    ) -> GenerationResult:
        config = parse_configuration(payload)
        if config.number_of_songs is None:
            raise InvalidConfiguration("numberOfSongs is required")
        if not config.song_lists:
            raise InvalidConfiguration("at least one song list is required")

        seed = config.seed or generate_seed()
        rng = make_rng(seed)
        logger.info("Resolving quiz with seed {}", seed)

        resolution = self._resolver.resolve(config, rng)
        entire_pool = any(source.use_entire_pool for source in config.song_lists)
        has_masterlist = any(source.mode == "masterlist" for source in config.song_lists)
        families = self._planner.plan(
            resolution,
            entire_pool=entire_pool,
            has_masterlist_source=has_masterlist,
        )

        include_random = not entire_pool and any(
            wants_random_songs(resolved.settings) for resolved in resolution.filters
        )
        pool = await self._pool_builder.build(config, include_random=include_random)

        if entire_pool:
            eligible, statistics = list(pool.candidates), []
        else:
            eligible, statistics = evaluate_predicates(pool.candidates, resolution.filters)
        logger.info(
            "{} of {} candidates passed filters; planning {} baskets",
            len(eligible),
            pool.source_song_count,
            sum(len(family.baskets) for family in families),
        )

        outcome = self._sampler.sample(
            eligible,
            families,
            resolution.song_count_target,
            rng,
            allow_duplicate_shows=resolution.basic_settings.duplicate_shows,
        )
        selected = list(outcome.selected)
        if not entire_pool and any(
            has_selection_split(resolved.settings) for resolved in resolution.filters
        ):
            shuffle_in_place(selected, rng)

        metadata = RunMetadata(
            seed=seed,
            target_count=resolution.song_count_target,
            final_count=len(selected),
            success=outcome.success,
            source_song_count=pool.source_song_count,
            eligible_song_count=len(eligible),
            basket_status=build_basket_status(outcome.baskets),
            loading_errors=pool.loading_errors,
            selected_route=resolution.selected_route,
            forced_instances=resolution.forced_instances,
            filter_statistics=statistics,
            song_source_map=[
                SongSourceEntry(
                    ann_song_id=candidate.song.ann_song_id,
                    source_id=candidate.source_id,
                    source_info=candidate.source_info,
                )
                for candidate in selected
            ],
            basic_settings=resolution.basic_settings,
        )
        if metadata.success:
            logger.info("Selected {} of {} songs", metadata.final_count, metadata.target_count)
        else:
            logger.warning(
                "Selected {} of {} songs with {} unmet baskets",
                metadata.final_count,
                metadata.target_count,
                sum(1 for status in metadata.basket_status if not status.meets_min),
            )
        return GenerationResult(songs=[candidate.song for candidate in selected], metadata=metadata)

"""Flatten a quiz configuration's node graph into the filters active for one run."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger
from pydantic import BaseModel

from ..app.models import (
    BasicSettings,
    BasicSettingsInstance,
    FilterInstance,
    GateNode,
    QuizConfiguration,
    RangeValue,
    RouteBranch,
    RouterNode,
    SelectionModifierNode,
    SongPercentage,
    SourceSelectorNode,
)
from .exceptions import InvalidConfiguration
from .filters import FilterDefinition, get_definition
from .rng import Rng, random_int, shuffled
from .types import ResolutionResult, ResolvedFilter

BASIC_SETTINGS_CATEGORY = "basic-settings"


def basic_settings_instances(config: QuizConfiguration) -> List[BasicSettingsInstance]:
    if config.basic_settings is None:
        return []
    if isinstance(config.basic_settings, BasicSettings):
        return [
            BasicSettingsInstance(
                instance_id=BASIC_SETTINGS_CATEGORY,
                category=BASIC_SETTINGS_CATEGORY,
                settings=config.basic_settings,
            )
        ]
    return list(config.basic_settings)


def select_route(router: Optional[RouterNode], rng: Rng) -> Optional[RouteBranch]:
    """Weighted pick among enabled routes; uniform when none carries a percentage."""
    if router is None:
        return None
    routes = [route for route in router.routes if route.enabled]
    if not routes:
        return None
    weighted = [(route, route.percentage or 0.0) for route in routes]
    total = sum(weight for _, weight in weighted)
    if total > 0:
        weighted = [(route, weight) for route, weight in weighted if weight > 0]
    else:
        weighted = [(route, 1.0) for route in routes]
        total = float(len(routes))
    draw = rng() * total
    cumulative = 0.0
    for route, weight in weighted:
        cumulative += weight
        if cumulative >= draw:
            return route
    return weighted[-1][0]


def resolve_chance(chance: Union[float, RangeValue], rng: Rng) -> float:
    if isinstance(chance, RangeValue):
        return float(random_int(rng, chance.min, chance.max))
    return float(chance)


def roll(chance: float, rng: Rng) -> bool:
    return rng() * 100 <= chance


class GraphResolver:
    """Resolves routers, gates, selection modifiers and source selectors in a fixed order."""

    def __init__(self, max_song_count: int = 200) -> None:
        self._max_song_count = max_song_count

    def resolve(self, config: QuizConfiguration, rng: Rng) -> ResolutionResult:
        if config.number_of_songs is None:
            raise InvalidConfiguration("numberOfSongs is required")
        basics = basic_settings_instances(config)
        parsed = self._parse_filters(config.filters)
        categories: Dict[str, Optional[str]] = {
            instance.instance_id: instance.category for instance in basics
        }
        categories.update({instance.instance_id: instance.category for instance in config.filters})
        self._validate_references(config, basics)

        route = select_route(config.router, rng)
        reachable = self._reachability(config.router, route)
        if route is not None:
            logger.info("Router selected route {} ({})", route.id, route.name or "unnamed")

        active: Dict[str, bool] = {
            instance_id: True for instance_id in categories if reachable(instance_id)
        }
        forced: List[str] = []

        for instance in [*basics, *config.filters]:
            if instance.instance_id in active and instance.execution_chance is not None:
                chance = resolve_chance(instance.execution_chance, rng)
                passed = roll(chance, rng)
                active[instance.instance_id] = passed
                logger.debug("{} rolled against {}%: {}", instance.instance_id, chance, passed)

        for node in config.nodes:
            if not isinstance(node, GateNode) or not reachable(node.instance_id):
                continue
            chance = resolve_chance(node.chance, rng)
            for target in node.targets:
                if target not in active:
                    continue
                passed = roll(chance, rng)
                active[target] = active[target] and passed
                logger.debug("Gate {} rolled {} against {}%: {}", node.instance_id, target, chance, passed)

        for category in config.required_categories:
            members = [
                instance_id for instance_id in active if categories.get(instance_id) == category
            ]
            if members and not any(active[member] for member in members):
                pick = members[random_int(rng, 0, len(members) - 1)]
                active[pick] = True
                forced.append(pick)
                logger.info("Forced {} to keep category {} covered", pick, category)

        for node in config.nodes:
            if isinstance(node, SelectionModifierNode) and reachable(node.instance_id):
                self._apply_modifier(node, active, forced, rng)

        basic_settings, chosen_basic = self._pick_basic_settings(basics, active, rng)
        song_count = self._resolve_song_count(config, rng)
        percentages = self._resolve_percentages(config, rng)

        selector_sources: Dict[str, List[str]] = {}
        for node in config.nodes:
            if isinstance(node, SourceSelectorNode) and reachable(node.instance_id):
                for target in node.targets:
                    selector_sources.setdefault(target, []).append(node.target_source_id)

        resolved: List[ResolvedFilter] = []
        for instance in config.filters:
            if not active.get(instance.instance_id):
                continue
            definition, settings = parsed[instance.instance_id]
            sources = list(instance.target_source_ids)
            if instance.target_source_id:
                sources.append(instance.target_source_id)
            sources.extend(selector_sources.get(instance.instance_id, []))
            resolved.append(
                ResolvedFilter(
                    instance_id=instance.instance_id,
                    definition=definition,
                    settings=settings,
                    target_source_ids=tuple(dict.fromkeys(sources)),
                    category=instance.category,
                )
            )

        logger.info(
            "Resolved {} of {} filters for {} songs",
            len(resolved),
            len(config.filters),
            song_count,
        )
        return ResolutionResult(
            filters=resolved,
            song_count_target=song_count,
            basic_settings=basic_settings,
            selected_route=route.id if route is not None else None,
            basic_settings_instance=chosen_basic,
            forced_instances=forced,
            source_percentages=percentages,
        )

    def _parse_filters(
        self, filters: Sequence[FilterInstance]
    ) -> Dict[str, Tuple[FilterDefinition, BaseModel]]:
        parsed: Dict[str, Tuple[FilterDefinition, BaseModel]] = {}
        for instance in filters:
            definition = get_definition(instance.definition_id)
            parsed[instance.instance_id] = (
                definition,
                definition.parse_settings(instance.settings, instance.instance_id),
            )
        return parsed

    def _validate_references(
        self, config: QuizConfiguration, basics: Sequence[BasicSettingsInstance]
    ) -> None:
        content_ids = [instance.instance_id for instance in basics]
        content_ids.extend(instance.instance_id for instance in config.filters)
        node_ids = [node.instance_id for node in config.nodes]
        every_id = content_ids + node_ids
        duplicates = sorted({item for item in every_id if every_id.count(item) > 1})
        if duplicates:
            raise InvalidConfiguration(f"duplicate instance ids: {', '.join(duplicates)}")
        known = set(every_id)
        filter_ids = {instance.instance_id for instance in config.filters}
        source_ids = set(config.source_node_ids())

        def _check(owner: str, targets: Sequence[str], allowed: set) -> None:
            missing = [target for target in targets if target not in allowed]
            if missing:
                raise InvalidConfiguration(
                    f"{owner} references unknown instances: {', '.join(missing)}"
                )

        if config.router is not None:
            for branch in config.router.routes:
                _check(f"route {branch.id}", branch.targets, known)
        for node in config.nodes:
            if isinstance(node, SourceSelectorNode):
                _check(node.instance_id, node.targets, filter_ids)
                if node.target_source_id not in source_ids:
                    raise InvalidConfiguration(
                        f"{node.instance_id} targets unknown source {node.target_source_id}"
                    )
            else:
                _check(node.instance_id, node.targets, set(content_ids))
        for instance in config.filters:
            explicit = list(instance.target_source_ids)
            if instance.target_source_id:
                explicit.append(instance.target_source_id)
            unknown = [source for source in explicit if source not in source_ids]
            if unknown:
                raise InvalidConfiguration(
                    f"{instance.instance_id} targets unknown sources: {', '.join(unknown)}"
                )

    @staticmethod
    def _reachability(
        router: Optional[RouterNode], route: Optional[RouteBranch]
    ) -> Callable[[str], bool]:
        if router is None or route is None:
            return lambda _instance_id: True
        branch_ids = {target for branch in router.routes for target in branch.targets}
        selected = set(route.targets)

        def _reachable(instance_id: str) -> bool:
            return instance_id not in branch_ids or instance_id in selected

        return _reachable

    def _apply_modifier(
        self,
        node: SelectionModifierNode,
        active: Dict[str, bool],
        forced: List[str],
        rng: Rng,
    ) -> None:
        targets = [target for target in node.targets if target in active]
        if isinstance(node.max_selection, RangeValue):
            maximum = random_int(rng, node.max_selection.min, node.max_selection.max)
        else:
            maximum = node.max_selection
        minimum = min(node.min_selection, maximum)
        passed = [target for target in targets if active[target]]
        if len(passed) > maximum:
            keep = set(shuffled(passed, rng)[:maximum])
            for target in passed:
                active[target] = target in keep
            logger.debug("Modifier {} kept {} of {} targets", node.instance_id, maximum, len(passed))
        elif len(passed) < minimum:
            failed = shuffled([target for target in targets if not active[target]], rng)
            for target in failed[: minimum - len(passed)]:
                active[target] = True
                forced.append(target)
            logger.debug("Modifier {} topped up to {} targets", node.instance_id, minimum)

    def _pick_basic_settings(
        self,
        basics: Sequence[BasicSettingsInstance],
        active: Dict[str, bool],
        rng: Rng,
    ) -> Tuple[BasicSettings, Optional[str]]:
        choices = [instance for instance in basics if active.get(instance.instance_id)]
        if not choices:
            return BasicSettings(), None
        chosen = choices[random_int(rng, 0, len(choices) - 1)]
        settings = chosen.settings
        if isinstance(settings.playback_speed, list) and settings.playback_speed:
            speeds = settings.playback_speed
            settings = settings.model_copy(
                update={"playback_speed": speeds[random_int(rng, 0, len(speeds) - 1)]}
            )
        return settings, chosen.instance_id

    def _resolve_song_count(self, config: QuizConfiguration, rng: Rng) -> int:
        requested = config.number_of_songs
        if isinstance(requested, RangeValue):
            count = random_int(rng, requested.min, requested.max)
        else:
            count = int(requested)  # type: ignore[arg-type]
        if count > self._max_song_count:
            logger.warning(
                "Requested {} songs; clamping to {}", count, self._max_song_count
            )
        return max(1, min(count, self._max_song_count))

    def _resolve_percentages(self, config: QuizConfiguration, rng: Rng) -> Dict[str, float]:
        percentages: Dict[str, float] = {}
        for node_id, source in zip(config.source_node_ids(), config.song_lists):
            share = source.song_percentage
            if share is None:
                continue
            if isinstance(share, SongPercentage):
                if share.random and share.min is not None and share.max is not None:
                    percentages[node_id] = float(random_int(rng, share.min, share.max))
                elif share.value is not None:
                    percentages[node_id] = float(share.value)
                continue
            percentages[node_id] = float(share)
        return percentages

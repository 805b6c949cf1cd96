"""Quota arithmetic and basket planning for resolved filters."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from loguru import logger

from ..app.models import RangeValue
from .types import Basket, BasketFamily, Candidate, ResolutionResult, SongPredicate

SONG_LIST_FAMILY = "song-lists"

QuotaValue = Union[float, RangeValue, None]


@dataclass(frozen=True)
class QuotaContext:
    target: int
    has_masterlist_source: bool = False


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (7.5 -> 8, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def count_or_percentage(value: Optional[float], value_mode: str, target: int) -> int:
    if value is None:
        return 0
    if value_mode == "percentage":
        result = round_half_up(float(value) / 100.0 * target)
    else:
        result = round_half_up(float(value))
    return max(0, min(result, target))


def range_from_settings(value: QuotaValue, value_mode: str, target: int) -> Tuple[int, int]:
    """Turn a static quota or a ``{min, max}`` range into clamped ``(min, max)``."""
    if value is None:
        return 0, 0
    if isinstance(value, RangeValue):
        low = count_or_percentage(value.min, value_mode, target)
        high = count_or_percentage(value.max, value_mode, target)
        if low > high:
            low, high = high, low
        return low, high
    count = count_or_percentage(value, value_mode, target)
    return count, count


def allocate_song_list_counts(percentages: Dict[str, float], target: int) -> Dict[str, int]:
    """Convert per-source percentages to counts whose sum matches the requested share."""
    counts = {
        node_id: max(0, round_half_up(pct / 100.0 * target))
        for node_id, pct in percentages.items()
    }
    desired = min(target, round_half_up(sum(percentages.values()) / 100.0 * target))
    order = list(counts)
    difference = desired - sum(counts.values())
    while difference != 0 and order:
        ranked = sorted(order, key=lambda node_id: (-counts[node_id], order.index(node_id)))
        if difference > 0:
            counts[ranked[0]] += 1
            difference -= 1
            continue
        adjustable = [node_id for node_id in ranked if counts[node_id] > 0]
        if not adjustable:
            break
        counts[adjustable[0]] -= 1
        difference += 1
    return counts


def _scoped(matcher: SongPredicate, scope: FrozenSet[str]) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return candidate.from_any(scope) and matcher(candidate)

    return _match


def _from_source(node_id: str) -> SongPredicate:
    def _match(candidate: Candidate) -> bool:
        return candidate.source_id == node_id or node_id in candidate.source_ids

    return _match


class BasketPlanner:
    """Expands resolved filters into basket families for the sampler."""

    def plan(
        self,
        resolution: ResolutionResult,
        *,
        entire_pool: bool = False,
        has_masterlist_source: bool = False,
    ) -> List[BasketFamily]:
        context = QuotaContext(
            target=resolution.song_count_target,
            has_masterlist_source=has_masterlist_source,
        )
        families: List[BasketFamily] = []
        if not entire_pool:
            for resolved in resolution.filters:
                planned = resolved.definition.plan_baskets(resolved.settings, context)
                scope = resolved.source_scope
                suffix = "+".join(resolved.target_source_ids) if scope else None
                baskets: List[Basket] = []
                for quota in planned:
                    if quota.max <= 0:
                        continue
                    baskets.append(
                        Basket(
                            id=quota.key if suffix is None else f"{quota.key}-{suffix}",
                            min=min(quota.min, quota.max),
                            max=quota.max,
                            matcher=quota.matcher if scope is None else _scoped(quota.matcher, scope),
                            family=resolved.instance_id,
                        )
                    )
                if baskets:
                    families.append(
                        BasketFamily(key=resolved.instance_id, baskets=baskets, scope=scope)
                    )
                    logger.debug(
                        "Planned {} baskets for {} ({})",
                        len(baskets),
                        resolved.instance_id,
                        resolved.definition_id,
                    )
        song_lists = self.plan_song_lists(resolution)
        if song_lists is not None:
            families.append(song_lists)
        return families

    def plan_song_lists(self, resolution: ResolutionResult) -> Optional[BasketFamily]:
        if not resolution.source_percentages:
            return None
        counts = allocate_song_list_counts(
            resolution.source_percentages, resolution.song_count_target
        )
        baskets = [
            Basket(
                id=f"songList-{node_id}",
                min=count,
                max=count,
                matcher=_from_source(node_id),
                family=SONG_LIST_FAMILY,
            )
            for node_id, count in counts.items()
            if count > 0
        ]
        if not baskets:
            return None
        return BasketFamily(
            key=SONG_LIST_FAMILY,
            baskets=baskets,
            scope=frozenset(resolution.source_percentages),
        )

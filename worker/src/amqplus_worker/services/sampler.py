"""Basket-constrained sampling over the eligible candidate pool."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from ..app.models import BasketStatus
from .rng import Rng, make_rng, shuffled
from .types import Basket, BasketFamily, Candidate, SamplingOutcome

DEFAULT_MAX_ATTEMPTS = 100


def build_basket_status(baskets: Sequence[Basket]) -> List[BasketStatus]:
    return [
        BasketStatus(
            id=basket.id,
            current=basket.current,
            min=basket.min,
            max=basket.max,
            meets_min=basket.meets_min,
        )
        for basket in baskets
    ]


@dataclass
class _Attempt:
    selected: List[int]
    current: np.ndarray

    def score(self, minimums: np.ndarray) -> Tuple[int, int, float]:
        """Baskets at minimum, then songs selected, then closeness of the unmet baskets."""
        met = self.current >= minimums
        safe = np.where(minimums > 0, minimums, 1)
        proximity = np.where(met, 1.0, np.where(minimums > 0, self.current / safe, 0.0))
        return int(met.sum()), len(self.selected), float(proximity.sum())


class BasketSampler:
    """Draws songs so basket minimums are met first, then fills the rest in seeded order.

    Each attempt visits the candidates in its own seeded shuffle. The minimum
    phase repeatedly picks the unmet basket with the fewest selectable
    candidates and draws matching songs until its minimum is reached, cycling
    until a full pass over the unmet baskets adds nothing. The fill phase then
    takes any selectable song until the target is reached, again cycling until
    a pass adds nothing. A song is selectable when it is not yet taken, matches
    at least one basket of every family that governs its source, keeps every
    basket it matches at or below its maximum, and passes the duplicate-show
    rule.

    Up to ``max_attempts`` attempts run on RNGs derived from the run RNG. The
    first attempt that meets every minimum wins; otherwise the best scoring
    attempt is kept.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._max_attempts = max(1, max_attempts)

    def sample(
        self,
        candidates: Sequence[Candidate],
        families: Sequence[BasketFamily],
        target: int,
        rng: Rng,
        *,
        allow_duplicate_shows: bool = True,
    ) -> SamplingOutcome:
        baskets = [basket for family in families for basket in family.baskets]
        matrix = self._membership(candidates, baskets)
        eligible = self._eligibility(candidates, families, matrix)
        minimums = np.array([basket.min for basket in baskets], dtype=np.int64)
        maximums = np.array([basket.max for basket in baskets], dtype=np.int64)

        best: Optional[_Attempt] = None
        best_score: Optional[Tuple[int, int, float]] = None
        for number in range(self._max_attempts):
            attempt_rng = make_rng(f"attempt-{number}-{rng()}")
            attempt = self._run_attempt(
                candidates,
                matrix,
                eligible,
                minimums,
                maximums,
                target,
                attempt_rng,
                allow_duplicate_shows,
            )
            score = attempt.score(minimums)
            if best_score is None or score > best_score:
                best, best_score = attempt, score
            if score[0] == len(baskets):
                logger.debug("All basket minimums met on attempt {}", number + 1)
                break

        assert best is not None
        for column, basket in enumerate(baskets):
            basket.current = int(best.current[column])
            if not basket.meets_min:
                logger.warning(
                    "Basket {} reached {} of its minimum {}", basket.id, basket.current, basket.min
                )

        return SamplingOutcome(
            selected=[candidates[index] for index in best.selected],
            baskets=baskets,
            target_count=target,
        )

    @staticmethod
    def _membership(candidates: Sequence[Candidate], baskets: Sequence[Basket]) -> np.ndarray:
        count = len(candidates)
        matrix = np.zeros((count, len(baskets)), dtype=bool)
        for column, basket in enumerate(baskets):
            matrix[:, column] = np.fromiter(
                (basket.matcher(candidate) for candidate in candidates), dtype=bool, count=count
            )
        return matrix

    @staticmethod
    def _eligibility(
        candidates: Sequence[Candidate],
        families: Sequence[BasketFamily],
        matrix: np.ndarray,
    ) -> np.ndarray:
        count = len(candidates)
        eligible = np.ones(count, dtype=bool)
        offset = 0
        for family in families:
            covered = np.fromiter(
                (family.covers(candidate) for candidate in candidates), dtype=bool, count=count
            )
            matched = matrix[:, offset : offset + len(family.baskets)].any(axis=1)
            eligible &= ~covered | matched
            offset += len(family.baskets)
        return eligible

    def _run_attempt(
        self,
        candidates: Sequence[Candidate],
        matrix: np.ndarray,
        eligible: np.ndarray,
        minimums: np.ndarray,
        maximums: np.ndarray,
        target: int,
        rng: Rng,
        allow_duplicate_shows: bool,
    ) -> _Attempt:
        count, width = matrix.shape
        current = np.zeros(width, dtype=np.int64)
        taken = np.zeros(count, dtype=bool)
        selected: List[int] = []
        shows: Dict[str, int] = {}
        order = shuffled(list(range(count)), rng)

        def _try_take(index: int) -> bool:
            if len(selected) >= target or taken[index] or not eligible[index]:
                return False
            row = matrix[index]
            if np.any(current[row] >= maximums[row]):
                return False
            show = candidates[index].show_key
            if show is not None and shows.get(show):
                if not allow_duplicate_shows:
                    return False
                seen = shows[show]
                if rng() < seen / (seen + 1):
                    return False
            taken[index] = True
            current[row] += 1
            selected.append(index)
            if show is not None:
                shows[show] = shows.get(show, 0) + 1
            return True

        def _scarcity() -> np.ndarray:
            full = current >= maximums
            fits = ~(matrix & full[np.newaxis, :]).any(axis=1)
            available = ~taken & eligible & fits
            return (matrix & available[:, np.newaxis]).sum(axis=0)

        progress = True
        while progress and len(selected) < target:
            progress = False
            processed = np.zeros(width, dtype=bool)
            while len(selected) < target:
                pending = np.flatnonzero(~processed & (current < minimums))
                if pending.size == 0:
                    break
                column = int(pending[np.argmin(_scarcity()[pending])])
                processed[column] = True
                for index in order:
                    if current[column] >= minimums[column] or len(selected) >= target:
                        break
                    if matrix[index, column] and _try_take(index):
                        progress = True

        progress = True
        while progress and len(selected) < target:
            progress = False
            for index in order:
                if len(selected) >= target:
                    break
                if _try_take(index):
                    progress = True

        return _Attempt(selected=selected, current=current)

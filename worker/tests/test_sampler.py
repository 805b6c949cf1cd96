from __future__ import annotations

from typing import Any, List

from amqplus_worker.app.models import Song
from amqplus_worker.services.rng import make_rng
from amqplus_worker.services.sampler import BasketSampler, build_basket_status
from amqplus_worker.services.types import Basket, BasketFamily, Candidate


def _pool(count: int, **fields: Any) -> List[Candidate]:
    return [
        Candidate(
            index=index,
            song=Song.model_validate({"annSongId": index, "malId": index, **fields}),
            source_id="list",
            source_info="list",
            source_ids=frozenset({"list"}),
        )
        for index in range(count)
    ]


def _basket(basket_id: str, low: int, high: int, members, family: str = "f") -> Basket:
    allowed = frozenset(members)
    return Basket(
        id=basket_id,
        min=low,
        max=high,
        matcher=lambda candidate: candidate.index in allowed,
        family=family,
    )


def test_minimums_are_met_before_free_fill() -> None:
    candidates = _pool(40)
    rare = _basket("rare", 3, 3, range(4))
    common = _basket("common", 0, 10, range(4, 40))
    family = BasketFamily(key="f", baskets=[rare, common])

    outcome = BasketSampler().sample(candidates, [family], 10, make_rng("mins"))

    assert len(outcome.selected) == 10
    assert rare.current == 3
    assert common.current == 7
    assert outcome.success


def test_family_membership_gates_selection() -> None:
    candidates = _pool(10)
    family = BasketFamily(key="f", baskets=[_basket("evens", 0, 10, range(0, 10, 2))])

    outcome = BasketSampler().sample(candidates, [family], 10, make_rng("family"))

    assert sorted(candidate.index for candidate in outcome.selected) == [0, 2, 4, 6, 8]
    assert not outcome.success


def test_scoped_family_leaves_other_sources_alone() -> None:
    candidates = _pool(6)
    family = BasketFamily(
        key="f", baskets=[_basket("none", 0, 5, [])], scope=frozenset({"elsewhere"})
    )
    outcome = BasketSampler().sample(candidates, [family], 6, make_rng("scope"))
    assert len(outcome.selected) == 6


def test_maximum_is_never_exceeded() -> None:
    candidates = _pool(30)
    capped = _basket("capped", 0, 2, range(30))
    outcome = BasketSampler().sample(
        candidates, [BasketFamily(key="f", baskets=[capped])], 10, make_rng("cap")
    )
    assert capped.current == 2
    assert len(outcome.selected) == 2


def test_unfillable_basket_is_reported() -> None:
    candidates = _pool(20)
    scarce = _basket("scarce", 5, 5, range(2), family="a")
    plenty = _basket("plenty", 5, 5, range(2, 20), family="a")
    outcome = BasketSampler().sample(
        candidates, [BasketFamily(key="a", baskets=[scarce, plenty])], 10, make_rng("unmet")
    )

    status = {entry.id: entry for entry in build_basket_status(outcome.baskets)}
    assert status["scarce"].current == 2
    assert not status["scarce"].meets_min
    assert status["plenty"].current == 5
    assert status["plenty"].meets_min
    assert len(outcome.selected) == 7
    assert not outcome.success


def test_song_is_credited_to_every_matching_basket() -> None:
    candidates = _pool(8)
    left = _basket("left", 0, 8, range(8), family="left")
    right = _basket("right", 0, 8, range(8), family="right")
    BasketSampler().sample(
        candidates,
        [BasketFamily(key="left", baskets=[left]), BasketFamily(key="right", baskets=[right])],
        4,
        make_rng("credit"),
    )
    assert left.current == 4
    assert right.current == 4


def test_duplicate_shows_can_be_forbidden() -> None:
    candidates = [
        Candidate(
            index=index,
            song=Song.model_validate({"annSongId": index, "malId": index % 3}),
            source_id="list",
            source_info="list",
        )
        for index in range(12)
    ]
    outcome = BasketSampler().sample(
        candidates, [], 12, make_rng("shows"), allow_duplicate_shows=False
    )
    assert len(outcome.selected) == 3
    assert {candidate.song.mal_id for candidate in outcome.selected} == {0, 1, 2}


def test_sampling_is_deterministic() -> None:
    candidates = _pool(50)
    family = BasketFamily(key="f", baskets=[_basket("some", 2, 6, range(10))])
    first = BasketSampler().sample(candidates, [family], 12, make_rng("same"))
    first_ids = [candidate.index for candidate in first.selected]
    second = BasketSampler().sample(candidates, [family], 12, make_rng("same"))
    assert first_ids == [candidate.index for candidate in second.selected]


def test_empty_pool_returns_nothing() -> None:
    outcome = BasketSampler().sample([], [], 5, make_rng("empty"))
    assert outcome.selected == []
    assert not outcome.success


def test_repeat_show_rerolls_do_not_starve_minimums() -> None:
    openings = [
        Candidate(
            index=index,
            song=Song.model_validate({"annSongId": index, "malId": 999, "songType": "Opening 1"}),
            source_id="list",
            source_info="list",
        )
        for index in range(3)
    ]
    endings = [
        Candidate(
            index=index,
            song=Song.model_validate({"annSongId": index, "malId": index, "songType": "Ending 1"}),
            source_id="list",
            source_info="list",
        )
        for index in range(3, 13)
    ]
    candidates = openings + endings

    for seed in range(50):
        op = _basket("op", 3, 3, range(3))
        ed = _basket("ed", 2, 2, range(3, 13))
        outcome = BasketSampler().sample(
            candidates,
            [BasketFamily(key="f", baskets=[op, ed])],
            5,
            make_rng(f"s{seed}"),
        )
        assert (op.current, ed.current) == (3, 2), seed
        assert len(outcome.selected) == 5, seed
        assert outcome.success, seed


def test_single_attempt_keeps_its_own_result() -> None:
    candidates = _pool(20)
    scarce = _basket("scarce", 5, 5, range(2))
    outcome = BasketSampler(max_attempts=1).sample(
        candidates, [BasketFamily(key="f", baskets=[scarce])], 5, make_rng("one")
    )
    assert scarce.current == 2
    assert len(outcome.selected) == 2
    assert not outcome.success

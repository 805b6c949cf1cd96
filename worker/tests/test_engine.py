from __future__ import annotations

from typing import Any, Dict, List

import pytest

from amqplus_worker.app.settings import Settings
from amqplus_worker.services.engine import QuizSongEngine
from amqplus_worker.services.exceptions import InvalidConfiguration
from amqplus_worker.services.rng import SEED_LENGTH
from amqplus_worker.services.sources import InMemorySongListStore
from amqplus_worker.services.types import RANDOM_MASTERLIST_SOURCE_ID

SONG_TYPES = ("Opening 1", "Ending 1", "Insert Song")


def _song(song_id: int, **fields: Any) -> Dict[str, Any]:
    return {
        "annSongId": song_id,
        "songName": f"Song {song_id}",
        "animeENName": f"Show {song_id}",
        "malId": song_id,
        "songType": SONG_TYPES[song_id % 3],
        "songDifficulty": (song_id * 7) % 100,
        "animeVintage": f"Spring {2000 + song_id % 20}",
        **fields,
    }


def _master(count: int = 90) -> List[Dict[str, Any]]:
    return [_song(song_id) for song_id in range(1, count + 1)]


def _engine(**store_kwargs: Any) -> QuizSongEngine:
    store_kwargs.setdefault("master", _master())
    return QuizSongEngine(Settings(), InMemorySongListStore(**store_kwargs))


def _config(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "seed": "engine-test",
        "numberOfSongs": 20,
        "songLists": [{"nodeId": "master", "mode": "masterlist"}],
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_single_song_without_filters() -> None:
    result = await _engine().generate(_config(numberOfSongs=1))
    assert len(result.songs) == 1
    assert result.metadata.success
    assert result.metadata.final_count == 1
    assert result.metadata.source_song_count == 90
    assert result.metadata.eligible_song_count == 90


@pytest.mark.asyncio
async def test_song_type_percentages_fill_their_baskets() -> None:
    config = _config(
        filters=[
            {
                "definitionId": "songs-and-types",
                "instanceId": "types",
                "settings": {
                    "valueMode": "percentage",
                    "types": {"openings": 50, "endings": 30, "inserts": 20},
                },
            }
        ]
    )
    result = await _engine().generate(config)
    status = {entry.id: entry for entry in result.metadata.basket_status}

    assert (status["songType-openings"].current, status["songType-endings"].current) == (10, 6)
    assert status["songType-inserts"].current == 4
    assert all(entry.meets_min for entry in result.metadata.basket_status)
    assert result.metadata.success
    openings = [song for song in result.songs if str(song.song_type).startswith("Opening")]
    assert len(openings) == 10


@pytest.mark.asyncio
async def test_unfillable_difficulty_range_is_reported() -> None:
    master = [_song(song_id, songDifficulty=90) for song_id in range(1, 41)]
    master += [_song(100 + song_id, songDifficulty=10) for song_id in range(2)]
    config = _config(
        numberOfSongs=10,
        filters=[
            {
                "definitionId": "song-difficulty",
                "instanceId": "difficulty",
                "settings": {
                    "viewMode": "advanced",
                    "ranges": [
                        {"from": 0, "to": 20, "value": 5},
                        {"from": 80, "to": 100, "value": 5},
                    ],
                },
            }
        ],
    )
    result = await _engine(master=master).generate(config)
    status = {entry.id: entry for entry in result.metadata.basket_status}

    assert status["difficulty-0-20"].current == 2
    assert not status["difficulty-0-20"].meets_min
    assert status["difficulty-80-100"].current == 5
    assert status["difficulty-80-100"].meets_min
    assert not result.metadata.success
    assert result.metadata.final_count == 7


@pytest.mark.asyncio
async def test_genre_filter_holds_for_every_song() -> None:
    genres = [["Action"], ["Action", "Horror"], ["Comedy"], ["Action", "Drama"]]
    master = [
        _song(song_id, sourceAnime={"genres": genres[song_id % 4]}) for song_id in range(1, 81)
    ]
    config = _config(
        filters=[
            {
                "definitionId": "genres",
                "instanceId": "genres",
                "settings": {"included": ["Action"], "excluded": ["Horror"]},
            }
        ]
    )
    result = await _engine(master=master).generate(config)

    assert result.songs
    for song in result.songs:
        names = set(song.source_anime.genres)
        assert "Action" in names
        assert "Horror" not in names
    assert result.metadata.eligible_song_count == 40
    assert result.metadata.filter_statistics[0].before == 80
    assert result.metadata.filter_statistics[0].after == 40


@pytest.mark.asyncio
async def test_runs_are_reproducible_for_a_seed() -> None:
    config = _config(
        numberOfSongs={"min": 5, "max": 15},
        filters=[
            {
                "definitionId": "song-difficulty",
                "instanceId": "difficulty",
                "settings": {"difficulties": {"hard": False}},
                "executionChance": 50,
            }
        ],
    )
    first = await _engine().generate(config)
    second = await _engine().generate(config)
    assert first.model_dump(by_alias=True) == second.model_dump(by_alias=True)


@pytest.mark.asyncio
async def test_missing_seed_is_generated_and_reported() -> None:
    config = _config()
    del config["seed"]
    result = await _engine().generate(config)
    assert len(result.metadata.seed) == SEED_LENGTH


@pytest.mark.asyncio
async def test_fatal_configuration_problems() -> None:
    engine = _engine()
    with pytest.raises(InvalidConfiguration):
        await engine.generate({"songLists": [{"mode": "masterlist"}]})
    with pytest.raises(InvalidConfiguration):
        await engine.generate({"numberOfSongs": 5, "songLists": []})
    with pytest.raises(InvalidConfiguration):
        await engine.generate({"numberOfSongs": "many", "songLists": [{"mode": "masterlist"}]})


@pytest.mark.asyncio
async def test_loading_errors_surface_without_failing_the_run() -> None:
    config = _config(
        songLists=[
            {"nodeId": "master", "mode": "masterlist"},
            {"nodeId": "saved", "mode": "saved-lists", "savedList": {"id": "gone", "name": "Gone"}},
        ]
    )
    result = await _engine().generate(config)
    assert result.metadata.final_count == 20
    assert [error.source for error in result.metadata.loading_errors] == ["Saved list: Gone"]


@pytest.mark.asyncio
async def test_entire_pool_mode_skips_filters() -> None:
    config = _config(
        numberOfSongs=10,
        songLists=[{"nodeId": "master", "mode": "masterlist", "useEntirePool": True}],
        filters=[
            {
                "definitionId": "genres",
                "instanceId": "genres",
                "settings": {"included": ["Nonexistent"]},
            }
        ],
    )
    result = await _engine().generate(config)
    assert result.metadata.final_count == 10
    assert result.metadata.filter_statistics == []


@pytest.mark.asyncio
async def test_song_list_percentages_split_sources() -> None:
    first = [_song(song_id) for song_id in range(1, 31)]
    second = [_song(song_id) for song_id in range(101, 131)]
    config = _config(
        numberOfSongs=10,
        songLists=[
            {"nodeId": "one", "mode": "saved-lists", "savedList": {"id": "1"}, "songPercentage": 30},
            {"nodeId": "two", "mode": "saved-lists", "savedList": {"id": "2"}, "songPercentage": 70},
        ],
    )
    result = await _engine(saved={"1": first, "2": second}).generate(config)
    sources = [entry.source_id for entry in result.metadata.song_source_map]
    assert sources.count("one") == 3
    assert sources.count("two") == 7
    assert result.metadata.success


@pytest.mark.asyncio
async def test_random_and_watched_songs_are_split() -> None:
    watched = [_song(song_id) for song_id in range(1, 21)]
    config = _config(
        numberOfSongs=10,
        songLists=[{"nodeId": "mine", "mode": "saved-lists", "savedList": {"id": "mine"}}],
        filters=[
            {
                "definitionId": "songs-and-types",
                "instanceId": "types",
                "settings": {"songSelection": {"random": 4, "watched": 6}},
            }
        ],
    )
    result = await _engine(saved={"mine": watched}).generate(config)
    sources = [entry.source_id for entry in result.metadata.song_source_map]
    assert sources.count(RANDOM_MASTERLIST_SOURCE_ID) == 4
    assert sources.count("mine") == 6
    assert result.metadata.success


@pytest.mark.asyncio
async def test_duplicate_shows_can_be_disabled() -> None:
    master = [_song(song_id, malId=song_id % 4) for song_id in range(1, 41)]
    config = _config(numberOfSongs=10, basicSettings={"duplicateShows": False})
    result = await _engine(master=master).generate(config)
    mal_ids = [song.mal_id for song in result.songs]
    assert len(mal_ids) == len(set(mal_ids)) == 4
    assert not result.metadata.success

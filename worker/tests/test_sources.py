from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List

import httpx
import pytest

from amqplus_worker.app.models import QuizConfiguration
from amqplus_worker.app.settings import Settings
from amqplus_worker.services.exceptions import SourceLoadError
from amqplus_worker.services.sources import (
    CandidatePoolBuilder,
    HttpSongListStore,
    InMemorySongListStore,
)
from amqplus_worker.services.types import RANDOM_MASTERLIST_SOURCE_ID


def _songs(*ids: int) -> List[Dict[str, Any]]:
    return [{"annSongId": song_id, "songName": f"Song {song_id}"} for song_id in ids]


def _config(*song_lists: Dict[str, Any]) -> QuizConfiguration:
    return QuizConfiguration.model_validate({"numberOfSongs": 5, "songLists": list(song_lists)})


def _saved(node_id: str, list_id: str) -> Dict[str, Any]:
    return {"nodeId": node_id, "mode": "saved-lists", "savedList": {"id": list_id, "name": list_id}}


class SlowStore(InMemorySongListStore):
    async def load_saved_list(self, list_id: str):
        await asyncio.sleep(1)
        return await super().load_saved_list(list_id)


@pytest.mark.asyncio
async def test_pool_deduplicates_and_tracks_sources() -> None:
    store = InMemorySongListStore(saved={"one": _songs(1, 2), "two": _songs(2, 3)})
    pool = await CandidatePoolBuilder(store).build(_config(_saved("a", "one"), _saved("b", "two")))

    assert pool.source_song_count == 3
    assert [candidate.song.ann_song_id for candidate in pool.candidates] == [1, 2, 3]
    shared = pool.candidates[1]
    assert shared.source_id == "a"
    assert shared.source_ids == frozenset({"a", "b"})
    assert shared.source_info == "Saved list: one"
    assert pool.loading_errors == []


@pytest.mark.asyncio
async def test_failed_source_is_recorded_and_skipped() -> None:
    store = InMemorySongListStore(saved={"one": _songs(1, 2)})
    pool = await CandidatePoolBuilder(store).build(_config(_saved("a", "one"), _saved("b", "missing")))

    assert pool.source_song_count == 2
    assert len(pool.loading_errors) == 1
    error = pool.loading_errors[0]
    assert error.node_id == "b"
    assert error.source == "Saved list: missing"
    assert "not found" in error.error


@pytest.mark.asyncio
async def test_slow_source_times_out() -> None:
    store = SlowStore(master=_songs(1), saved={"one": _songs(2)})
    builder = CandidatePoolBuilder(store, timeout_seconds=0.05)
    pool = await builder.build(
        _config({"nodeId": "m", "mode": "masterlist"}, _saved("b", "one"))
    )
    assert [candidate.song.ann_song_id for candidate in pool.candidates] == [1]
    assert "timed out" in pool.loading_errors[0].error


@pytest.mark.asyncio
async def test_random_masterlist_source_adds_unseen_songs() -> None:
    store = InMemorySongListStore(master=_songs(1, 2, 3, 4), saved={"one": _songs(2, 3)})
    pool = await CandidatePoolBuilder(store).build(_config(_saved("a", "one")), include_random=True)

    by_id = {candidate.song.ann_song_id: candidate for candidate in pool.candidates}
    assert set(by_id) == {1, 2, 3, 4}
    assert by_id[2].source_type == "watched"
    assert by_id[1].source_type == "random"
    assert by_id[1].source_id == RANDOM_MASTERLIST_SOURCE_ID


@pytest.mark.asyncio
async def test_random_masterlist_is_not_added_next_to_a_masterlist_source() -> None:
    store = InMemorySongListStore(master=_songs(1, 2))
    pool = await CandidatePoolBuilder(store).build(
        _config({"nodeId": "m", "mode": "masterlist"}), include_random=True
    )
    assert {candidate.source_type for candidate in pool.candidates} == {"watched"}
    assert pool.source_song_count == 2


@pytest.mark.asyncio
async def test_malformed_songs_are_skipped() -> None:
    rows = _songs(1) + [{"annSongId": 2, "songDifficulty": 150}]
    store = InMemorySongListStore(saved={"one": rows})
    pool = await CandidatePoolBuilder(store).build(_config(_saved("a", "one")))
    assert [candidate.song.ann_song_id for candidate in pool.candidates] == [1]


@pytest.mark.asyncio
async def test_user_list_without_username_is_a_loading_error() -> None:
    store = InMemorySongListStore()
    pool = await CandidatePoolBuilder(store).build(
        _config({"nodeId": "u", "mode": "user-lists", "userListImport": {"platform": "anilist"}})
    )
    assert pool.candidates == []
    assert pool.loading_errors[0].mode == "user-lists"


@pytest.mark.asyncio
async def test_http_store_fetches_saved_and_user_lists() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/saved/42":
            return httpx.Response(200, json={"songs": _songs(1, 2)})
        if request.url.path == "/users/anilist/someone":
            return httpx.Response(200, json=_songs(3))
        return httpx.Response(404)

    settings = Settings(
        saved_list_base_url="http://lists.test/saved/",
        user_list_base_url="http://lists.test/users",
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        store = HttpSongListStore(settings, client=client)
        saved = await store.load_saved_list("42")
        user = await store.load_user_list(
            "anilist", "someone", {"completed": True, "watching": True, "dropped": False}
        )
        with pytest.raises(SourceLoadError) as excinfo:
            await store.load_saved_list("404")

    assert [row["annSongId"] for row in saved] == [1, 2]
    assert [row["annSongId"] for row in user] == [3]
    assert seen[1].url.params["lists"] == "completed,watching"
    assert "HTTP 404" in excinfo.value.message


@pytest.mark.asyncio
async def test_http_store_rejects_unexpected_payloads() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": []})

    settings = Settings(saved_list_base_url="http://lists.test/saved")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        store = HttpSongListStore(settings, client=client)
        with pytest.raises(SourceLoadError):
            await store.load_saved_list("1")


@pytest.mark.asyncio
async def test_http_store_without_base_url_fails_cleanly() -> None:
    store = HttpSongListStore(Settings(saved_list_base_url=None))
    with pytest.raises(SourceLoadError):
        await store.load_saved_list("1")


@pytest.mark.asyncio
async def test_master_list_is_read_from_disk_once(tmp_path: Path) -> None:
    path = tmp_path / "master.json"
    path.write_text(json.dumps(_songs(1, 2, 3)), encoding="utf-8")
    store = HttpSongListStore(Settings(master_list_path=path))

    first = await store.load_master_list()
    path.write_text("[]", encoding="utf-8")
    second = await store.load_master_list()
    assert len(first) == 3
    assert second is first


@pytest.mark.asyncio
async def test_undecodable_master_list_is_a_loading_error(tmp_path: Path) -> None:
    path = tmp_path / "master.json"
    path.write_bytes(b'[{"annSongId": 1, "songName": "\xff\xfe"}]')
    store = HttpSongListStore(Settings(master_list_path=path))

    pool = await CandidatePoolBuilder(store).build(_config({"nodeId": "m", "mode": "masterlist"}))

    assert pool.candidates == []
    assert len(pool.loading_errors) == 1
    assert pool.loading_errors[0].node_id == "m"
    assert "could not read" in pool.loading_errors[0].error


@pytest.mark.asyncio
async def test_missing_master_list_file_is_a_source_error(tmp_path: Path) -> None:
    store = HttpSongListStore(Settings(master_list_path=tmp_path / "absent.json"))
    with pytest.raises(SourceLoadError):
        await store.load_master_list()

"""Song-list stores and the candidate pool builder."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import httpx
from loguru import logger
from pydantic import ValidationError

from ..app.models import LoadingError, QuizConfiguration, Song, SongListSource
from ..app.settings import Settings
from .exceptions import SourceLoadError
from .types import RANDOM_MASTERLIST_SOURCE_ID, Candidate, CandidatePool

MASTER_LIST_LABEL = "Master list"
RANDOM_SOURCE_LABEL = "Random (master list)"

SongRows = List[Dict[str, Any]]


class SongListStore(Protocol):
    async def load_master_list(self) -> SongRows: ...

    async def load_saved_list(self, list_id: str) -> SongRows: ...

    async def load_user_list(
        self, platform: str, username: str, selected_lists: Mapping[str, bool]
    ) -> SongRows: ...


def song_rows(payload: Any, label: str) -> SongRows:
    """Accept either a bare JSON array or an object wrapping it under ``songs``."""
    if isinstance(payload, dict):
        payload = payload.get("songs")
    if not isinstance(payload, list):
        raise SourceLoadError(label, "expected a list of songs")
    return [row for row in payload if isinstance(row, dict)]


class HttpSongListStore:
    """Loads the master list from disk and saved/user lists over HTTP."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._client = client
        self._master_cache: Optional[SongRows] = None
        self._master_lock = asyncio.Lock()

    async def load_master_list(self) -> SongRows:
        path = self._settings.master_list_path
        if path is None:
            raise SourceLoadError(MASTER_LIST_LABEL, "no master list configured")
        async with self._master_lock:
            if self._master_cache is None:
                try:
                    text = await asyncio.to_thread(path.read_text, encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    raise SourceLoadError(MASTER_LIST_LABEL, f"could not read {path}: {exc}") from exc
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError as exc:
                    raise SourceLoadError(MASTER_LIST_LABEL, f"invalid JSON in {path}: {exc}") from exc
                self._master_cache = song_rows(payload, MASTER_LIST_LABEL)
                logger.info("Loaded {} master list songs from {}", len(self._master_cache), path)
        return self._master_cache

    async def load_saved_list(self, list_id: str) -> SongRows:
        label = f"Saved list: {list_id}"
        base = self._settings.saved_list_base_url
        if not base:
            raise SourceLoadError(label, "no saved list store configured")
        payload = await self._get_json(f"{base}/{list_id}", label)
        return song_rows(payload, label)

    async def load_user_list(
        self, platform: str, username: str, selected_lists: Mapping[str, bool]
    ) -> SongRows:
        label = f"User list: {username}"
        base = self._settings.user_list_base_url
        if not base:
            raise SourceLoadError(label, "no list import service configured")
        statuses = [status for status, enabled in selected_lists.items() if enabled]
        params = {"lists": ",".join(statuses)} if statuses else None
        payload = await self._get_json(f"{base}/{platform}/{username}", label, params)
        return song_rows(payload, label)

    async def _get_json(
        self, url: str, label: str, params: Optional[Dict[str, str]] = None
    ) -> Any:
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params)
            else:
                async with httpx.AsyncClient(
                    timeout=self._settings.source_timeout_seconds
                ) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise SourceLoadError(
                label, f"HTTP {exc.response.status_code} from {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceLoadError(label, f"request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise SourceLoadError(label, f"invalid JSON from {url}") from exc


class InMemorySongListStore:
    """Store backed by plain dictionaries; used for previews and tests."""

    def __init__(
        self,
        master: Optional[SongRows] = None,
        saved: Optional[Mapping[str, SongRows]] = None,
        users: Optional[Mapping[Tuple[str, str], SongRows]] = None,
    ) -> None:
        self._master = master
        self._saved = dict(saved or {})
        self._users = {
            (platform.lower(), username.lower()): rows
            for (platform, username), rows in (users or {}).items()
        }

    async def load_master_list(self) -> SongRows:
        if self._master is None:
            raise SourceLoadError(MASTER_LIST_LABEL, "no master list configured")
        return self._master

    async def load_saved_list(self, list_id: str) -> SongRows:
        try:
            return self._saved[list_id]
        except KeyError:
            raise SourceLoadError(f"Saved list: {list_id}", "saved list not found") from None

    async def load_user_list(
        self, platform: str, username: str, selected_lists: Mapping[str, bool]
    ) -> SongRows:
        try:
            return self._users[(platform.lower(), username.lower())]
        except KeyError:
            raise SourceLoadError(f"User list: {username}", "user list not found") from None


class CandidatePoolBuilder:
    """Loads every configured source and merges them into one deduplicated pool."""

    def __init__(self, store: SongListStore, timeout_seconds: float = 10.0) -> None:
        self._store = store
        self._timeout = timeout_seconds

    async def build(
        self, config: QuizConfiguration, *, include_random: bool = False
    ) -> CandidatePool:
        node_ids = config.source_node_ids()
        loaded = await asyncio.gather(
            *(
                self._load_source(node_id, source)
                for node_id, source in zip(node_ids, config.song_lists)
            )
        )
        rows: List[Dict[str, Any]] = []
        positions: Dict[int, int] = {}
        errors: List[LoadingError] = []
        for node_id, source, (songs, error) in zip(node_ids, config.song_lists, loaded):
            if error is not None:
                errors.append(error)
                continue
            self._merge(rows, positions, songs, node_id, source.describe(), "watched")

        has_masterlist = any(source.mode == "masterlist" for source in config.song_lists)
        if include_random and not has_masterlist:
            songs, error = await self._load_random_master()
            if error is not None:
                errors.append(error)
            else:
                fresh = [
                    song
                    for song in songs
                    if song.ann_song_id is None or song.ann_song_id not in positions
                ]
                self._merge(
                    rows,
                    positions,
                    fresh,
                    RANDOM_MASTERLIST_SOURCE_ID,
                    RANDOM_SOURCE_LABEL,
                    "random",
                )

        candidates = [
            Candidate(
                index=index,
                song=row["song"],
                source_id=row["source_id"],
                source_info=row["source_info"],
                source_ids=frozenset(row["source_ids"]),
                source_type=row["source_type"],
            )
            for index, row in enumerate(rows)
        ]
        logger.info(
            "Candidate pool holds {} songs from {} sources ({} failed)",
            len(candidates),
            len(config.song_lists),
            len(errors),
        )
        return CandidatePool(candidates=candidates, loading_errors=errors, source_ids=node_ids)

    @staticmethod
    def _merge(
        rows: List[Dict[str, Any]],
        positions: Dict[int, int],
        songs: Sequence[Song],
        node_id: str,
        label: str,
        source_type: str,
    ) -> None:
        for song in songs:
            if song.ann_song_id is not None and song.ann_song_id in positions:
                rows[positions[song.ann_song_id]]["source_ids"].add(node_id)
                continue
            if song.ann_song_id is not None:
                positions[song.ann_song_id] = len(rows)
            rows.append(
                {
                    "song": song,
                    "source_id": node_id,
                    "source_info": label,
                    "source_ids": {node_id},
                    "source_type": source_type,
                }
            )

    async def _load_source(
        self, node_id: str, source: SongListSource
    ) -> Tuple[List[Song], Optional[LoadingError]]:
        label = source.describe()
        try:
            raw = await asyncio.wait_for(self._request(source, label), timeout=self._timeout)
        except asyncio.TimeoutError:
            message = f"timed out after {self._timeout:g}s"
        except SourceLoadError as exc:
            message = exc.message
        else:
            return self._parse(raw, label), None
        logger.warning("Could not load {}: {}", label, message)
        return [], LoadingError(source=label, error=message, node_id=node_id, mode=source.mode)

    async def _load_random_master(self) -> Tuple[List[Song], Optional[LoadingError]]:
        try:
            raw = await asyncio.wait_for(self._store.load_master_list(), timeout=self._timeout)
        except asyncio.TimeoutError:
            message = f"timed out after {self._timeout:g}s"
        except SourceLoadError as exc:
            message = exc.message
        else:
            return self._parse(raw, RANDOM_SOURCE_LABEL), None
        logger.warning("Could not load random songs from the master list: {}", message)
        return [], LoadingError(
            source=RANDOM_SOURCE_LABEL,
            error=message,
            node_id=RANDOM_MASTERLIST_SOURCE_ID,
            mode="masterlist",
        )

    async def _request(self, source: SongListSource, label: str) -> SongRows:
        if source.mode == "masterlist":
            return await self._store.load_master_list()
        if source.mode == "saved-lists":
            list_id = source.saved_list_id
            if not list_id:
                raise SourceLoadError(label, "no saved list selected")
            return await self._store.load_saved_list(list_id)
        selection = source.user_list_import
        if selection is None or not selection.username:
            raise SourceLoadError(label, "no username to import")
        return await self._store.load_user_list(
            selection.platform, selection.username, selection.selected_lists
        )

    @staticmethod
    def _parse(rows: SongRows, label: str) -> List[Song]:
        songs: List[Song] = []
        skipped = 0
        for row in rows:
            try:
                songs.append(Song.model_validate(row))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.warning("Skipped {} malformed songs from {}", skipped, label)
        return songs

from __future__ import annotations

from typing import cast

from fastapi import APIRouter, HTTPException, Request
from loguru import logger

from ..services.engine import QuizSongEngine
from ..services.exceptions import InvalidConfiguration, ResolutionFailure
from ..services.filters import FILTER_REGISTRY
from .models import GenerationResult, QuizConfiguration
from .settings import Settings

router = APIRouter()


def get_engine(request: Request) -> QuizSongEngine:
    return cast(QuizSongEngine, request.app.state.engine)


@router.get("/health")
async def health(request: Request) -> dict[str, object]:
    settings = cast(Settings, request.app.state.settings)
    return {
        "status": "ok",
        "registeredFilters": sorted(FILTER_REGISTRY),
        "masterListConfigured": settings.master_list_path is not None,
        "savedListStoreConfigured": bool(settings.saved_list_base_url),
        "userListStoreConfigured": bool(settings.user_list_base_url),
        "maxSongCount": settings.max_song_count,
    }


@router.post("/simulate", response_model=GenerationResult)
async def simulate(payload: QuizConfiguration, request: Request) -> GenerationResult:
    engine = get_engine(request)
    try:
        return await engine.generate(payload)
    except InvalidConfiguration as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ResolutionFailure as exc:
        logger.exception("Quiz simulation failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc

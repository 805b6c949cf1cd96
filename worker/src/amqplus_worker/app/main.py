from __future__ import annotations

import sys
from typing import Optional

from fastapi import FastAPI
from loguru import logger

from ..services.engine import QuizSongEngine
from ..services.sources import HttpSongListStore, SongListStore
from .routes import router
from .settings import Settings, get_settings


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


def create_app(
    settings: Optional[Settings] = None, store: Optional[SongListStore] = None
) -> FastAPI:
    """Create and configure FastAPI instance."""
    settings = settings or get_settings()
    configure_logging(settings)
    store = store or HttpSongListStore(settings)
    engine = QuizSongEngine(settings, store)
    app = FastAPI(title="AMQ+ Quiz Worker", version="0.1.0")
    app.state.settings = settings
    app.state.store = store
    app.state.engine = engine
    app.include_router(router)
    logger.info(
        "Quiz worker ready (master list: {})",
        settings.master_list_path or "not configured",
    )
    return app


app = create_app()

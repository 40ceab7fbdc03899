# FILE: backend/fileconvert/core/lifespan.py
# LIFESPAN
# 1. Builds the dispatcher and history store from app.state.settings.
# 2. Components already placed on app.state (tests, embedding apps) are left alone.

from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI
import logging

from .db import build_history_store
from ..services.conversion_service import build_dispatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("--- [Lifespan] Application startup sequence initiated. ---")
    settings = app.state.settings

    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

    owns_dispatcher = getattr(app.state, "dispatcher", None) is None
    if owns_dispatcher:
        app.state.dispatcher = build_dispatcher(settings)

    mongo_client = None
    if getattr(app.state, "history_store", None) is None:
        app.state.history_store, mongo_client = build_history_store(settings)

    logger.info("--- [Lifespan] All resources initialized. Application is ready. ---")

    yield

    logger.info("--- [Lifespan] Application shutdown sequence initiated. ---")
    if owns_dispatcher:
        app.state.dispatcher.close()
    if mongo_client is not None:
        mongo_client.close()
    logger.info("--- [Lifespan] Shutdown complete. ---")

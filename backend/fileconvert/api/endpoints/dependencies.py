# FILE: backend/fileconvert/api/endpoints/dependencies.py
# Components live on app.state (built in lifespan); endpoints pull them from here.

from fastapi import HTTPException, Request

from ...core.config import Settings
from ...services.conversion_service import ConversionDispatcher
from ...services.history_service import ConversionHistoryStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> ConversionDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=500, detail="Conversion dispatcher not initialized.")
    return dispatcher


def get_history_store(request: Request) -> ConversionHistoryStore:
    store = getattr(request.app.state, "history_store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Conversion history store not initialized.")
    return store

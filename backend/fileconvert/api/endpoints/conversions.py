# FILE: backend/fileconvert/api/endpoints/conversions.py
# CONVERSION HISTORY API
# 1. Path params are parsed by hand so bad values give 400 {message}, not 422.
# 2. DELETE is idempotent: 204 whether or not the record existed.

from typing import Any, List

from fastapi import APIRouter, Body, Depends, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ...models.conversion import ConversionRecord, ConversionRecordCreate
from ...services.history_service import ConversionHistoryStore
from .dependencies import get_history_store

router = APIRouter(tags=["Conversion History"])


def _parse_int(value: str) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@router.get("", response_model=List[ConversionRecord])
def list_conversions(history: ConversionHistoryStore = Depends(get_history_store)):
    """All records, newest first."""
    return history.list()


@router.get("/recent/{days}", response_model=List[ConversionRecord])
def list_recent_conversions(days: str, history: ConversionHistoryStore = Depends(get_history_store)):
    parsed = _parse_int(days)
    if parsed is None or parsed < 0:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Invalid days parameter", "error": "ValidationError"},
        )
    return history.list_since(parsed)


@router.post("", response_model=ConversionRecord, status_code=status.HTTP_201_CREATED)
def create_conversion(payload: Any = Body(...), history: ConversionHistoryStore = Depends(get_history_store)):
    try:
        data = ConversionRecordCreate.model_validate(payload)
    except ValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "message": "Invalid conversion data",
                "error": "ValidationError",
                "errors": e.errors(include_url=False, include_context=False, include_input=False),
            },
        )
    return history.create(data)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversion(record_id: str, history: ConversionHistoryStore = Depends(get_history_store)):
    parsed = _parse_int(record_id)
    if parsed is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Invalid conversion ID", "error": "ValidationError"},
        )
    history.delete(parsed)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

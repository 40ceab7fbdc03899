# FILE: backend/fileconvert/api/endpoints/convert.py
# CONVERSION API
# 1. POST /convert streams the converted file back as an attachment.
# 2. Validation failures (400) are not recorded; execution outcomes are, when RECORD_HISTORY is on.

import asyncio
import json
import os
from typing import Optional
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from ...core.config import Settings
from ...core.exceptions import ConversionError
from ...models.conversion import (
    ConversionOptions,
    ConversionRecordCreate,
    ConversionRequest,
    InputFile,
)
from ...services.conversion_service import ConversionDispatcher
from ...services.history_service import ConversionHistoryStore
from .dependencies import get_dispatcher, get_history_store, get_settings

router = APIRouter(tags=["Conversion"])
logger = structlog.get_logger(__name__)


def _error(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    content = {"message": message}
    if error:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content)


def _upload_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


def content_disposition(filename: str) -> str:
    safe = filename.replace('"', "").replace("\\", "")
    ascii_name = safe.encode("ascii", "ignore").decode("ascii") or "converted"
    if ascii_name == safe:
        return f'attachment; filename="{safe}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(safe)}"


async def _record(history: ConversionHistoryStore, input_file: InputFile, target_format: str, outcome: str) -> None:
    record = ConversionRecordCreate(
        file_name=input_file.filename,
        original_format=input_file.extension or "unknown",
        target_format=target_format,
        file_size=input_file.size,
        status=outcome,
    )
    try:
        await asyncio.to_thread(history.create, record)
    except Exception as e:
        logger.error("history.record_failed", file_name=input_file.filename, error=str(e))


@router.post("/convert")
async def convert_file(
    file: Optional[UploadFile] = File(None),
    conversionType: Optional[str] = Form(None),
    targetFormat: Optional[str] = Form(None),
    options: Optional[str] = Form(None),
    dispatcher: ConversionDispatcher = Depends(get_dispatcher),
    history: ConversionHistoryStore = Depends(get_history_store),
    settings: Settings = Depends(get_settings),
):
    """Converts the uploaded file and returns it as a download."""
    if file is None:
        return _error(status.HTTP_400_BAD_REQUEST, "No file uploaded.")
    if not conversionType or not targetFormat:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing conversionType or targetFormat in request body.")

    try:
        parsed_options = ConversionOptions.model_validate(json.loads(options) if options else {})
    except (ValueError, ValidationError) as e:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid conversion options.", str(e))

    size = _upload_size(file)
    if size > settings.MAX_UPLOAD_MB * 1024 * 1024:
        return _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            f"Upload exceeds {settings.MAX_UPLOAD_MB} MB.",
            "FileTooLarge",
        )

    input_file = InputFile(
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        size=size,
        stream=file.file,
    )
    conversion = ConversionRequest(
        input_file=input_file,
        conversion_type=conversionType,
        target_format=targetFormat,
        options=parsed_options,
    )

    try:
        result = await dispatcher.convert(conversion)
    except ConversionError as e:
        if e.status_code >= 500 and settings.RECORD_HISTORY:
            await _record(history, input_file, targetFormat, "failed")
        raise

    if settings.RECORD_HISTORY:
        await _record(history, input_file, targetFormat, "completed")

    return Response(
        content=result.content,
        media_type=result.mime_type,
        headers={"Content-Disposition": content_disposition(result.filename)},
    )


@router.get("/health")
async def health_check(dispatcher: ConversionDispatcher = Depends(get_dispatcher)):
    """Probes the active conversion backend."""
    health = await dispatcher.check_health()
    code = status.HTTP_200_OK if health.get("status") == "active" else status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=code, content=health)


@router.get("/formats")
def supported_formats(dispatcher: ConversionDispatcher = Depends(get_dispatcher)):
    """Lists accepted input extensions and output formats per conversion type."""
    return dispatcher.supported_formats()

# FILE: backend/fileconvert/models/conversion.py
# CONVERSION MODELS
# 1. Request/Result are ephemeral dataclasses; Record is the persisted pydantic model.
# 2. JSON uses camelCase (fileName, createdAt); Python code uses snake_case.

import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import BinaryIO, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.exceptions import EmptyResultError


class ConversionType(str, Enum):
    WORD_TO_PDF = "word-to-pdf"
    PDF_TO_WORD = "pdf-to-word"
    PDF_TO_TEXT = "pdf-to-text"
    TEXT_TO_PDF = "text-to-pdf"
    IMAGE_TO_PDF = "image-to-pdf"
    OCR_EXTRACT = "ocr-extract"


class TargetFormat(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"


MIME_TYPES = {
    TargetFormat.PDF: "application/pdf",
    TargetFormat.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    TargetFormat.TXT: "text/plain",
}


class ConversionOptions(BaseModel):
    """Engine-specific knobs. Unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")

    quality: Optional[int] = Field(default=None, ge=1, le=100)
    language: Optional[str] = None
    resize: Optional[str] = None
    grayscale: Optional[bool] = None

    @field_validator("resize", mode="before")
    @classmethod
    def normalize_resize(cls, v):
        if v is None:
            return v
        value = str(v).lower().strip()
        parts = value.split("x")
        if len(parts) > 2 or not all(p.isdigit() and int(p) > 0 for p in parts):
            raise ValueError("resize must be 'WIDTHxHEIGHT' or a single positive integer")
        return value

    def resize_box(self) -> Optional[tuple[int, int]]:
        if not self.resize:
            return None
        parts = [int(p) for p in self.resize.split("x")]
        if len(parts) == 1:
            return parts[0], parts[0]
        return parts[0], parts[1]


@dataclass
class InputFile:
    filename: str
    content_type: str
    size: int
    stream: BinaryIO

    @property
    def extension(self) -> str:
        name = os.path.basename(self.filename)
        return name.rsplit(".", 1)[1].lower() if "." in name else ""


@dataclass
class ConversionRequest:
    input_file: InputFile
    conversion_type: str
    target_format: str
    options: ConversionOptions = field(default_factory=ConversionOptions)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class ConversionResult:
    content: bytes
    mime_type: str
    filename: str

    def __post_init__(self):
        if not self.content:
            raise EmptyResultError()

    @property
    def size(self) -> int:
        return len(self.content)


def derive_output_filename(original_name: str, conversion_type: ConversionType, target: TargetFormat) -> str:
    stem = os.path.splitext(os.path.basename(original_name))[0] or "file"
    if conversion_type == ConversionType.OCR_EXTRACT and target == TargetFormat.TXT:
        return f"{stem}_extracted.txt"
    return f"{stem}_converted.{target.value}"


# --- Persistent history record ---

class ConversionRecordBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_name: str = Field(..., min_length=1)
    original_format: str = Field(..., min_length=1)
    target_format: str = Field(..., min_length=1)
    file_size: int = Field(..., ge=0)
    status: Literal["completed", "failed"] = "completed"


class ConversionRecordCreate(ConversionRecordBase):
    pass


class ConversionRecord(ConversionRecordBase):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

# FILE: backend/fileconvert/services/format_validator.py
# Extension allow-lists per conversion type. Runs before anything touches disk or network.

import os
from typing import AbstractSet, Dict, FrozenSet

from ..core.exceptions import UnsupportedConversionType, UnsupportedFileType
from ..models.conversion import ConversionType

ALLOWED_EXTENSIONS: Dict[ConversionType, FrozenSet[str]] = {
    ConversionType.WORD_TO_PDF: frozenset({"doc", "docx", "odt"}),
    ConversionType.PDF_TO_WORD: frozenset({"pdf"}),
    ConversionType.PDF_TO_TEXT: frozenset({"pdf"}),
    ConversionType.IMAGE_TO_PDF: frozenset({"jpg", "jpeg", "png", "gif", "bmp", "tiff"}),
    ConversionType.OCR_EXTRACT: frozenset({"png", "jpg", "jpeg", "bmp"}),
    ConversionType.TEXT_TO_PDF: frozenset({"txt"}),
}


def file_extension(filename: str) -> str:
    """Lower-cased text after the last '.', or '' when there is none."""
    name = os.path.basename(filename or "")
    return name.rsplit(".", 1)[1].lower() if "." in name else ""


def allowed_extensions_for(conversion_type: str) -> FrozenSet[str]:
    try:
        return ALLOWED_EXTENSIONS[ConversionType(conversion_type)]
    except ValueError:
        raise UnsupportedConversionType(f"Unsupported conversion type: {conversion_type}")


def validate(filename: str, allowed_extensions: AbstractSet[str]) -> None:
    ext = file_extension(filename)
    if ext not in allowed_extensions:
        raise UnsupportedFileType(ext, allowed_extensions)

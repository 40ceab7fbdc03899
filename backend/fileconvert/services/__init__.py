# FILE: backend/fileconvert/services/__init__.py
# SERVICE REGISTRY

from . import (
    conversion_service,
    document_builder,
    external_conversion,
    format_validator,
    history_service,
    ocr_service,
    text_extraction_service,
)

# FILE: backend/fileconvert/services/text_extraction_service.py
# PDF TEXT EXTRACTION
# 1. Digital text first (PyMuPDF).
# 2. Pages without a text layer are rendered and sent through OCR when an extractor is configured.

import io
import logging
from typing import Any, List, Optional

import fitz  # PyMuPDF
from PIL import Image

from ..core.exceptions import ConversionFailedError, OCRError
from .ocr_service import OCRExtractor

logger = logging.getLogger(__name__)

OCR_RENDER_ZOOM = 2.0


def _sanitize_text(text: str) -> str:
    """Removes null bytes and trailing whitespace."""
    if not text:
        return ""
    return text.replace("\x00", "").rstrip()


class PdfTextExtractor:
    def __init__(self, ocr: Optional[OCRExtractor] = None):
        self.ocr = ocr

    def extract(self, pdf_path: str) -> str:
        try:
            doc = fitz.open(pdf_path)
        except Exception as e:
            raise ConversionFailedError(f"Could not open PDF: {e}") from e

        pages: List[str] = []
        with doc:
            for page_num in range(len(doc)):
                page: Any = doc[page_num]
                text = _sanitize_text(page.get_text("text"))
                if not text.strip() and self.ocr is not None:
                    text = self._ocr_page(page, page_num)
                pages.append(text)

        logger.info(f"Extracted text from {len(pages)} PDF page(s).")
        return "\n\n".join(p for p in pages if p)

    def _ocr_page(self, page: Any, page_num: int) -> str:
        logger.info(f"Page {page_num + 1} has no text layer. Engaging OCR...")
        pix = page.get_pixmap(matrix=fitz.Matrix(OCR_RENDER_ZOOM, OCR_RENDER_ZOOM))
        with Image.open(io.BytesIO(pix.tobytes("png"))) as image:
            image.load()
            try:
                return _sanitize_text(self.ocr.extract_from_image(image))
            except OCRError as e:
                logger.warning(f"OCR failed for page {page_num + 1}: {e}")
                return ""

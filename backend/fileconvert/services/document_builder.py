# FILE: backend/fileconvert/services/document_builder.py
# DOCUMENT BUILDER
# 1. text -> PDF: A4 pages, greedy word wrap measured with real font metrics.
# 2. text -> DOCX: one paragraph per line, blank lines kept as a single space.
# 3. images -> PDF: every frame becomes a page, scaled to fit and centered.

import io
import logging
from typing import Iterable, List, Optional, Tuple

import docx
from PIL import Image as PILImage
from PIL import ImageSequence
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from ..core.exceptions import DocumentBuildError
from ..models.conversion import ConversionOptions

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50
FONT_SIZE = 12
LINE_HEIGHT = FONT_SIZE * 1.2
PARAGRAPH_SPACING = 6
DEFAULT_FONT = "Helvetica"
CUSTOM_FONT_NAME = "ConverterFont"

Page = List[Tuple[str, float]]


class TextDocumentBuilder:
    """
    Builds documents from raw text (and images) entirely in memory.

    Layout is deterministic: the same text always gives the same pages and line
    breaks, because wrapping uses the font's own width tables rather than a
    character count.
    """

    def __init__(self, font_path: Optional[str] = None):
        self.font_name = DEFAULT_FONT
        if font_path:
            try:
                pdfmetrics.registerFont(TTFont(CUSTOM_FONT_NAME, font_path))
                self.font_name = CUSTOM_FONT_NAME
            except Exception as e:
                raise DocumentBuildError(f"Could not load PDF font '{font_path}': {e}") from e

    @property
    def max_line_width(self) -> float:
        return PAGE_WIDTH - 2 * MARGIN

    def measure(self, text: str) -> float:
        return pdfmetrics.stringWidth(text, self.font_name, FONT_SIZE)

    def wrap_line(self, paragraph: str, max_width: Optional[float] = None) -> List[str]:
        """Greedy wrap. Words are never split: an over-wide word gets a line of its own."""
        limit = self.max_line_width if max_width is None else max_width
        words = paragraph.split()
        if not words:
            return [""]

        lines: List[str] = []
        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if not current or self.measure(candidate) <= limit:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
        return lines

    def paginate(self, text: str) -> List[Page]:
        """Splits text into pages of (line, baseline-y) pairs."""
        top = PAGE_HEIGHT - MARGIN
        pages: List[Page] = [[]]
        y = top
        for paragraph in _normalize_newlines(text).split("\n"):
            for line in self.wrap_line(paragraph):
                if y < MARGIN:
                    pages.append([])
                    y = top
                pages[-1].append((line, y))
                y -= LINE_HEIGHT
            y -= PARAGRAPH_SPACING
        return pages

    def text_to_pdf(self, text: str) -> bytes:
        try:
            buffer = io.BytesIO()
            c = canvas.Canvas(buffer, pagesize=A4, invariant=1)
            for page in self.paginate(text):
                c.setFont(self.font_name, FONT_SIZE)
                for line, y in page:
                    c.drawString(MARGIN, y, line)
                c.showPage()
            c.save()
            return buffer.getvalue()
        except Exception as e:
            logger.error(f"Text to PDF build failed: {e}", exc_info=True)
            raise DocumentBuildError(f"Could not build PDF: {e}") from e

    def text_to_docx(self, text: str) -> bytes:
        try:
            document = docx.Document()
            for line in _normalize_newlines(text).split("\n"):
                document.add_paragraph(line if line else " ")
            buffer = io.BytesIO()
            document.save(buffer)
            return buffer.getvalue()
        except Exception as e:
            logger.error(f"Text to DOCX build failed: {e}", exc_info=True)
            raise DocumentBuildError(f"Could not build DOCX: {e}") from e

    def images_to_pdf(self, image_paths: Iterable[str], options: Optional[ConversionOptions] = None) -> bytes:
        options = options or ConversionOptions()
        try:
            buffer = io.BytesIO()
            c = canvas.Canvas(buffer, pagesize=A4, invariant=1)
            for path in image_paths:
                with PILImage.open(path) as img:
                    for frame in ImageSequence.Iterator(img):
                        self._draw_image_page(c, _prepare_frame(frame.copy(), options), options)
            c.save()
            return buffer.getvalue()
        except Exception as e:
            logger.error(f"Image to PDF build failed: {e}", exc_info=True)
            raise DocumentBuildError(f"Could not embed image into PDF: {e}") from e

    def _draw_image_page(self, c: canvas.Canvas, img: PILImage.Image, options: ConversionOptions) -> None:
        if options.quality:
            encoded = io.BytesIO()
            img.save(encoded, "JPEG", quality=options.quality)
            encoded.seek(0)
            reader = ImageReader(encoded)
        else:
            reader = ImageReader(img)

        width, height = img.size
        avail_w, avail_h = PAGE_WIDTH - 2 * MARGIN, PAGE_HEIGHT - 2 * MARGIN
        scale = min(avail_w / width, avail_h / height)
        draw_w, draw_h = width * scale, height * scale
        x = (PAGE_WIDTH - draw_w) / 2
        y = (PAGE_HEIGHT - draw_h) / 2
        c.drawImage(reader, x, y, width=draw_w, height=draw_h)
        c.showPage()


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _prepare_frame(img: PILImage.Image, options: ConversionOptions) -> PILImage.Image:
    if options.grayscale:
        img = img.convert("L")
    elif img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    box = options.resize_box()
    if box:
        img.thumbnail(box)
    return img

# FILE: backend/fileconvert/services/ocr_service.py
# OCR ENGINE
# 1. Grayscale pre-pass via OpenCV; failures fall back to the original image with a warning.
# 2. Tesseract workers are pooled; 'with pool.acquire()' always hands the worker back (or kills it).
# 3. Progress is reported as a fraction in [0, 1]; callers scale it into their own range.

import logging
import queue
import re
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import cv2
import numpy as np
import pytesseract
from PIL import Image

from ..core.exceptions import OCRError
from ..models.conversion import ConversionOptions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

TESSERACT_CONFIG = r'--oem 3 --psm 3 -c preserve_interword_spaces=1'


class TesseractWorker:
    """One recognition session. Unusable once terminated."""

    def __init__(self, language: str = "eng", config: str = TESSERACT_CONFIG):
        self.language = language
        self.config = config
        self.terminated = False

    def recognize(self, image: Image.Image, language: Optional[str] = None) -> str:
        if self.terminated:
            raise OCRError("OCR worker has been terminated.")
        return pytesseract.image_to_string(image, lang=language or self.language, config=self.config)

    def terminate(self) -> None:
        self.terminated = True


class OCRWorkerPool:
    """
    Bounded pool of OCR workers.

    At most 'size' workers are checked out at once; idle workers are reused.
    A worker whose recognition raised is terminated instead of returned, and
    the slot is freed so the next caller gets a fresh one.
    """

    def __init__(self, factory: Callable[[], TesseractWorker], size: int = 2, acquire_timeout: float = 60.0):
        if size < 1:
            raise ValueError("OCR pool size must be at least 1")
        self._factory = factory
        self.size = size
        self._acquire_timeout = acquire_timeout
        self._slots = threading.BoundedSemaphore(size)
        self._idle: "queue.LifoQueue[TesseractWorker]" = queue.LifoQueue()
        self._closed = False

    @property
    def idle_count(self) -> int:
        return self._idle.qsize()

    @contextmanager
    def acquire(self) -> Iterator[TesseractWorker]:
        if self._closed:
            raise OCRError("OCR pool is closed.")
        if not self._slots.acquire(timeout=self._acquire_timeout):
            raise OCRError(f"No OCR worker became available within {self._acquire_timeout} seconds.")

        worker: Optional[TesseractWorker] = None
        healthy = False
        try:
            worker = self._checkout()
            yield worker
            healthy = True
        finally:
            if worker is not None:
                if healthy and not self._closed:
                    self._idle.put(worker)
                else:
                    worker.terminate()
            self._slots.release()

    def _checkout(self) -> TesseractWorker:
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            return self._factory()

    def close(self) -> None:
        self._closed = True
        while True:
            try:
                self._idle.get_nowait().terminate()
            except queue.Empty:
                break


def preprocess_image_for_ocr(pil_image: Image.Image) -> Image.Image:
    """Grayscale conversion. Returns the original image if anything goes wrong."""
    try:
        if pil_image.mode not in ("RGB", "RGBA", "L"):
            pil_image = pil_image.convert("RGB")
        img_np = np.array(pil_image)

        if len(img_np.shape) == 3:
            if img_np.shape[2] == 4:
                img_gray = cv2.cvtColor(img_np, cv2.COLOR_RGBA2GRAY)
            else:
                img_gray = cv2.cvtColor(img_np, cv2.COLOR_RGB2GRAY)
        else:
            img_gray = img_np

        return Image.fromarray(img_gray)
    except Exception as e:
        logger.warning(f"Image preprocessing failed: {e}. Using original image.")
        return pil_image


def clean_ocr_text(text: str) -> str:
    if not text:
        return ""
    # Broken hyphenations at end of lines
    text = text.replace("-\n", "")
    text = re.sub(r'\n\s*\n\s*\n', '\n\n', text)
    return text.strip()


class OCRExtractor:
    def __init__(self, pool: OCRWorkerPool, language: str = "eng",
                 preprocess: Callable[[Image.Image], Image.Image] = preprocess_image_for_ocr):
        self.pool = pool
        self.language = language
        self._preprocess = preprocess

    def extract(self, image_path: str, options: Optional[ConversionOptions] = None,
                progress: Optional[ProgressCallback] = None) -> str:
        options = options or ConversionOptions()
        report = progress or (lambda _fraction: None)
        report(0.0)

        try:
            with Image.open(image_path) as original:
                original.load()
                return self._recognize(original, options, report)
        except OCRError:
            raise
        except (OSError, ValueError) as e:
            raise OCRError(f"Could not read image for OCR: {e}") from e

    def extract_from_image(self, image: Image.Image, options: Optional[ConversionOptions] = None) -> str:
        return self._recognize(image, options or ConversionOptions(), lambda _fraction: None)

    def _recognize(self, image: Image.Image, options: ConversionOptions, report: ProgressCallback) -> str:
        if options.grayscale is not False:
            image = self._preprocess(image)
        report(0.3)

        language = options.language or self.language
        with self.pool.acquire() as worker:
            try:
                raw_text = worker.recognize(image, language)
            except OCRError:
                raise
            except Exception as e:
                logger.error(f"OCR recognition failed: {e}")
                raise OCRError(f"OCR recognition failed: {e}") from e

        report(1.0)
        text = clean_ocr_text(raw_text)
        logger.info(f"OCR finished: {len(text)} chars.")
        return text

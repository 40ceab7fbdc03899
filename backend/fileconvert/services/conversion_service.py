# FILE: backend/fileconvert/services/conversion_service.py
# CONVERSION DISPATCHER
# 1. Routing is a registry: ConversionType -> strategy. No branching on types elsewhere.
# 2. Unknown type/target and bad extensions fail before anything is written to disk.
# 3. Each request works in '<UPLOAD_DIR>/<request_id>/', which is removed on every exit path.
# 4. If the caller is cancelled mid-conversion, the worker thread finishes and cleans up after itself.

import asyncio
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Optional, Protocol, Tuple, Type

import httpx
import pytesseract
import structlog
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..core.config import Settings
from ..core.exceptions import (
    ConversionError,
    ConversionFailedError,
    EmptyResultError,
    ExternalConversionError,
    UnsupportedConversionType,
)
from ..models.conversion import (
    MIME_TYPES,
    ConversionRequest,
    ConversionResult,
    ConversionType,
    TargetFormat,
    derive_output_filename,
)
from . import format_validator
from .document_builder import TextDocumentBuilder
from .external_conversion import (
    CloudConversionClient,
    ExternalConversionClient,
    LibreOfficeClient,
    verify_output,
)
from .ocr_service import OCRExtractor, OCRWorkerPool, TesseractWorker
from .text_extraction_service import PdfTextExtractor

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[float], None]

# Share of the overall progress bar handed to the strategy itself.
STRATEGY_PROGRESS_RANGE = (0.1, 0.9)


class DispatchState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    BUILDING_DOCUMENT = "building_document"
    CALLING_EXTERNAL_SERVICE = "calling_external_service"
    EXTRACTING_OCR = "extracting_ocr"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ConversionContext:
    request: ConversionRequest
    conversion_type: ConversionType
    target: TargetFormat
    workspace: Path
    input_path: Path
    output_path: Path
    progress: ProgressCallback = field(default=lambda _fraction: None)

    def write_output(self, content: bytes) -> Path:
        self.output_path.write_bytes(content)
        return self.output_path

    def read_text(self) -> str:
        return self.input_path.read_bytes().decode("utf-8-sig", errors="replace")


class ConversionStrategy(Protocol):
    targets: FrozenSet[TargetFormat]
    stage: DispatchState

    def execute(self, ctx: ConversionContext) -> Path:
        ...


# --- Strategies ---

class ExternalConversionStrategy:
    stage = DispatchState.CALLING_EXTERNAL_SERVICE

    def __init__(self, client: ExternalConversionClient, tool: str, target: TargetFormat):
        self.client = client
        self.tool = tool
        self.targets = frozenset({target})

    def execute(self, ctx: ConversionContext) -> Path:
        return self.client.convert(ctx.input_path, self.tool, ctx.output_path.name)


class TextToPdfStrategy:
    stage = DispatchState.BUILDING_DOCUMENT
    targets = frozenset({TargetFormat.PDF})

    def __init__(self, builder: TextDocumentBuilder):
        self.builder = builder

    def execute(self, ctx: ConversionContext) -> Path:
        return ctx.write_output(self.builder.text_to_pdf(ctx.read_text()))


class LocalImageToPdfStrategy:
    stage = DispatchState.BUILDING_DOCUMENT
    targets = frozenset({TargetFormat.PDF})

    def __init__(self, builder: TextDocumentBuilder):
        self.builder = builder

    def execute(self, ctx: ConversionContext) -> Path:
        return ctx.write_output(self.builder.images_to_pdf([str(ctx.input_path)], ctx.request.options))


class PdfTextStrategy:
    stage = DispatchState.BUILDING_DOCUMENT
    targets = frozenset({TargetFormat.TXT})

    def __init__(self, extractor: PdfTextExtractor):
        self.extractor = extractor

    def execute(self, ctx: ConversionContext) -> Path:
        text = self.extractor.extract(str(ctx.input_path))
        if not text.strip():
            raise EmptyResultError("No text could be extracted from the PDF.")
        return ctx.write_output(text.encode("utf-8"))


class OcrStrategy:
    stage = DispatchState.EXTRACTING_OCR
    targets = frozenset({TargetFormat.TXT, TargetFormat.DOCX})

    def __init__(self, ocr: OCRExtractor, builder: TextDocumentBuilder):
        self.ocr = ocr
        self.builder = builder

    def execute(self, ctx: ConversionContext) -> Path:
        text = self.ocr.extract(str(ctx.input_path), ctx.request.options, progress=ctx.progress)
        if not text.strip():
            raise EmptyResultError("No text was recognized in the image.")
        if ctx.target == TargetFormat.DOCX:
            return ctx.write_output(self.builder.text_to_docx(text))
        return ctx.write_output(text.encode("utf-8"))


# --- Dispatcher ---

class ConversionDispatcher:
    def __init__(
        self,
        strategies: Dict[ConversionType, ConversionStrategy],
        upload_dir: str,
        *,
        external_client: Optional[ExternalConversionClient] = None,
        ocr_pool: Optional[OCRWorkerPool] = None,
    ):
        self.strategies = dict(strategies)
        self.upload_dir = Path(upload_dir)
        self.external_client = external_client
        self.ocr_pool = ocr_pool

    def resolve(self, conversion_type: str, target_format: str) -> Tuple[ConversionType, TargetFormat, ConversionStrategy]:
        try:
            ctype = ConversionType(conversion_type)
            strategy = self.strategies[ctype]
        except (ValueError, KeyError):
            raise UnsupportedConversionType(f"Unsupported conversion type: {conversion_type}")
        try:
            target = TargetFormat(str(target_format).lower())
        except ValueError:
            target = None
        if target not in strategy.targets:
            allowed = ", ".join(sorted(t.value for t in strategy.targets))
            raise UnsupportedConversionType(
                f"Unsupported target format '{target_format}' for {ctype.value}. Supported: {allowed}"
            )
        return ctype, target, strategy

    async def convert(self, request: ConversionRequest, progress: Optional[ProgressCallback] = None) -> ConversionResult:
        """
        Runs one conversion end to end and returns the result bytes.

        'progress' receives the overall fraction in [0, 1]. It may be called
        from a worker thread.
        """
        report = progress or (lambda _fraction: None)
        log = logger.bind(
            request_id=request.request_id,
            conversion_type=request.conversion_type,
            target_format=request.target_format,
            file_name=request.input_file.filename,
        )
        log.info("conversion.state", state=DispatchState.RECEIVED.value)

        try:
            ctype, target, strategy = self.resolve(request.conversion_type, request.target_format)
            format_validator.validate(request.input_file.filename, format_validator.allowed_extensions_for(ctype))
        except ConversionError as e:
            log.warning("conversion.rejected", state=DispatchState.FAILED.value, error=str(e))
            raise
        log.info("conversion.state", state=DispatchState.VALIDATED.value)
        report(0.05)

        workspace = self.upload_dir / request.request_id
        ext = request.input_file.extension
        low, high = STRATEGY_PROGRESS_RANGE
        ctx = ConversionContext(
            request=request,
            conversion_type=ctype,
            target=target,
            workspace=workspace,
            input_path=workspace / f"{request.request_id}.{ext}",
            output_path=workspace / f"{request.request_id}_out.{target.value}",
            progress=lambda fraction: report(low + (high - low) * min(max(fraction, 0.0), 1.0)),
        )

        task = asyncio.ensure_future(asyncio.to_thread(self._run, ctx, strategy, log))
        cleanup_now = True
        try:
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                cleanup_now = False
                task.add_done_callback(lambda t: self._discard(t, workspace, log))
            log.warning("conversion.cancelled")
            raise
        except ConversionError as e:
            log.error("conversion.state", state=DispatchState.FAILED.value, error=str(e), error_type=e.__class__.__name__)
            raise
        except Exception as e:
            log.error("conversion.state", state=DispatchState.FAILED.value, error=str(e), exc_info=True)
            raise ConversionFailedError(f"Conversion failed: {e}") from e
        finally:
            if cleanup_now:
                self._cleanup(workspace, log)

        report(1.0)
        log.info("conversion.state", state=DispatchState.COMPLETED.value, size=result.size)
        return result

    def _run(self, ctx: ConversionContext, strategy: ConversionStrategy, log: Any) -> ConversionResult:
        ctx.workspace.mkdir(parents=True, exist_ok=True)
        stream = ctx.request.input_file.stream
        if hasattr(stream, "seek"):
            stream.seek(0)
        with ctx.input_path.open("wb") as out:
            shutil.copyfileobj(stream, out)

        log.info("conversion.state", state=strategy.stage.value)
        output_path = verify_output(Path(strategy.execute(ctx)))
        if ctx.target == TargetFormat.PDF:
            local = not isinstance(strategy, ExternalConversionStrategy)
            _verify_pdf(output_path, ConversionFailedError if local else ExternalConversionError)

        return ConversionResult(
            content=output_path.read_bytes(),
            mime_type=MIME_TYPES[ctx.target],
            filename=derive_output_filename(ctx.request.input_file.filename, ctx.conversion_type, ctx.target),
        )

    def _cleanup(self, workspace: Path, log: Any) -> None:
        if not workspace.exists():
            return
        try:
            shutil.rmtree(workspace)
            log.debug("conversion.cleanup", workspace=str(workspace))
        except OSError as e:
            log.error("conversion.cleanup_failed", workspace=str(workspace), error=str(e))

    def _discard(self, task: "asyncio.Future[ConversionResult]", workspace: Path, log: Any) -> None:
        if not task.cancelled() and task.exception() is not None:
            log.info("conversion.discarded_failure", error=str(task.exception()))
        self._cleanup(workspace, log)

    def supported_formats(self) -> Dict[str, Dict[str, Any]]:
        return {
            ctype.value: {
                "from": sorted(format_validator.allowed_extensions_for(ctype)),
                "to": sorted(t.value for t in strategy.targets),
            }
            for ctype, strategy in self.strategies.items()
        }

    async def check_health(self) -> Dict[str, Any]:
        if self.external_client is None:
            return {"status": "active", "provider": "local", "message": "Only local strategies are configured."}
        return await asyncio.to_thread(self.external_client.check_health)

    def close(self) -> None:
        if self.external_client is not None:
            self.external_client.close()
        if self.ocr_pool is not None:
            self.ocr_pool.close()


def _verify_pdf(path: Path, error_cls: Type[ConversionError] = ExternalConversionError) -> None:
    try:
        pages = len(PdfReader(str(path)).pages)
    except (PdfReadError, ValueError, OSError) as e:
        raise error_cls(f"Conversion output is not a readable PDF: {e}") from e
    if pages < 1:
        raise error_cls("Conversion output PDF has no pages.")


# --- Factory ---

def build_external_client(settings: Settings, http_client: Optional[httpx.Client] = None) -> ExternalConversionClient:
    retry_kwargs = dict(
        retries=settings.RETRY_COUNT,
        retry_delay=settings.RETRY_DELAY_SEC,
        backoff=settings.RETRY_BACKOFF,
    )
    if settings.CONVERSION_BACKEND == "cloud":
        return CloudConversionClient(
            settings.CLOUD_API_URL,
            settings.CLOUD_API_KEY,
            http_client=http_client,
            request_timeout=settings.CLOUD_REQUEST_TIMEOUT_SEC,
            process_timeout=settings.CLOUD_PROCESS_TIMEOUT_SEC,
            **retry_kwargs,
        )
    return LibreOfficeClient(settings.SOFFICE_BINARY, timeout=settings.SOFFICE_TIMEOUT_SEC, **retry_kwargs)


def _tool_for(settings: Settings, client: ExternalConversionClient, ctype: ConversionType, target: TargetFormat) -> str:
    if isinstance(client, CloudConversionClient):
        return settings.CLOUD_TOOLS[ctype.value]
    return target.value


def build_dispatcher(
    settings: Settings,
    *,
    external_client: Optional[ExternalConversionClient] = None,
    ocr_pool: Optional[OCRWorkerPool] = None,
) -> ConversionDispatcher:
    """Wires every strategy from an explicit Settings object."""
    if settings.TESSERACT_CMD:
        pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    client = external_client or build_external_client(settings)
    pool = ocr_pool or OCRWorkerPool(
        lambda: TesseractWorker(language=settings.OCR_LANGUAGE),
        size=settings.OCR_POOL_SIZE,
        acquire_timeout=settings.OCR_ACQUIRE_TIMEOUT_SEC,
    )
    builder = TextDocumentBuilder(font_path=settings.PDF_FONT_PATH or None)
    ocr = OCRExtractor(pool, language=settings.OCR_LANGUAGE)

    def external(ctype: ConversionType, target: TargetFormat) -> ExternalConversionStrategy:
        return ExternalConversionStrategy(client, _tool_for(settings, client, ctype, target), target)

    strategies: Dict[ConversionType, ConversionStrategy] = {
        ConversionType.WORD_TO_PDF: external(ConversionType.WORD_TO_PDF, TargetFormat.PDF),
        ConversionType.PDF_TO_WORD: external(ConversionType.PDF_TO_WORD, TargetFormat.DOCX),
        ConversionType.PDF_TO_TEXT: PdfTextStrategy(PdfTextExtractor(ocr)),
        ConversionType.TEXT_TO_PDF: TextToPdfStrategy(builder),
        ConversionType.OCR_EXTRACT: OcrStrategy(ocr, builder),
    }
    if settings.IMAGE_TO_PDF_BACKEND == "external":
        strategies[ConversionType.IMAGE_TO_PDF] = external(ConversionType.IMAGE_TO_PDF, TargetFormat.PDF)
    else:
        strategies[ConversionType.IMAGE_TO_PDF] = LocalImageToPdfStrategy(builder)

    logger.info(
        "dispatcher.built",
        provider=client.name,
        image_to_pdf=settings.IMAGE_TO_PDF_BACKEND,
        upload_dir=settings.UPLOAD_DIR,
    )
    return ConversionDispatcher(strategies, settings.UPLOAD_DIR, external_client=client, ocr_pool=pool)

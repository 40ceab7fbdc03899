"""Test doubles for the external conversion backend and the OCR engine."""

from __future__ import annotations

import io
import threading
from pathlib import Path

from fileconvert.models.conversion import ConversionRequest, InputFile
from fileconvert.services.document_builder import TextDocumentBuilder


class FakeExternalClient:
    """Stands in for LibreOffice / the cloud API. Writes a real PDF or DOCX."""

    name = "fake"

    def __init__(self, fail_with: Exception | None = None, health_status: str = "active"):
        self.calls: list[tuple[Path, str, str]] = []
        self.fail_with = fail_with
        self.health_status = health_status
        self.closed = False

    def convert(self, input_path, tool, output_filename):
        self.calls.append((Path(input_path), tool, output_filename))
        if self.fail_with is not None:
            raise self.fail_with
        builder = TextDocumentBuilder()
        out = Path(input_path).parent / output_filename
        if tool == "docx":
            out.write_bytes(builder.text_to_docx("converted by fake backend"))
        else:
            out.write_bytes(builder.text_to_pdf("converted by fake backend"))
        return out

    def check_health(self):
        return {"status": self.health_status, "provider": self.name, "message": "fake backend"}

    def close(self):
        self.closed = True


class BlockingExternalClient(FakeExternalClient):
    """Blocks inside convert() until released, to simulate a slow backend."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def convert(self, input_path, tool, output_filename):
        self.started.set()
        self.release.wait(timeout=10)
        return super().convert(input_path, tool, output_filename)


class FakeOCRWorker:
    def __init__(self, text: str = "Recognized text", error: Exception | None = None):
        self.text = text
        self.error = error
        self.terminated = False
        self.languages: list[str | None] = []

    def recognize(self, image, language=None):
        self.languages.append(language)
        if self.error is not None:
            raise self.error
        return self.text

    def terminate(self):
        self.terminated = True


def make_request(filename: str, data: bytes, conversion_type: str, target_format: str, **kwargs) -> ConversionRequest:
    input_file = InputFile(
        filename=filename,
        content_type="application/octet-stream",
        size=len(data),
        stream=io.BytesIO(data),
    )
    return ConversionRequest(input_file=input_file, conversion_type=conversion_type, target_format=target_format, **kwargs)

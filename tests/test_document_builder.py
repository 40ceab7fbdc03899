"""Tests for text/image document building: wrapping, pagination, PDF/DOCX output."""

import io

import docx
import pytest
from PIL import Image
from pypdf import PdfReader

from fileconvert.core.exceptions import DocumentBuildError
from fileconvert.models.conversion import ConversionOptions
from fileconvert.services.document_builder import (
    LINE_HEIGHT,
    MARGIN,
    PAGE_HEIGHT,
    TextDocumentBuilder,
)


@pytest.fixture
def builder():
    return TextDocumentBuilder()


def _page_count(pdf_bytes: bytes) -> int:
    return len(PdfReader(io.BytesIO(pdf_bytes)).pages)


# -- Wrapping ---------------------------------------------------------------


def test_wrap_keeps_short_line_intact(builder):
    assert builder.wrap_line("Hello world") == ["Hello world"]


def test_wrap_empty_paragraph_gives_one_blank_line(builder):
    assert builder.wrap_line("") == [""]
    assert builder.wrap_line("   ") == [""]


def test_wrap_overlong_word_gets_its_own_line(builder):
    """A word wider than the line is never split; the short word before it still fits."""
    lines = builder.wrap_line("Hello " + "W" * 100)

    assert len(lines) >= 2
    fitting = [line for line in lines if builder.measure(line) <= builder.max_line_width]
    assert fitting == ["Hello"]
    assert lines[1] == "W" * 100


def test_wrap_ordinary_prose_fits_the_line_width(builder):
    text = " ".join(["conversion"] * 120)
    lines = builder.wrap_line(text)

    assert len(lines) > 1
    assert all(builder.measure(line) <= builder.max_line_width for line in lines)
    assert " ".join(lines).split() == text.split()


# -- Pagination -------------------------------------------------------------


def test_paginate_empty_text_gives_single_page(builder):
    pages = builder.paginate("")
    assert len(pages) == 1
    assert pages[0] == [("", PAGE_HEIGHT - MARGIN)]


def test_paginate_breaks_pages_and_keeps_lines_inside_margins(builder):
    text = "\n".join(f"line {i}" for i in range(200))
    pages = builder.paginate(text)

    assert len(pages) > 1
    placed = [line for page in pages for line, _ in page]
    assert placed == [f"line {i}" for i in range(200)]
    for page in pages:
        for _, y in page:
            assert MARGIN <= y <= PAGE_HEIGHT - MARGIN
        ys = [y for _, y in page]
        assert ys == sorted(ys, reverse=True)


def test_paginate_normalizes_windows_newlines(builder):
    pages = builder.paginate("a\r\nb\rc")
    assert [line for line, _ in pages[0]] == ["a", "b", "c"]


def test_paginate_line_advance(builder):
    (page,) = builder.paginate("one two")
    assert len(page) == 1
    (first, second) = builder.paginate("one\ntwo")[0]
    assert first[1] - second[1] > LINE_HEIGHT


# -- PDF / DOCX output ------------------------------------------------------


def test_empty_text_pdf_has_exactly_one_page(builder):
    assert _page_count(builder.text_to_pdf("")) == 1


def test_long_text_pdf_spans_multiple_pages(builder):
    text = "\n".join(f"line {i}" for i in range(200))
    assert _page_count(builder.text_to_pdf(text)) == len(builder.paginate(text))


def test_text_to_pdf_is_deterministic(builder):
    assert builder.text_to_pdf("Hello\nWorld") == builder.text_to_pdf("Hello\nWorld")


def test_text_to_docx_one_paragraph_per_line(builder):
    content = builder.text_to_docx("line one\n\nline three")
    paragraphs = [p.text for p in docx.Document(io.BytesIO(content)).paragraphs]

    assert paragraphs[-3:] == ["line one", " ", "line three"]


def test_unloadable_font_raises(tmp_path):
    with pytest.raises(DocumentBuildError):
        TextDocumentBuilder(font_path=str(tmp_path / "missing.ttf"))


# -- Images -----------------------------------------------------------------


def test_image_to_pdf_single_page(builder, tmp_path):
    path = tmp_path / "photo.png"
    Image.new("RGBA", (300, 200), (255, 0, 0, 128)).save(path)

    assert _page_count(builder.images_to_pdf([str(path)])) == 1


def test_multi_frame_image_becomes_one_page_per_frame(builder, tmp_path):
    path = tmp_path / "scan.tiff"
    frames = [Image.new("RGB", (100, 150), color) for color in ("white", "gray", "black")]
    frames[0].save(path, save_all=True, append_images=frames[1:])

    assert _page_count(builder.images_to_pdf([str(path)])) == 3


def test_image_options_are_applied(builder, tmp_path):
    path = tmp_path / "big.jpg"
    Image.new("RGB", (2000, 1000), "blue").save(path)
    options = ConversionOptions(quality=40, resize="200x200", grayscale=True)

    assert _page_count(builder.images_to_pdf([str(path)], options)) == 1


def test_unreadable_image_raises(builder, tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")

    with pytest.raises(DocumentBuildError):
        builder.images_to_pdf([str(path)])

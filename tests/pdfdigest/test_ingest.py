import os
import tempfile
from unittest.mock import MagicMock, patch

import pytest

from pdfdigest.errors import ExtractionFailed, ExtractionReason
from pdfdigest.ingest import _clean_extracted_text, extract, extract_text_from_pdf, load_document
from pdfdigest.models import SourceDocument

PDF_BYTES = b"%PDF-1.4\n%mock\n"


def _mock_pdf(*page_texts):
    pages = []
    for text in page_texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)
    mock_pdf = MagicMock()
    mock_pdf.pages = pages
    mock_pdf.__enter__.return_value = mock_pdf
    return mock_pdf


@patch("pdfplumber.open")
def test_extract_text_from_pdf(mock_pdf_open):
    mock_pdf_open.return_value = _mock_pdf("PDF page content")

    result = extract_text_from_pdf(PDF_BYTES)
    assert result == ["PDF page content"]


@patch("pdfplumber.open")
def test_extract_joins_pages_as_paragraphs(mock_pdf_open):
    mock_pdf_open.return_value = _mock_pdf("First page text.\n3", None, "Second page text.")

    doc = SourceDocument(content=PDF_BYTES, media_type="application/pdf", file_name="report.pdf")
    assert extract(doc) == "First page text.\n\nSecond page text."


@patch("pdfplumber.open")
def test_extract_accepts_media_type_parameters(mock_pdf_open):
    mock_pdf_open.return_value = _mock_pdf("Some text")

    doc = SourceDocument(content=PDF_BYTES, media_type="Application/PDF; charset=binary", file_name="a.pdf")
    assert extract(doc) == "Some text"


def test_extract_rejects_unsupported_type_first():
    doc = SourceDocument(content=b"", media_type="text/plain", file_name="notes.txt")

    with pytest.raises(ExtractionFailed) as excinfo:
        extract(doc)
    assert excinfo.value.reason is ExtractionReason.UNSUPPORTED_TYPE


def test_extract_empty_buffer():
    doc = SourceDocument(content=b"", media_type="application/pdf", file_name="empty.pdf")

    with pytest.raises(ExtractionFailed) as excinfo:
        extract(doc)
    assert excinfo.value.reason is ExtractionReason.EMPTY_CONTENT


def test_extract_missing_header_is_corrupt():
    doc = SourceDocument(content=b"definitely not a pdf", media_type="application/pdf", file_name="x.pdf")

    with pytest.raises(ExtractionFailed) as excinfo:
        extract(doc)
    assert excinfo.value.reason is ExtractionReason.CORRUPT_CONTENT


@patch("pdfplumber.open")
def test_extract_parse_error_is_corrupt(mock_pdf_open):
    mock_pdf_open.side_effect = Exception("No /Root object! - Is this really a PDF?")
    doc = SourceDocument(content=PDF_BYTES, media_type="application/pdf", file_name="broken.pdf")

    with pytest.raises(ExtractionFailed) as excinfo:
        extract(doc)
    assert excinfo.value.reason is ExtractionReason.CORRUPT_CONTENT
    assert "Root object" in excinfo.value.cause


@patch("pdfplumber.open")
def test_extract_image_only_pdf(mock_pdf_open):
    mock_pdf_open.return_value = _mock_pdf(None, "", "  ")
    doc = SourceDocument(content=PDF_BYTES, media_type="application/pdf", file_name="scan.pdf")

    with pytest.raises(ExtractionFailed) as excinfo:
        extract(doc)
    assert excinfo.value.reason is ExtractionReason.EMPTY_CONTENT
    assert "3 pages" in excinfo.value.cause


def test_clean_extracted_text_keeps_paragraphs():
    raw = "Title   here\n12\nPage 3\n\n\n\nBody  text."
    assert _clean_extracted_text(raw) == "Title here\n\nBody text."


def test_load_document():
    with tempfile.NamedTemporaryFile(suffix=".pdf", delete=False) as tmp:
        tmp.write(PDF_BYTES)
        tmp_path = tmp.name

    try:
        doc = load_document(tmp_path)
        assert doc.content == PDF_BYTES
        assert doc.media_type == "application/pdf"
        assert doc.file_name == os.path.basename(tmp_path)
    finally:
        os.remove(tmp_path)


def test_load_document_not_found():
    with pytest.raises(FileNotFoundError):
        load_document("non_existent_file.pdf")

import io
import logging
import mimetypes
import os
import re
from typing import List, Optional

from pdfdigest.errors import ExtractionFailed, ExtractionReason
from pdfdigest.models import SourceDocument

logger = logging.getLogger("pdfdigest.ingest")

PDF_MEDIA_TYPES = frozenset({"application/pdf", "application/x-pdf"})
_PDF_MAGIC = b"%PDF-"
_MAGIC_SEARCH_WINDOW = 1024


def _normalize_media_type(media_type: str) -> str:
    return (media_type or "").split(";", 1)[0].strip().lower()


def extract_text_from_pdf(content: bytes) -> List[str]:
    """
    Extracts text from each page of an in-memory PDF using pdfplumber.

    Args:
        content (bytes): Raw PDF bytes.

    Returns:
        List[str]: Cleaned text per page, in page order. Pages without a text
        layer yield an empty string.

    Raises:
        ExtractionFailed: If pdfplumber cannot parse the content.
    """
    pages = []
    try:
        import pdfplumber

        with pdfplumber.open(io.BytesIO(content)) as pdf:
            for page in pdf.pages:
                text = page.extract_text() or ""

                if len(text.strip()) < 50:
                    # Some layouts only yield text when the crop box is given explicitly.
                    alt = page.extract_text(x0=0, x1=page.width, y0=0, y1=page.height)
                    if alt and len(alt.strip()) > len(text.strip()):
                        text = alt

                pages.append(_clean_extracted_text(text))
    except Exception as exc:
        raise ExtractionFailed(ExtractionReason.CORRUPT_CONTENT, f"could not parse PDF: {exc}") from exc
    return pages


def _clean_extracted_text(text: str) -> str:
    """
    Clean extracted text by removing common artifacts.

    Blank lines survive (collapsed to one) so paragraph breaks stay visible
    to the chunk planner.

    Args:
        text: Raw extracted text.

    Returns:
        Cleaned text with artifacts removed.
    """
    if not text:
        return ""

    cleaned_lines = []

    for line in text.split("\n"):
        line = line.strip()

        if not line:
            cleaned_lines.append("")
            continue

        if len(line) <= 5 and line.replace(".", "").replace("-", "").isdigit():
            continue

        if re.match(r"^page\s*\d+$", line, re.IGNORECASE):
            continue

        line = re.sub(r"\s+", " ", line)
        cleaned_lines.append(line)

    result = "\n".join(cleaned_lines)
    result = re.sub(r"\n{3,}", "\n\n", result)

    return result.strip()


def extract(doc: SourceDocument) -> str:
    """
    Converts a SourceDocument into plain text.

    Fails atomically: either the whole document's text is returned or an
    ExtractionFailed is raised, never a partial result.

    Args:
        doc (SourceDocument): The uploaded document.

    Returns:
        str: Non-empty extracted text, pages separated by a blank line.

    Raises:
        ExtractionFailed: UNSUPPORTED_TYPE for non-PDF media types,
            EMPTY_CONTENT for empty input or PDFs without a text layer,
            CORRUPT_CONTENT for bytes that are not a readable PDF.
    """
    media_type = _normalize_media_type(doc.media_type)
    if media_type not in PDF_MEDIA_TYPES:
        raise ExtractionFailed(ExtractionReason.UNSUPPORTED_TYPE, f"unsupported media type: {doc.media_type!r}")

    if not doc.content:
        raise ExtractionFailed(ExtractionReason.EMPTY_CONTENT, f"{doc.file_name} is empty")

    if _PDF_MAGIC not in doc.content[:_MAGIC_SEARCH_WINDOW]:
        raise ExtractionFailed(ExtractionReason.CORRUPT_CONTENT, f"{doc.file_name} has no PDF header")

    pages = extract_text_from_pdf(doc.content)
    text = "\n\n".join(page for page in pages if page)

    if not text.strip():
        raise ExtractionFailed(
            ExtractionReason.EMPTY_CONTENT,
            f"{doc.file_name} has no extractable text layer ({len(pages)} pages, possibly scanned images)",
        )

    logger.debug("Extracted %d characters from %d pages of %s", len(text), len(pages), doc.file_name)
    return text


def load_document(path: str, media_type: Optional[str] = None) -> SourceDocument:
    """
    Reads a file from disk into a SourceDocument.

    Args:
        path (str): Path to the file.
        media_type (Optional[str]): Declared media type. Guessed from the file
            name when omitted.

    Returns:
        SourceDocument: The file's bytes, media type and base name.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")

    if media_type is None:
        media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"

    with open(path, "rb") as f:
        content = f.read()

    return SourceDocument(content=content, media_type=media_type, file_name=os.path.basename(path))

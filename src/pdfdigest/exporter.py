import html
import io
import json
import logging
import os
from typing import Optional

from pdfdigest.errors import RenderFailed, RenderReason
from pdfdigest.models import FinalSummary, RenderedArtifact

logger = logging.getLogger("pdfdigest.exporter")

FILE_PREFIX = "resumen-"

MEDIA_TYPES = {
    "txt": "text/plain",
    "md": "text/markdown",
    "json": "application/json",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "pdf": "application/pdf",
}


def suggested_file_name(source_file_name: str, format: str) -> str:
    """
    Builds ``resumen-<originalFileName>``, swapping the extension for the
    rendered format's when they differ.
    """
    base = os.path.basename(source_file_name) or "document"
    stem, ext = os.path.splitext(base)
    if ext.lower() != f".{format}":
        base = f"{stem or base}.{format}"
    return FILE_PREFIX + base


def _title(summary: FinalSummary) -> str:
    return f"Resumen: {summary.source_file_name}"


def _encode(content: str, encoding: str) -> bytes:
    try:
        return content.encode(encoding)
    except UnicodeEncodeError as err:
        raise RenderFailed(RenderReason.ENCODING_ERROR, f"summary text is not encodable as {encoding}: {err}") from err
    except LookupError as err:
        raise RenderFailed(RenderReason.ENCODING_ERROR, f"unknown encoding {encoding!r}") from err


def _to_markdown(summary: FinalSummary) -> str:
    content = f"# {_title(summary)}\n\n"
    content += f"_Generated {summary.generated_at.isoformat()}_\n\n"
    content += f"{summary.text}\n"
    return content


def _to_docx(summary: FinalSummary) -> bytes:
    try:
        from docx import Document
    except ImportError as err:
        raise RenderFailed(
            RenderReason.BACKEND_UNAVAILABLE,
            "Format 'docx' requires 'python-docx'. Install it with 'pip install python-docx'.",
        ) from err

    from pdfdigest.chunk import split_into_paragraphs

    try:
        doc = Document()
        doc.add_heading(_title(summary), 0)
        for para in split_into_paragraphs(summary.text):
            doc.add_paragraph(para)
        buffer = io.BytesIO()
        doc.save(buffer)
    except ValueError as err:
        # python-docx rejects XML-incompatible characters with ValueError.
        raise RenderFailed(RenderReason.ENCODING_ERROR, f"summary text cannot be written to docx: {err}") from err
    except Exception as err:
        raise RenderFailed(RenderReason.WRITER_ERROR, f"DOCX conversion failed: {err}") from err
    return buffer.getvalue()


def _to_pdf(summary: FinalSummary) -> bytes:
    try:
        from weasyprint import HTML
    except (ImportError, OSError) as err:
        msg = "Format 'pdf' requires 'weasyprint' and its system dependencies (pango, cairo, libffi)."
        if "libgobject" in str(err) or "cannot load library" in str(err).lower():
            msg += " On macOS, please install them via Homebrew: 'brew install pango'."
        raise RenderFailed(RenderReason.BACKEND_UNAVAILABLE, msg) from err

    from pdfdigest.chunk import split_into_paragraphs

    body = "".join(f"<p>{html.escape(para)}</p>" for para in split_into_paragraphs(summary.text))
    html_content = (
        '<html><head><meta charset="utf-8">'
        "<style>p { white-space: pre-wrap; }</style></head>"
        f"<body><h1>{html.escape(_title(summary))}</h1>{body}</body></html>"
    )
    try:
        return HTML(string=html_content).write_pdf()
    except Exception as err:
        raise RenderFailed(RenderReason.WRITER_ERROR, f"PDF conversion failed: {err}") from err


def render(summary: FinalSummary, format: str = "pdf", encoding: str = "utf-8") -> RenderedArtifact:
    """
    Serializes a summary into a downloadable document.

    Does not depend on the pipeline having just run; any FinalSummary can be
    rendered, as often as needed.

    Args:
        summary (FinalSummary): The summary to render.
        format (str): "txt", "md", "json", "docx" or "pdf".
        encoding (str): Text encoding for the textual formats.

    Returns:
        RenderedArtifact: Bytes plus suggested file name and media type.

    Raises:
        RenderFailed: ENCODING_ERROR, UNSUPPORTED_FORMAT, BACKEND_UNAVAILABLE
            or WRITER_ERROR.
    """
    format = format.lower()

    if format == "txt":
        # Plain text is the summary verbatim.
        content = _encode(summary.text, encoding)
    elif format == "md":
        content = _encode(_to_markdown(summary), encoding)
    elif format == "json":
        content = _encode(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False), encoding)
    elif format == "docx":
        content = _to_docx(summary)
    elif format == "pdf":
        content = _to_pdf(summary)
    else:
        raise RenderFailed(RenderReason.UNSUPPORTED_FORMAT, f"Unsupported format: {format}")

    file_name = suggested_file_name(summary.source_file_name, format)
    logger.debug("Rendered %s (%d bytes)", file_name, len(content))
    return RenderedArtifact(content=content, file_name=file_name, media_type=MEDIA_TYPES[format])


def write_artifact(artifact: RenderedArtifact, out_path: Optional[str] = None) -> str:
    """
    Writes an artifact to disk.

    Args:
        artifact (RenderedArtifact): The rendered document.
        out_path (Optional[str]): Target file, or a directory to place the
            suggested file name in. Defaults to the current directory.

    Returns:
        str: The path written.
    """
    if out_path is None:
        out_path = artifact.file_name
    elif os.path.isdir(out_path):
        out_path = os.path.join(out_path, artifact.file_name)

    with open(out_path, "wb") as f:
        f.write(artifact.content)
    return out_path

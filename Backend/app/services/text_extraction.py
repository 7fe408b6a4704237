from __future__ import annotations

import logging
import re
import unicodedata
import zipfile
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import pdfplumber
import polars as pl
from docx import Document
from openpyxl import load_workbook

from app.core.config import settings

# ─── Logger ──────────────────────────────────────────────────────────────────
logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
ALLOWED_EXTENSIONS: tuple[str, ...] = (".pdf", ".docx", ".xlsx", ".xls")
MAX_TEXT_CHARS: int                 = 100_000
PREVIEW_CHARS: int                  = 500
EMPTY_MARKER: str                   = "[empty]"

# ─── Custom Exceptions ───────────────────────────────────────────────────────
class UnsupportedFileTypeError(Exception):
    pass

class FileTooLargeError(Exception):
    pass

class EmptyDocumentError(Exception):
    pass

class TextExtractionError(Exception):
    pass


@dataclass
class ExtractedDocument:
    text: str
    file_type: str
    file_size: int

    @property
    def content_preview(self) -> str:
        if len(self.text) <= PREVIEW_CHARS:
            return self.text
        return self.text[:PREVIEW_CHARS] + "..."


# ─── Normalisation ───────────────────────────────────────────────────────────
def _clean_text(text: str) -> str:
    t = unicodedata.normalize("NFC", text)
    t = re.sub(r" {2,}", " ", t)
    t = re.sub(r"\n\s*\n\s*\n", "\n\n", t)
    t = t.strip()
    if len(t) > MAX_TEXT_CHARS:
        t = t[:MAX_TEXT_CHARS] + "\n\n[Content truncated.]"
    return t


def mark_empty_fields(text: str) -> str:
    """
    Flag template lines that end in a colon with no value ("Nationality:")
    so the model does not pull the next line's value into that field.
    """
    lines = []
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.endswith(":"):
            lines.append(f"{stripped} {EMPTY_MARKER}")
        else:
            lines.append(stripped)
    return "\n".join(lines)


# ─── Per-format Parsers ──────────────────────────────────────────────────────
def _extract_pdf(content: bytes) -> str:
    with pdfplumber.open(BytesIO(content)) as pdf:
        parts = [page.extract_text() or "" for page in pdf.pages]
    return "\n\n".join(part for part in parts if part.strip())


def _extract_docx(content: bytes) -> str:
    doc = Document(BytesIO(content))
    parts = [p.text for p in doc.paragraphs]

    # Template-style CVs keep most of their fields in tables
    for table in doc.tables:
        for row in table.rows:
            cells = []
            for cell in row.cells:
                value = cell.text.strip()
                if value and value not in cells:
                    cells.append(value)
            if cells:
                parts.append(" ".join(cells))

    return mark_empty_fields("\n".join(parts))


def _extract_xlsx(content: bytes) -> str:
    workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    try:
        lines = []
        for sheet in workbook.worksheets:
            for row in sheet.iter_rows(values_only=True):
                values = ["" if v is None else str(v) for v in row]
                if any(v.strip() for v in values):
                    lines.append("\t".join(values).rstrip())
        return "\n".join(lines)
    finally:
        workbook.close()


def _extract_xls(content: bytes) -> str:
    # Legacy BIFF workbooks: polars reads them through the calamine engine
    sheets = pl.read_excel(BytesIO(content), sheet_id=0, has_header=False, raise_if_empty=False)
    lines = []
    for frame in sheets.values():
        for row in frame.iter_rows():
            values = ["" if v is None else str(v) for v in row]
            if any(v.strip() for v in values):
                lines.append("\t".join(values).rstrip())
    return "\n".join(lines)


_PARSERS = {
    ".pdf":  _extract_pdf,
    ".docx": _extract_docx,
    ".xlsx": _extract_xlsx,
    ".xls":  _extract_xls,
}


# ─── Public API ──────────────────────────────────────────────────────────────
def extract_text(content: bytes, filename: str) -> ExtractedDocument:
    """
    Extract and normalise the text of an uploaded résumé.

    Raises:
        UnsupportedFileTypeError: extension outside ALLOWED_EXTENSIONS.
        FileTooLargeError:        over MAX_UPLOAD_SIZE_MB.
        EmptyDocumentError:       no bytes, or no readable text.
        TextExtractionError:      the parser rejected the file.
    """
    extension = Path(filename or "").suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise UnsupportedFileTypeError(
            f"Unsupported format '{extension or filename}'. Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )

    size = len(content)
    if size == 0:
        raise EmptyDocumentError("Uploaded file is empty")
    limit = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if size > limit:
        raise FileTooLargeError(
            f"File too large ({size / (1024 * 1024):.1f} MB). Limit: {settings.MAX_UPLOAD_SIZE_MB}MB"
        )

    try:
        raw = _PARSERS[extension](content)
    except (zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        logger.warning(f"Could not parse {filename}: {e}")
        raise TextExtractionError(f"Failed to parse {extension[1:].upper()} file") from e
    except Exception as e:
        # pdfminer raises its own hierarchy for corrupt PDFs
        logger.error(f"Unexpected parser failure for {filename}: {e}", exc_info=True)
        raise TextExtractionError(f"Failed to parse {extension[1:].upper()} file") from e

    text = _clean_text(raw or "")
    if not text:
        raise EmptyDocumentError("No readable content found in the file")

    logger.info(f"Extracted {len(text)} chars from {filename} ({size} bytes).")
    return ExtractedDocument(text=text, file_type=extension[1:], file_size=size)

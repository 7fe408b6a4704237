"""
test_text_extraction.py
~~~~~~~~~~~~~~~~~~~~~~~
Résumé text extraction for DOCX / XLSX / PDF uploads.
"""
from __future__ import annotations

import io

import pytest
from docx import Document
from openpyxl import Workbook
import polars as pl

from app.core.config import settings
from app.services import text_extraction
from app.services.text_extraction import (
    EmptyDocumentError,
    FileTooLargeError,
    TextExtractionError,
    UnsupportedFileTypeError,
    extract_text,
    mark_empty_fields,
)


OLE2_HEADER = b"\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1"


def make_docx(paragraphs=(), table=None) -> bytes:
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    if table:
        grid = doc.add_table(rows=len(table), cols=len(table[0]))
        for r, row in enumerate(table):
            for c, value in enumerate(row):
                grid.cell(r, c).text = value
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def make_xlsx(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class TestDocx:

    def test_paragraphs_and_tables(self):
        content = make_docx(
            ["Jane Doe", "Senior Nanny"],
            table=[["Email", "jane@example.com"], ["Phone", "+44 7700 900123"]],
        )
        extracted = extract_text(content, "cv.docx")
        assert extracted.file_type == "docx"
        assert extracted.file_size == len(content)
        assert "Senior Nanny" in extracted.text
        assert "Email jane@example.com" in extracted.text

    def test_blank_template_fields_are_marked(self):
        extracted = extract_text(make_docx(["Full Name: Jane Doe", "Nationality:", "Languages:  "]), "form.docx")
        assert "Full Name: Jane Doe" in extracted.text
        assert "Nationality: [empty]" in extracted.text
        assert "Languages: [empty]" in extracted.text

    def test_empty_document(self):
        with pytest.raises(EmptyDocumentError):
            extract_text(make_docx(["", "   "]), "blank.docx")

    def test_corrupt_archive(self):
        with pytest.raises(TextExtractionError, match="DOCX"):
            extract_text(b"PK\x03\x04 not really a zip", "broken.docx")


class TestXlsx:

    def test_rows_become_tab_separated_lines(self):
        content = make_xlsx([["Name", "Jane Doe"], [None, None], ["Years", 10]])
        extracted = extract_text(content, "cv.xlsx")
        assert extracted.file_type == "xlsx"
        assert extracted.text.splitlines() == ["Name\tJane Doe", "Years\t10"]

    def test_legacy_xls_rows(self, monkeypatch):
        calls = []

        def fake_read_excel(source, **kwargs):
            calls.append(kwargs)
            return {"Sheet1": pl.DataFrame({
                "column_1": ["Name", None, "Years"],
                "column_2": ["Jane Doe", None, "10"],
            })}

        monkeypatch.setattr(text_extraction.pl, "read_excel", fake_read_excel)
        extracted = extract_text(OLE2_HEADER + b"workbook", "legacy.XLS")
        assert extracted.file_type == "xls"
        assert extracted.text.splitlines() == ["Name\tJane Doe", "Years\t10"]
        assert calls[0]["sheet_id"] == 0
        assert calls[0]["has_header"] is False

    def test_corrupt_xls(self):
        with pytest.raises(TextExtractionError, match="XLS"):
            extract_text(OLE2_HEADER + b"not really a workbook", "broken.xls")


class TestGuards:

    def test_unsupported_extension(self):
        with pytest.raises(UnsupportedFileTypeError):
            extract_text(b"Jane Doe", "cv.txt")

    def test_empty_bytes(self):
        with pytest.raises(EmptyDocumentError):
            extract_text(b"", "cv.pdf")

    def test_too_large(self, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 0)
        with pytest.raises(FileTooLargeError):
            extract_text(make_docx(["Jane"]), "cv.docx")

    def test_garbage_pdf(self):
        with pytest.raises((TextExtractionError, EmptyDocumentError)):
            extract_text(b"%PDF-1.4\nthis is not a pdf body", "cv.pdf")

    def test_preview_is_capped(self):
        extracted = extract_text(make_docx(["word " * 400]), "long.docx")
        assert len(extracted.content_preview) == 503
        assert extracted.content_preview.endswith("...")


def test_mark_empty_fields():
    assert mark_empty_fields("Name: Jane\nDOB:\n  Notes  ") == "Name: Jane\nDOB: [empty]\nNotes"

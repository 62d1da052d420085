"""
Local extraction for Office Open XML documents.

These run after the Docling API in their chains. Legacy binary formats
(.doc, .ppt, .xls) have no local strategy.
"""

from pathlib import Path

import docx
import openpyxl
from pptx import Presentation

from app.models.schemas import ExtractedDocument, ExtractedPage, TableRef
from app.utils.exceptions import ExtractionError
from app.utils.helpers import generate_id
from domains.document_ingest.extractors.base import build_document, rows_to_markdown


def _core_metadata(props) -> dict:
    return {
        "title": props.title,
        "author": props.author,
        "subject": props.subject,
        "keywords": props.keywords,
        "created_date": props.created,
    }


def _table_rows(table) -> list[list[str]]:
    return [[cell.text for cell in row.cells] for row in table.rows]


def _heading_level(style_name: str) -> int:
    if style_name == "Title":
        return 1
    if style_name.startswith("Heading "):
        level = style_name.removeprefix("Heading ").strip()
        if level.isdigit():
            return min(int(level), 6)
    return 0


class DocxExtractor:
    """Word documents as a single page; headings become markdown headings."""

    name = "docx"

    def extract(self, path: Path) -> ExtractedDocument:
        try:
            document = docx.Document(str(path))
        except Exception as e:
            raise ExtractionError(f"DOCX parsing failed: {e}") from e

        lines = []
        for paragraph in document.paragraphs:
            text = paragraph.text.strip()
            if not text:
                continue
            level = _heading_level(paragraph.style.name if paragraph.style else "")
            lines.append(f"{'#' * level} {text}" if level else text)

        tables = []
        for table in document.tables:
            content = rows_to_markdown(_table_rows(table))
            if content:
                tables.append(TableRef(id=generate_id("tbl"), content=content, page_number=1))

        page = ExtractedPage(page_number=1, content="\n\n".join(lines), tables=tables)
        return build_document(path, [page], **_core_metadata(document.core_properties))


class PptxExtractor:
    """One page per slide, including tables and speaker notes."""

    name = "pptx"

    def extract(self, path: Path) -> ExtractedDocument:
        try:
            presentation = Presentation(str(path))
        except Exception as e:
            raise ExtractionError(f"PPTX parsing failed: {e}") from e

        pages = [
            self._extract_slide(slide, number)
            for number, slide in enumerate(presentation.slides, start=1)
        ]
        return build_document(path, pages, **_core_metadata(presentation.core_properties))

    def _extract_slide(self, slide, number: int) -> ExtractedPage:
        parts = []
        tables = []

        for shape in slide.shapes:
            if getattr(shape, "has_text_frame", False) and shape.text_frame.text.strip():
                parts.append(shape.text_frame.text.strip())
            if getattr(shape, "has_table", False):
                content = rows_to_markdown(_table_rows(shape.table))
                if content:
                    tables.append(TableRef(id=generate_id("tbl"), content=content, page_number=number))

        if slide.has_notes_slide:
            notes = slide.notes_slide.notes_text_frame.text.strip()
            if notes:
                parts.append(f"Notes: {notes}")

        return ExtractedPage(page_number=number, content="\n\n".join(parts), tables=tables)


class XlsxExtractor:
    """One page per worksheet, rendered as a markdown table under the sheet name."""

    name = "xlsx"

    def extract(self, path: Path) -> ExtractedDocument:
        try:
            workbook = openpyxl.load_workbook(str(path), read_only=True, data_only=True)
        except Exception as e:
            raise ExtractionError(f"XLSX parsing failed: {e}") from e

        try:
            pages = []
            for number, sheet in enumerate(workbook.worksheets, start=1):
                rows = list(sheet.iter_rows(values_only=True))
                table = rows_to_markdown(rows)
                content = f"## {sheet.title}\n\n{table}" if table else f"## {sheet.title}"
                pages.append(ExtractedPage(page_number=number, content=content))

            props = workbook.properties
            metadata = {
                "title": props.title,
                "author": props.creator,
                "subject": props.subject,
                "keywords": props.keywords,
                "created_date": props.created,
            }
        finally:
            workbook.close()

        return build_document(path, pages, **metadata)

"""Local PDF extraction with pdfplumber, used when the Docling API fails."""

from pathlib import Path

import pdfplumber

from app.models.schemas import ExtractedDocument, ExtractedPage, TableRef
from app.utils.exceptions import ExtractionError
from app.utils.helpers import generate_id
from domains.document_ingest.extractors.base import build_document, rows_to_markdown


class PdfPlumberExtractor:
    """Page-aware PDF text, table and metadata extraction."""

    name = "pdfplumber"

    def extract(self, path: Path) -> ExtractedDocument:
        try:
            with pdfplumber.open(str(path)) as pdf:
                info = pdf.metadata or {}
                pages = [
                    self._extract_page(page, number)
                    for number, page in enumerate(pdf.pages, start=1)
                ]
        except Exception as e:
            raise ExtractionError(f"PDF parsing failed: {e}") from e

        return build_document(
            path,
            pages,
            title=info.get("Title"),
            author=info.get("Author"),
            subject=info.get("Subject"),
            keywords=info.get("Keywords"),
            created_date=info.get("CreationDate"),
        )

    def _extract_page(self, page, number: int) -> ExtractedPage:
        tables = []
        for rows in page.extract_tables() or []:
            content = rows_to_markdown(rows)
            if content:
                tables.append(TableRef(id=generate_id("tbl"), content=content, page_number=number))

        return ExtractedPage(
            page_number=number,
            content=page.extract_text() or "",
            tables=tables,
        )

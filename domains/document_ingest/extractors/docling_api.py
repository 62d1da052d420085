"""
Network extraction through the Docling conversion API.

The service accepts a multipart upload at ``POST /convert`` and answers with
``{text, pages, metadata}``. Any transport error, timeout, non-success status
or malformed payload raises ``ExtractionError`` so the chain can fall back to
a local strategy; nothing is retried here.
"""

from pathlib import Path
from typing import Any, Optional

import httpx
from loguru import logger

from app.models.schemas import ExtractedDocument, ExtractedPage, ImageRef, TableRef
from app.utils.config import get_settings
from app.utils.exceptions import ExtractionError
from app.utils.helpers import generate_id
from domains.document_ingest.extractors.base import build_document, pages_from_text


class DoclingApiExtractor:
    """Extraction strategy backed by the Docling API."""

    name = "docling-api"

    def __init__(
        self,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        settings = get_settings()
        self.api_url = (api_url or settings.docling_api_url).rstrip("/")
        self.timeout = timeout or settings.docling_timeout
        self.http = http_client or httpx.Client(timeout=self.timeout)

    def extract(self, path: Path) -> ExtractedDocument:
        try:
            with path.open("rb") as fh:
                response = self.http.post(
                    f"{self.api_url}/convert",
                    files={"file": (path.name, fh)},
                    timeout=self.timeout,
                )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ExtractionError(f"Docling API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ExtractionError(f"Docling API unavailable: {e}") from e
        except ValueError as e:
            raise ExtractionError(f"Docling API returned invalid JSON: {e}") from e

        document = self.parse_response(path, payload)
        logger.debug(f"Docling API extracted {len(document.pages)} pages from {path.name}")
        return document

    def parse_response(self, path: Path, payload: Any) -> ExtractedDocument:
        """Normalize a Docling API payload."""
        if not isinstance(payload, dict):
            raise ExtractionError("Docling API returned an unexpected payload")

        raw_pages = payload.get("pages") or []
        if not isinstance(raw_pages, list):
            raise ExtractionError("Docling API returned malformed pages")

        pages = [self._parse_page(raw, index) for index, raw in enumerate(raw_pages, start=1)]
        text = payload.get("text")
        if not pages and text:
            pages = pages_from_text(text)

        metadata = payload.get("metadata") or {}
        return build_document(
            path,
            pages,
            text=text or None,
            title=metadata.get("title"),
            author=metadata.get("author"),
            subject=metadata.get("subject"),
            keywords=metadata.get("keywords"),
            created_date=metadata.get("created_date"),
        )

    def _parse_page(self, raw: Any, index: int) -> ExtractedPage:
        if not isinstance(raw, dict):
            raise ExtractionError(f"Docling API returned malformed page {index}")

        number = raw.get("page_number") or index
        return ExtractedPage(
            page_number=number,
            content=raw.get("content") or raw.get("text") or "",
            tables=[
                TableRef(
                    id=generate_id("tbl"),
                    content=table["content"],
                    caption=table.get("caption"),
                    page_number=number,
                )
                for table in raw.get("tables") or []
                if isinstance(table, dict) and table.get("content")
            ],
            images=[
                ImageRef(
                    id=generate_id("img"),
                    file_path=image.get("path") or image["file_path"],
                    caption=image.get("caption"),
                    page_number=number,
                )
                for image in raw.get("images") or []
                if isinstance(image, dict) and (image.get("path") or image.get("file_path"))
            ],
        )

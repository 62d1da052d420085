"""
Document extractors.

``build_default_registry`` wires the extraction chains used by the service:
the Docling API first where it supports the format, then a local fallback.
"""

from typing import Optional

import httpx

from app.utils.config import Settings, get_settings
from domains.document_ingest.extractors.base import (
    ExtractionStrategy,
    ExtractorChain,
    ExtractorRegistry,
)
from domains.document_ingest.extractors.docling_api import DoclingApiExtractor
from domains.document_ingest.extractors.epub import EpubExtractor
from domains.document_ingest.extractors.office import DocxExtractor, PptxExtractor, XlsxExtractor
from domains.document_ingest.extractors.pdf import PdfPlumberExtractor
from domains.document_ingest.extractors.text import HtmlExtractor, PlainTextExtractor

__all__ = [
    "ExtractionStrategy",
    "ExtractorChain",
    "ExtractorRegistry",
    "build_default_registry",
]


def build_default_registry(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.Client] = None,
) -> ExtractorRegistry:
    """Create the extension -> strategy chain mapping."""
    settings = settings or get_settings()
    docling = DoclingApiExtractor(
        api_url=settings.docling_api_url,
        timeout=settings.docling_timeout,
        http_client=http_client,
    )

    registry = ExtractorRegistry(max_file_size=settings.max_file_size_bytes)
    registry.register([".pdf"], [docling, PdfPlumberExtractor()])
    registry.register([".docx"], [docling, DocxExtractor()])
    registry.register([".pptx"], [docling, PptxExtractor()])
    registry.register([".xlsx"], [docling, XlsxExtractor()])
    registry.register([".epub"], [docling, EpubExtractor()])
    registry.register([".doc", ".ppt", ".xls"], [docling])
    registry.register([".html", ".htm"], [HtmlExtractor()])
    registry.register([".md", ".txt"], [PlainTextExtractor()])
    return registry

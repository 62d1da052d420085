"""Plain text, markdown and HTML extraction."""

import re
from pathlib import Path

from bs4 import BeautifulSoup

from app.models.schemas import ExtractedDocument
from app.utils.exceptions import ExtractionError
from app.utils.helpers import clean_whitespace
from domains.document_ingest.extractors.base import build_document, pages_from_text

MARKDOWN_TITLE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ExtractionError(f"Could not read {path.name}: {e}") from e


class PlainTextExtractor:
    """Reads .txt and .md files, honouring form-feed page breaks."""

    name = "text"

    def extract(self, path: Path) -> ExtractedDocument:
        text = read_text(path)

        title = None
        if path.suffix.lower() == ".md":
            match = MARKDOWN_TITLE.search(text)
            if match:
                title = match.group(1)

        return build_document(path, pages_from_text(text), title=title)


class HtmlExtractor:
    """Visible text and head metadata from HTML documents."""

    name = "html"

    def extract(self, path: Path) -> ExtractedDocument:
        soup = BeautifulSoup(read_text(path), "html.parser")

        for tag in soup(["script", "style", "noscript", "template"]):
            tag.decompose()

        # Keep heading structure so chunking can track sections
        for tag in soup.find_all(HEADING_TAGS):
            level = int(tag.name[1])
            tag.string = f"\n{'#' * level} {tag.get_text(' ', strip=True)}\n"

        title = soup.title.get_text(strip=True) if soup.title else None
        if soup.title:
            soup.title.decompose()

        body = soup.body or soup
        text = clean_whitespace(body.get_text("\n"))

        return build_document(
            path,
            pages_from_text(text),
            title=title,
            author=_meta_content(soup, "author"),
            subject=_meta_content(soup, "description"),
            keywords=_meta_content(soup, "keywords"),
        )


def _meta_content(soup: BeautifulSoup, name: str):
    tag = soup.find("meta", attrs={"name": re.compile(f"^{name}$", re.IGNORECASE)})
    return tag.get("content") if tag else None

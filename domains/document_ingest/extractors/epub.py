"""
EPUB extraction.

An EPUB is a zip archive whose OPF package lists the reading order (spine)
of XHTML documents. Each spine document becomes one page.
"""

import posixpath
import zipfile
import xml.etree.ElementTree as ET
from pathlib import Path
from urllib.parse import unquote

from bs4 import BeautifulSoup

from app.models.schemas import ExtractedDocument, ExtractedPage
from app.utils.exceptions import ExtractionError
from app.utils.helpers import clean_whitespace
from domains.document_ingest.extractors.base import build_document

CONTAINER_PATH = "META-INF/container.xml"
NAMESPACES = {
    "container": "urn:oasis:names:tc:opendocument:xmlns:container",
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
}


class EpubExtractor:
    """Spine-ordered chapter text plus Dublin Core metadata."""

    name = "epub"

    def extract(self, path: Path) -> ExtractedDocument:
        try:
            with zipfile.ZipFile(path) as archive:
                opf_path = self._package_path(archive)
                package = ET.fromstring(archive.read(opf_path))
                members = set(archive.namelist())
                chapters = [
                    self._chapter_text(archive.read(href))
                    for href in self._spine_hrefs(package, opf_path)
                    if href in members
                ]
        except (zipfile.BadZipFile, KeyError, ET.ParseError) as e:
            raise ExtractionError(f"Invalid EPUB: {e}") from e

        pages = [
            ExtractedPage(page_number=number, content=text)
            for number, text in enumerate((c for c in chapters if c), start=1)
        ]
        return build_document(
            path,
            pages,
            title=self._dc(package, "title"),
            author=self._dc(package, "creator"),
            subject=self._dc(package, "subject"),
            created_date=self._dc(package, "date"),
        )

    def _package_path(self, archive: zipfile.ZipFile) -> str:
        container = ET.fromstring(archive.read(CONTAINER_PATH))
        rootfile = container.find(".//container:rootfile", NAMESPACES)
        if rootfile is None or not rootfile.get("full-path"):
            raise ExtractionError("EPUB container has no rootfile")
        return rootfile.get("full-path")

    def _spine_hrefs(self, package: ET.Element, opf_path: str) -> list[str]:
        base = posixpath.dirname(opf_path)
        manifest = {
            item.get("id"): item.get("href")
            for item in package.findall("opf:manifest/opf:item", NAMESPACES)
        }
        hrefs = []
        for itemref in package.findall("opf:spine/opf:itemref", NAMESPACES):
            href = manifest.get(itemref.get("idref"))
            if href:
                # Manifest hrefs are URLs: percent-encoded, possibly with a fragment
                href = unquote(href.split("#", 1)[0])
                hrefs.append(posixpath.normpath(posixpath.join(base, href)))
        return hrefs

    def _chapter_text(self, raw: bytes) -> str:
        soup = BeautifulSoup(raw, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        body = soup.body or soup
        return clean_whitespace(body.get_text("\n"))

    def _dc(self, package: ET.Element, field: str):
        element = package.find(f"opf:metadata/dc:{field}", NAMESPACES)
        return element.text if element is not None else None

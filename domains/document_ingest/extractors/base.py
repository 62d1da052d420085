"""
Extraction building blocks.

An extraction strategy turns a file into an ``ExtractedDocument``. Strategies
for one file type are tried in order by an ``ExtractorChain``; the
``ExtractorRegistry`` picks the chain by file extension.
"""

from pathlib import Path
from typing import Any, Iterable, Optional, Protocol, Sequence

from loguru import logger

from app.models.schemas import DocumentMetadata, ExtractedDocument, ExtractedPage
from app.utils.exceptions import ExtractionError
from app.utils.helpers import format_bytes, get_file_extension, split_pages


class ExtractionStrategy(Protocol):
    name: str

    def extract(self, path: Path) -> ExtractedDocument:
        ...


def pages_from_texts(texts: Iterable[str]) -> list[ExtractedPage]:
    """Number a sequence of page texts from 1."""
    return [
        ExtractedPage(page_number=number, content=text)
        for number, text in enumerate(texts, start=1)
    ]


def pages_from_text(text: str) -> list[ExtractedPage]:
    """Split text on page-break markers, dropping a trailing empty page."""
    texts = split_pages(text)
    while texts and not texts[-1].strip():
        texts.pop()
    return pages_from_texts(texts)


def metadata_value(value: Any) -> Optional[str]:
    """Coerce a raw metadata value (bytes, list, date...) to a clean string."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    elif isinstance(value, (list, tuple)):
        value = ", ".join(str(v) for v in value if v)
    elif hasattr(value, "isoformat"):
        value = value.isoformat()
    value = str(value).strip()
    return value or None


def rows_to_markdown(rows: Sequence[Sequence[Any]]) -> str:
    """Render table rows as a markdown table, first row as header."""
    cleaned = [
        ["" if cell is None else str(cell).replace("\n", " ").strip() for cell in row]
        for row in rows
        if row and any(cell not in (None, "") for cell in row)
    ]
    if not cleaned:
        return ""

    width = max(len(row) for row in cleaned)
    cleaned = [row + [""] * (width - len(row)) for row in cleaned]

    lines = ["| " + " | ".join(cleaned[0]) + " |", "|" + " --- |" * width]
    lines.extend("| " + " | ".join(row) + " |" for row in cleaned[1:])
    return "\n".join(lines)


def build_document(
    path: Path,
    pages: list[ExtractedPage],
    text: Optional[str] = None,
    **metadata: Any,
) -> ExtractedDocument:
    """
    Assemble a normalized document.

    ``page_count`` defaults to the number of pages the source produced. A
    source without pages still gets one empty page so that chunking always
    has a unit to work with.
    """
    page_count = metadata.pop("page_count", None)
    if page_count is None:
        page_count = len(pages)
    if not pages:
        pages = [ExtractedPage(page_number=1, content="")]

    if text is None:
        text = "\n\n".join(page.content for page in pages if page.content)

    try:
        file_size = path.stat().st_size
    except OSError:
        file_size = 0

    fields = {key: metadata_value(value) for key, value in metadata.items()}
    return ExtractedDocument(
        text=text,
        pages=pages,
        metadata=DocumentMetadata(
            title=fields.pop("title", None) or path.stem,
            page_count=page_count,
            file_type=get_file_extension(path) or "unknown",
            file_size=file_size,
            **fields,
        ),
    )


class ExtractorChain:
    """Tries strategies in order, stopping at the first success."""

    def __init__(self, strategies: Sequence[ExtractionStrategy]):
        if not strategies:
            raise ValueError("An extractor chain needs at least one strategy")
        self.strategies = list(strategies)

    @property
    def names(self) -> list[str]:
        return [strategy.name for strategy in self.strategies]

    def extract(self, path: Path) -> ExtractedDocument:
        """
        Extract ``path`` with the first strategy that succeeds.

        Raises:
            ExtractionError: carrying one error per attempted strategy
        """
        errors: list[str] = []

        for strategy in self.strategies:
            try:
                document = strategy.extract(path)
            except Exception as e:
                errors.append(f"{strategy.name}: {e}")
                logger.warning(f"{strategy.name} failed for {path.name}: {e}")
                continue

            if errors:
                logger.info(f"Extracted {path.name} with fallback {strategy.name}")
            return document

        raise ExtractionError(
            f"All extraction strategies failed for {path.name}: {'; '.join(errors)}",
            errors,
        )


class ExtractorRegistry:
    """Extractor chains keyed by file extension."""

    def __init__(self, max_file_size: Optional[int] = None):
        self.max_file_size = max_file_size
        self._chains: dict[str, ExtractorChain] = {}

    def register(self, extensions: Iterable[str], strategies: Sequence[ExtractionStrategy]) -> None:
        chain = ExtractorChain(strategies)
        for extension in extensions:
            self._chains[extension.lower()] = chain

    def supported_extensions(self) -> set[str]:
        return set(self._chains)

    def get(self, path: Path) -> Optional[ExtractorChain]:
        return self._chains.get(path.suffix.lower())

    def extract(self, path: Path) -> ExtractedDocument:
        """
        Validate ``path`` and run the chain registered for its extension.

        Raises:
            ExtractionError: for missing, oversized or unsupported files, or
                when every strategy fails
        """
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            raise ExtractionError(f"File not found: {path}") from e

        if self.max_file_size is not None and size > self.max_file_size:
            raise ExtractionError(
                f"File too large ({format_bytes(size)}, max {format_bytes(self.max_file_size)})"
            )

        chain = self.get(path)
        if chain is None:
            raise ExtractionError(f"Unsupported file type: {path.suffix or path.name}")

        logger.debug(f"Extracting {path.name} via {' -> '.join(chain.names)}")
        return chain.extract(path)

"""
Chunking and embedding of extracted documents.

Chunks are built per page and never span a page boundary. Paragraphs are
packed into a character budget derived from the token budget, with the tail
of the previous chunk carried over as overlap.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from loguru import logger

from app.models.schemas import ChunkType, ExtractedDocument, ExtractedPage, ImageRef, TableRef
from app.utils.config import get_settings
from app.utils.embedding import EmbeddingClient
from app.utils.helpers import hash_text, split_sentences

HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def content_hash(content: str) -> str:
    """SHA256 hex digest identifying chunk content."""
    return hash_text(content)


def is_code_block(content: str) -> bool:
    stripped = content.strip()
    return len(stripped) > 6 and stripped.startswith("```") and stripped.endswith("```")


@dataclass
class ChunkDraft:
    """A chunk before embedding and indexing."""
    content: str
    page_number: int
    chunk_type: ChunkType = "text"
    section_title: Optional[str] = None
    hierarchy: List[str] = field(default_factory=list)
    tables: List[TableRef] = field(default_factory=list)
    images: List[ImageRef] = field(default_factory=list)

    @property
    def content_hash(self) -> str:
        return content_hash(self.content)


@dataclass
class EmbeddedChunk:
    draft: ChunkDraft
    embedding: List[float]
    searchable: bool


class _Sections:
    """Tracks the markdown heading path while walking a document."""

    def __init__(self, title: Optional[str]):
        self.title = title
        self.stack: list[tuple[int, str]] = []

    def enter(self, level: int, text: str):
        while self.stack and self.stack[-1][0] >= level:
            self.stack.pop()
        self.stack.append((level, text))

    @property
    def section_title(self) -> Optional[str]:
        return self.stack[-1][1] if self.stack else None

    @property
    def hierarchy(self) -> list[str]:
        path = [self.title] if self.title else []
        return path + [text for _, text in self.stack]


class Chunker:
    """Splits an ExtractedDocument into bounded, overlapping chunks."""

    def __init__(
        self,
        chunk_size_tokens: Optional[int] = None,
        overlap_tokens: Optional[int] = None,
        chars_per_token: Optional[int] = None,
    ):
        settings = get_settings()
        chars_per_token = chars_per_token or settings.chars_per_token
        self.max_chars = (chunk_size_tokens or settings.chunk_size_tokens) * chars_per_token
        if overlap_tokens is None:
            overlap_tokens = settings.chunk_overlap_tokens
        self.overlap_chars = overlap_tokens * chars_per_token

        if self.overlap_chars >= self.max_chars:
            raise ValueError("Chunk overlap must be smaller than the chunk size")

    def chunk(self, document: ExtractedDocument) -> list[ChunkDraft]:
        sections = _Sections(document.metadata.title)
        drafts: list[ChunkDraft] = []

        for page in document.pages:
            drafts.extend(self._chunk_page(page, sections))
            drafts.extend(self._table_chunks(page, sections))

        return drafts

    def _chunk_page(self, page: ExtractedPage, sections: _Sections) -> list[ChunkDraft]:
        content = page.content.strip()
        if not content:
            return []

        drafts: list[ChunkDraft] = []
        buffer = ""

        def flush():
            if buffer.strip():
                drafts.append(self._draft(buffer.strip(), page, sections))

        for paragraph in PARAGRAPH_BREAK.split(content):
            paragraph = paragraph.strip()
            if not paragraph:
                continue

            heading = HEADING.match(paragraph.splitlines()[0])
            if heading:
                # Sections start a fresh chunk
                flush()
                buffer = ""
                sections.enter(len(heading.group(1)), heading.group(2))

            for piece in split_sentences(paragraph, self.max_chars):
                if not buffer:
                    buffer = piece
                elif len(buffer) + 2 + len(piece) <= self.max_chars:
                    buffer = f"{buffer}\n\n{piece}"
                else:
                    flush()
                    tail = self._overlap_tail(buffer, len(piece))
                    buffer = f"{tail}\n\n{piece}" if tail else piece

        flush()
        return drafts

    def _overlap_tail(self, buffer: str, incoming: int) -> str:
        room = min(self.overlap_chars, self.max_chars - incoming - 2)
        if room <= 0:
            return ""
        tail = buffer[-room:]
        # Avoid starting mid-word
        if len(buffer) > room and " " in tail:
            tail = tail[tail.index(" ") + 1:]
        return tail.strip()

    def _draft(self, content: str, page: ExtractedPage, sections: _Sections) -> ChunkDraft:
        return ChunkDraft(
            content=content,
            page_number=page.page_number,
            chunk_type="code" if is_code_block(content) else "text",
            section_title=sections.section_title,
            hierarchy=sections.hierarchy,
            images=list(page.images),
        )

    def _table_chunks(self, page: ExtractedPage, sections: _Sections) -> list[ChunkDraft]:
        drafts = []
        for table in page.tables:
            text = f"{table.caption}\n\n{table.content}" if table.caption else table.content
            for piece in split_sentences(text.strip(), self.max_chars):
                drafts.append(ChunkDraft(
                    content=piece,
                    page_number=page.page_number,
                    chunk_type="table",
                    section_title=sections.section_title,
                    hierarchy=sections.hierarchy,
                    tables=[table],
                ))
        return drafts


class ChunkEmbedder:
    """
    Attaches embeddings to chunk drafts.

    A chunk whose embedding cannot be generated gets a zero vector and is
    marked non-searchable; the rest of the document is unaffected.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        dimension: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        settings = get_settings()
        self.client = client
        self.dimension = dimension or settings.embedding_dimension
        self.batch_size = batch_size or settings.embedding_batch_size

    def embed(
        self,
        drafts: Sequence[ChunkDraft],
        reuse: Optional[Dict[str, List[float]]] = None,
    ) -> list[EmbeddedChunk]:
        """
        Embed ``drafts``, reusing vectors from ``reuse`` (keyed by content
        hash) for content that is already indexed.
        """
        reuse = reuse or {}
        vectors: list[Optional[List[float]]] = [None] * len(drafts)
        missing: list[int] = []

        for index, draft in enumerate(drafts):
            previous = reuse.get(draft.content_hash)
            if previous is not None and len(previous) == self.dimension:
                vectors[index] = previous
            else:
                missing.append(index)

        if reuse and len(missing) < len(drafts):
            logger.debug(f"Reusing {len(drafts) - len(missing)} unchanged chunk embeddings")

        if missing:
            generated = self.client.embed_batch(
                [drafts[i].content for i in missing],
                batch_size=self.batch_size,
            )
            for index, vector in zip(missing, generated):
                vectors[index] = vector

        results = []
        failed = 0
        for draft, vector in zip(drafts, vectors):
            if vector is None or len(vector) != self.dimension:
                failed += 1
                results.append(EmbeddedChunk(draft, [0.0] * self.dimension, False))
            else:
                results.append(EmbeddedChunk(draft, vector, True))

        if failed:
            logger.warning(f"{failed}/{len(drafts)} chunks indexed without embeddings")
        return results

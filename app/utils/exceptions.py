"""Custom exceptions for the document ingestion pipeline."""

from typing import List, Optional


class IngestError(Exception):
    """Base exception for all ingestion errors."""
    pass


class WatchError(IngestError):
    """Filesystem watch failure for a single library."""

    def __init__(self, message: str, library_id: Optional[str] = None):
        super().__init__(message)
        self.library_id = library_id


class ExtractionError(IngestError):
    """
    Document extraction failure.

    When raised by an extractor chain, ``errors`` holds one entry per
    strategy that was attempted, in order.
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class EmbeddingError(IngestError):
    """Embedding generation failed for a single text."""
    pass


class QueueError(IngestError):
    """Stream append, read or acknowledge failure."""
    pass


class SearchIndexError(IngestError):
    """Search index schema or write failure."""
    pass

"""
RediSearch vector index over chunk JSON documents.

Schema lifecycle plus the chunk write path. A document's chunks live at
``chunk:{library_id}:{document_id}:{chunk_index}``; writing a document
replaces its previous chunk set, removing keys beyond the new chunk count.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from redis.exceptions import RedisError, ResponseError

from app.models.schemas import DocumentChunk
from app.utils.config import get_settings
from app.utils.exceptions import SearchIndexError
from app.utils.helpers import short_hash
from app.utils.redis_client import RedisClient

CHUNK_PREFIX = "chunk:"
DOCUMENT_PREFIX = "document:"
MISSING_INDEX_ERRORS = ("unknown index", "no such index")


def document_id_for(library_id: str, file_path: str) -> str:
    """Stable document id for a file within a library."""
    return short_hash(f"{library_id}:{file_path}")


def chunk_key(library_id: str, document_id: str, chunk_index: int) -> str:
    return f"{CHUNK_PREFIX}{library_id}:{document_id}:{chunk_index}"


def document_key(document_id: str) -> str:
    return f"{DOCUMENT_PREFIX}{document_id}"


def index_schema(dimension: int) -> List[Any]:
    """FT.CREATE SCHEMA arguments for chunk documents."""
    return [
        "$.embedding", "AS", "embedding", "VECTOR", "FLAT", "6",
        "TYPE", "FLOAT32", "DIM", str(dimension), "DISTANCE_METRIC", "COSINE",
        "$.library", "AS", "library", "TAG",
        "$.document_id", "AS", "document_id", "TAG",
        "$.document_name", "AS", "document_name", "TEXT",
        "$.file_path", "AS", "file_path", "TEXT",
        "$.chunk_type", "AS", "chunk_type", "TAG",
        "$.chunk_index", "AS", "chunk_index", "NUMERIC", "SORTABLE",
        "$.page_number", "AS", "page_number", "NUMERIC", "SORTABLE",
        "$.section_title", "AS", "section_title", "TEXT",
        "$.content", "AS", "content", "TEXT",
        "$.searchable", "AS", "searchable", "TAG",
    ]


def _is_missing_index(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in MISSING_INDEX_ERRORS)


class IndexWriter:
    """Owns the chunk index schema and writes chunk documents."""

    def __init__(
        self,
        redis_client: RedisClient,
        index_name: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        settings = get_settings()
        self.redis = redis_client
        self.index_name = index_name or settings.chunk_index_name
        self.dimension = dimension or settings.embedding_dimension

    # -- Schema ---------------------------------------------------------------

    def index_exists(self) -> bool:
        try:
            self.redis.execute("FT.INFO", self.index_name)
            return True
        except ResponseError as e:
            if _is_missing_index(e):
                return False
            raise SearchIndexError(f"Could not inspect index {self.index_name}: {e}") from e
        except RedisError as e:
            raise SearchIndexError(f"Could not inspect index {self.index_name}: {e}") from e

    def drop_index(self) -> bool:
        """Drop the index definition, keeping the chunk documents."""
        try:
            self.redis.execute("FT.DROPINDEX", self.index_name)
            logger.info(f"Dropped index {self.index_name}")
            return True
        except ResponseError as e:
            if _is_missing_index(e):
                return False
            raise SearchIndexError(f"Could not drop index {self.index_name}: {e}") from e
        except RedisError as e:
            raise SearchIndexError(f"Could not drop index {self.index_name}: {e}") from e

    def ensure_index(self, recreate: bool = True) -> bool:
        """
        Make sure the chunk index exists with the current schema.

        Args:
            recreate: Drop and rebuild the index even if it exists

        Returns:
            True if the index was created, False if it already existed
            (including one created concurrently by another process)

        Raises:
            SearchIndexError: if the index cannot be created
        """
        if recreate:
            self.drop_index()
        elif self.index_exists():
            logger.info(f"Index {self.index_name} already exists")
            return False

        try:
            self.redis.execute(
                "FT.CREATE", self.index_name,
                "ON", "JSON",
                "PREFIX", "1", CHUNK_PREFIX,
                "SCHEMA", *index_schema(self.dimension),
            )
        except ResponseError as e:
            if "already exists" in str(e).lower():
                logger.warning(f"Index {self.index_name} already created elsewhere: {e}")
                return False
            raise SearchIndexError(f"Could not create index {self.index_name}: {e}") from e
        except RedisError as e:
            raise SearchIndexError(f"Could not create index {self.index_name}: {e}") from e

        logger.success(f"Created index {self.index_name} (dim={self.dimension})")
        return True

    # -- Documents ------------------------------------------------------------

    def chunk_keys(self, library_id: str, document_id: str) -> List[str]:
        return self.redis.scan_keys(f"{CHUNK_PREFIX}{library_id}:{document_id}:*")

    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Load the document record, or None if it was never indexed."""
        try:
            return self.redis.json_get(document_key(document_id))
        except RedisError as e:
            raise SearchIndexError(f"Could not read document {document_id}: {e}") from e

    def existing_chunks(self, library_id: str, document_id: str) -> Dict[str, List[float]]:
        """Embeddings of the stored searchable chunks, keyed by content hash."""
        embeddings: Dict[str, List[float]] = {}
        try:
            for key in self.chunk_keys(library_id, document_id):
                stored = self.redis.json_get(key)
                if stored and stored.get("searchable") and stored.get("content_hash"):
                    embeddings[stored["content_hash"]] = stored.get("embedding") or []
        except RedisError as e:
            logger.warning(f"Could not load existing chunks for {document_id}: {e}")
            return {}
        return embeddings

    def write_document(
        self,
        library_id: str,
        document_id: str,
        chunks: Sequence[DocumentChunk],
        document_record: Dict[str, Any],
    ) -> Tuple[int, int]:
        """
        Replace the stored chunk set of a document.

        Returns:
            (chunks written, stale chunks removed)

        Raises:
            SearchIndexError: on any Redis failure
        """
        documents = {
            chunk_key(library_id, document_id, chunk.chunk_index): chunk.model_dump(
                mode="json", exclude_none=True
            )
            for chunk in chunks
        }
        documents[document_key(document_id)] = document_record

        try:
            previous = set(self.chunk_keys(library_id, document_id))
            self.redis.json_set_many(documents)
            stale = sorted(previous - set(documents))
            removed = self.redis.delete(*stale)
        except RedisError as e:
            raise SearchIndexError(f"Could not write chunks for {document_id}: {e}") from e

        if removed:
            logger.debug(f"Removed {removed} stale chunks for {document_id}")
        return len(chunks), removed

    def delete_document(self, library_id: str, document_id: str) -> int:
        """
        Remove every chunk of a document and its document record.

        Returns:
            Number of chunks removed
        """
        try:
            keys = self.chunk_keys(library_id, document_id)
            removed = self.redis.delete(*keys)
            self.redis.delete(document_key(document_id))
        except RedisError as e:
            raise SearchIndexError(f"Could not delete chunks for {document_id}: {e}") from e

        logger.info(f"Deleted {removed} chunks for document {document_id}")
        return removed

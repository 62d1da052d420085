"""
Read access to library records and their progress counters.

Libraries are owned by an external registry and stored as ``library:{id}``
JSON documents. The pipeline only reads them, apart from the document and
chunk counters it keeps current.
"""

from loguru import logger
from pydantic import ValidationError

from app.models.schemas import Library
from app.utils.helpers import now_iso
from app.utils.redis_client import RedisClient

LIBRARY_KEY_PATTERN = "library:*"


def library_key(library_id: str) -> str:
    return f"library:{library_id}"


class LibraryRegistry:
    """Library lookups backed by RedisJSON."""

    def __init__(self, redis_client: RedisClient):
        self.redis = redis_client

    def get(self, library_id: str) -> Library | None:
        data = self.redis.json_get(library_key(library_id))
        if not data:
            return None
        return Library.model_validate(data)

    def list_libraries(self) -> list[Library]:
        """Load every library record, skipping malformed ones."""
        libraries = []
        for key in self.redis.scan_keys(LIBRARY_KEY_PATTERN):
            data = self.redis.json_get(key)
            if not data:
                continue
            try:
                libraries.append(Library.model_validate(data))
            except ValidationError as e:
                logger.warning(f"Skipping malformed library record {key}: {e}")
        return libraries

    def auto_scan_libraries(self) -> list[Library]:
        """Libraries whose folders should be watched."""
        return [library for library in self.list_libraries() if library.auto_scan]

    def adjust_stats(
        self,
        library_id: str,
        chunk_delta: int = 0,
        document_delta: int = 0,
        size_delta: int = 0,
    ) -> None:
        """
        Apply counter deltas to a library, clamping at zero.

        The increments are applied server-side, so concurrent consumers do
        not overwrite each other's updates. Failures are logged; statistics
        never fail a job.
        """
        key = library_key(library_id)
        try:
            updated = self.redis.json_increment_clamped(
                key,
                {
                    "document_count": document_delta,
                    "chunk_count": chunk_delta,
                    "total_size_bytes": size_delta,
                },
            )
            if not updated:
                logger.debug(f"Library {library_id} not found, skipping stats update")
                return

            self.redis.json_update(key, {"last_scanned": now_iso()})
        except Exception as e:
            logger.warning(f"Failed to update library stats for {library_id}: {e}")

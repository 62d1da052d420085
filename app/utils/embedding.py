"""
Chunk embeddings from a local Ollama server.

Each text is embedded with its own request; Ollama's embeddings endpoint
takes a single prompt. Vectors are checked against the index dimension and
kept in a bounded in-memory cache keyed by content hash.
"""

from collections import OrderedDict
from typing import List, Optional, Sequence

import httpx
from loguru import logger

from app.utils.config import get_settings
from app.utils.exceptions import EmbeddingError
from app.utils.helpers import hash_text

CACHE_SIZE = 2048


class EmbeddingClient:
    """Ollama embeddings client used by the chunk embedder."""

    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        dimension: Optional[int] = None,
        cache_size: int = CACHE_SIZE,
    ):
        settings = get_settings()
        self.url = f"{settings.ollama_url.rstrip('/')}/api/embeddings"
        self.model = settings.ollama_embedding_model
        self.dimension = dimension or settings.embedding_dimension
        self.batch_size = settings.embedding_batch_size
        self.http = http_client or httpx.Client(timeout=settings.embedding_timeout)
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()

    def embed(self, text: str) -> List[float]:
        """
        Request an embedding for ``text``.

        Raises:
            EmbeddingError: on transport failure, non-success response,
                malformed payload or a vector of the wrong dimension
        """
        try:
            response = self.http.post(self.url, json={"model": self.model, "prompt": text})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingError(f"Ollama embedding failed: {e}") from e

        vector = payload.get("embedding") if isinstance(payload, dict) else None
        if not vector:
            raise EmbeddingError("Ollama returned no embedding")
        if len(vector) != self.dimension:
            raise EmbeddingError(
                f"Embedding dimension {len(vector)} does not match index dimension {self.dimension}"
            )
        return [float(v) for v in vector]

    def try_embed(self, text: str) -> Optional[List[float]]:
        """Embed ``text``, returning None instead of raising."""
        if not text.strip():
            return None

        key = hash_text(text)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        try:
            vector = self.embed(text)
        except EmbeddingError as e:
            logger.warning(str(e))
            return None

        self._cache[key] = vector
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return vector

    def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
    ) -> List[Optional[List[float]]]:
        """
        Embed several texts; a failed item yields None without affecting
        the others.
        """
        batch_size = batch_size or self.batch_size
        batches = (len(texts) + batch_size - 1) // batch_size
        vectors: List[Optional[List[float]]] = []

        for number, start in enumerate(range(0, len(texts), batch_size), start=1):
            logger.debug(f"Embedding batch {number}/{batches}")
            vectors.extend(self.try_embed(text) for text in texts[start:start + batch_size])

        return vectors

    def close(self):
        """Release the underlying HTTP connection pool."""
        self.http.close()


# Global client instance
_embedding_client: Optional[EmbeddingClient] = None


def get_embedding_client() -> EmbeddingClient:
    """Get global embedding client instance."""
    global _embedding_client
    if _embedding_client is None:
        _embedding_client = EmbeddingClient()
    return _embedding_client

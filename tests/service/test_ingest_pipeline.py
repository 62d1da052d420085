"""
Service-level test for the ingestion pipeline.

Runs the publish -> consume -> extract -> chunk -> index flow against a real
Redis Stack (RedisJSON, Streams, RediSearch) started with Testcontainers, and
checks the observable outcome: searchable chunks in ``idx:chunks`` and a
completed job record. Embeddings come from a deterministic stand-in so the
test does not need Ollama.
"""

import sys
from pathlib import Path

import httpx
import pytest

# Add project root to path to allow absolute imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

redis_module = pytest.importorskip("testcontainers.redis", reason="testcontainers is required for service tests")

from app.models.schemas import Library
from app.utils.config import Settings
from app.utils.redis_client import RedisClient
from domains.document_ingest.chunking import Chunker
from domains.document_ingest.consumer import ConsumerLoop
from domains.document_ingest.extractors import build_default_registry
from domains.document_ingest.index_writer import IndexWriter, document_id_for
from domains.document_ingest.job_store import JobStore
from domains.document_ingest.library_registry import LibraryRegistry, library_key
from domains.document_ingest.processor import DocumentProcessor
from domains.document_ingest.publisher import JobPublisher
from tests.fakes import FakeEmbeddingClient

REDIS_STACK_IMAGE = "redis/redis-stack-server:7.2.0-v10"
STREAM = "stream:docling-test"
GROUP = "docling-processors"
INDEX = "idx:chunks-test"


@pytest.fixture(scope="module")
def redis_client():
    """Starts Redis Stack for the module; skips when Docker is unavailable."""
    try:
        container = redis_module.RedisContainer(REDIS_STACK_IMAGE)
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    client = RedisClient(client=container.get_client(decode_responses=True))
    yield client
    client.close()
    container.stop()


@pytest.fixture
def pipeline(redis_client, tmp_path):
    settings = Settings(_env_file=None, embedding_dimension=4, move_failed_files=False)
    redis_client.client.flushall()

    folder = tmp_path / "research"
    folder.mkdir()
    library = Library(id="research", name="Research", folder_path=str(folder))
    redis_client.json_set(library_key(library.id), library.model_dump())

    index = IndexWriter(redis_client, index_name=INDEX, dimension=4)
    index.ensure_index(recreate=True)

    unreachable = httpx.Client(transport=httpx.MockTransport(
        lambda request: httpx.Response(503)
    ))
    processor = DocumentProcessor(
        redis_client,
        extractors=build_default_registry(settings, http_client=unreachable),
        embedding_client=FakeEmbeddingClient(dimension=4),
        chunker=Chunker(chunk_size_tokens=50, overlap_tokens=10, chars_per_token=4),
        index_writer=index,
        settings=settings,
    )
    loop = ConsumerLoop(
        redis_client, processor,
        consumer_name="processor-test", stream_key=STREAM, group=GROUP, error_delay=0.0,
    )
    loop.block_ms = 100
    loop.ensure_group()
    publisher = JobPublisher(redis_client, stream_key=STREAM)
    return library, publisher, loop


def search_count(redis_client, query: str) -> int:
    return redis_client.execute("FT.SEARCH", INDEX, query, "NOCONTENT")[0]


def test_published_document_becomes_searchable(redis_client, pipeline):
    library, publisher, loop = pipeline
    path = Path(library.folder_path) / "field-notes.md"
    path.write_text("# Field Notes\n\nThe heron nests near the estuary.\n\n## Counts\n\nTwelve herons observed.")

    job = publisher.publish(library, str(path), "add")
    assert loop.poll_once() == 1

    assert JobStore(redis_client).get(job.id).status == "completed"
    assert search_count(redis_client, "@library:{research}") == 2
    assert search_count(redis_client, "heron") >= 1
    assert search_count(redis_client, "@searchable:{true}") == 2
    assert LibraryRegistry(redis_client).get(library.id).chunk_count == 2

    pending = redis_client.client.xpending(STREAM, GROUP)
    assert pending["pending"] == 0


def test_unlink_removes_document_from_index(redis_client, pipeline):
    library, publisher, loop = pipeline
    path = Path(library.folder_path) / "draft.txt"
    path.write_text("Temporary draft about estuary tides.")

    publisher.publish(library, str(path), "add")
    loop.poll_once()
    path.unlink()
    publisher.publish(library, str(path), "unlink")
    loop.poll_once()

    document_id = document_id_for(library.id, str(path))
    assert redis_client.scan_keys(f"chunk:{library.id}:{document_id}:*") == []
    assert search_count(redis_client, "tides") == 0
    assert LibraryRegistry(redis_client).get(library.id).document_count == 0

"""Shared fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root to path to allow absolute imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.models.schemas import Library
from app.utils.config import Settings
from tests.fakes import FakeEmbeddingClient, FakeRedisClient


@pytest.fixture
def fake_redis():
    return FakeRedisClient()


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingClient()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        embedding_dimension=4,
        chunk_size_tokens=50,
        chunk_overlap_tokens=10,
        chars_per_token=4,
        stability_window=0.5,
        consumer_error_delay=0.0,
    )


@pytest.fixture
def library(tmp_path):
    folder = tmp_path / "library"
    folder.mkdir()
    return Library(id="lib-research", name="Research", folder_path=str(folder))


@pytest.fixture
def stored_library(fake_redis, library):
    fake_redis.json_set(f"library:{library.id}", library.model_dump())
    return library

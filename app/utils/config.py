"""
Configuration management for the document ingestion service.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Service Configuration
    service_name: str = "docling"
    log_level: str = "INFO"
    health_port: int = 8080
    api_title: str = "Docling Ingestion Service"
    api_version: str = "1.0.0"

    # Redis Configuration
    redis_url: str = "redis://localhost:6379/0"

    # Queue Configuration
    stream_key: str = "stream:docling"
    consumer_group: str = "docling-processors"
    consumer_block_ms: int = 5000
    consumer_batch_size: int = 1
    consumer_error_delay: float = 5.0  # seconds

    # Docling API Configuration
    docling_api_url: str = "http://localhost:8000"
    docling_timeout: float = 300.0  # seconds

    # Ollama Configuration
    ollama_url: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text"
    embedding_dimension: int = 768
    embedding_batch_size: int = 10
    embedding_timeout: float = 30.0

    # Chunking Configuration
    chunk_size_tokens: int = 450
    chunk_overlap_tokens: int = 80
    chars_per_token: int = 4
    max_file_size_mb: int = 10

    # Watcher Configuration
    stability_window: float = 2.0  # seconds a file size must stay unchanged
    poll_interval: float = 0.1

    # Index Configuration
    chunk_index_name: str = "idx:chunks"
    recreate_index_on_startup: bool = True

    # Failure handling
    move_failed_files: bool = True
    failed_dir_name: str = "_failed"
    images_dir_name: str = "_images"

    # Optional override for the consumer name (defaults to processor-<pid>)
    consumer_name: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def max_file_size_bytes(self) -> int:
        """Maximum accepted source file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    def get_reserved_dirs(self) -> set[str]:
        """Directory names inside a library that are never ingested."""
        return {self.failed_dir_name, self.images_dir_name}


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

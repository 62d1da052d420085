"""
Document ingestion service entry point.

Wires watchers, the consumer loop and the health server into one process:

    python -m domains.document_ingest.service
"""

import signal
import sys
import threading
from typing import Optional

import uvicorn
from loguru import logger

from app.main import app as health_app, configure_logging
from app.utils.config import Settings, get_settings
from app.utils.embedding import get_embedding_client
from app.utils.exceptions import QueueError, SearchIndexError, WatchError
from app.utils.redis_client import RedisClient, close_redis_client, get_redis_client
from domains.document_ingest.consumer import ConsumerLoop
from domains.document_ingest.index_writer import IndexWriter
from domains.document_ingest.library_registry import LibraryRegistry
from domains.document_ingest.processor import DocumentProcessor
from domains.document_ingest.publisher import JobPublisher
from domains.document_ingest.watchers.library import LibraryWatcher


class IngestionService:
    """Owns the long-running components of the ingestion process."""

    def __init__(self, redis_client: RedisClient, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.redis = redis_client
        self.index = IndexWriter(redis_client)
        self.registry = LibraryRegistry(redis_client)
        self.watcher = LibraryWatcher(JobPublisher(redis_client))
        self.consumer = ConsumerLoop(redis_client, DocumentProcessor(redis_client, settings=self.settings))
        self.health_server: Optional[uvicorn.Server] = None

    def start(self):
        """
        Prepare the index and queue, then start the health server and watchers.

        Raises:
            SearchIndexError: if the chunk index cannot be created
            QueueError: if the consumer group cannot be created
        """
        self.index.ensure_index(recreate=self.settings.recreate_index_on_startup)
        self.consumer.ensure_group()
        self.start_health_server()
        self.start_watchers()

    def start_health_server(self):
        config = uvicorn.Config(
            health_app,
            host="0.0.0.0",
            port=self.settings.health_port,
            log_level=self.settings.log_level.lower(),
        )
        self.health_server = uvicorn.Server(config)
        thread = threading.Thread(target=self.health_server.run, name="health-server", daemon=True)
        thread.start()
        logger.info(f"Health endpoint on port {self.settings.health_port}")

    def start_watchers(self) -> int:
        """Watch every auto-scan library; a failing library does not stop the rest."""
        libraries = self.registry.auto_scan_libraries()
        if not libraries:
            logger.warning("No auto-scan libraries configured")

        for library in libraries:
            try:
                self.watcher.watch_library(library)
            except WatchError as e:
                logger.error(f"Could not watch library {library.name}: {e}")

        return self.watcher.active_watcher_count()

    def run(self):
        """Consume jobs until stopped."""
        self.consumer.run()

    def stop(self):
        logger.info("Shutting down ingestion service...")
        self.consumer.stop()

    def close(self):
        self.watcher.stop_all()
        if self.health_server is not None:
            self.health_server.should_exit = True
        logger.success("Ingestion service shut down complete")


def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")

    try:
        redis_client = get_redis_client()
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        sys.exit(1)

    service = IngestionService(redis_client, settings)

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        service.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        service.start()
        service.run()
    except (SearchIndexError, QueueError) as e:
        logger.error(f"Ingestion service failed to start: {e}")
        sys.exit(1)
    finally:
        service.close()
        get_embedding_client().close()
        close_redis_client()


if __name__ == "__main__":
    main()

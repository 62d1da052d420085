"""
Consumer loop for the ingestion stream.

Reads one entry at a time through the ``docling-processors`` consumer group,
dispatches it to the processor and acknowledges it whatever the outcome.
Failed jobs are not redelivered; their job record carries the error.
"""

import json
import os
import threading
from typing import Dict, Optional

from loguru import logger
from pydantic import ValidationError
from redis.exceptions import RedisError

from app.models.schemas import Job
from app.utils.config import get_settings
from app.utils.exceptions import QueueError
from app.utils.redis_client import RedisClient
from domains.document_ingest.job_store import JobStore
from domains.document_ingest.publisher import JOB_FIELD


def default_consumer_name() -> str:
    return get_settings().consumer_name or f"processor-{os.getpid()}"


class ConsumerLoop:
    """Single-threaded stream consumer; one job in flight at a time."""

    def __init__(
        self,
        redis_client: RedisClient,
        processor,
        consumer_name: Optional[str] = None,
        stream_key: Optional[str] = None,
        group: Optional[str] = None,
        error_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self.redis = redis_client
        self.processor = processor
        self.jobs = JobStore(redis_client)
        self.consumer_name = consumer_name or default_consumer_name()
        self.stream_key = stream_key or settings.stream_key
        self.group = group or settings.consumer_group
        self.block_ms = settings.consumer_block_ms
        self.batch_size = settings.consumer_batch_size
        self.error_delay = settings.consumer_error_delay if error_delay is None else error_delay
        self._stop = threading.Event()
        self.processed = 0

    def ensure_group(self) -> None:
        """
        Create the consumer group, treating an existing group as success.

        Raises:
            QueueError: for any other Redis failure
        """
        try:
            created = self.redis.ensure_consumer_group(self.stream_key, self.group)
        except RedisError as e:
            raise QueueError(f"Could not create consumer group {self.group}: {e}") from e

        if created:
            logger.success(f"Created consumer group {self.group} on {self.stream_key}")
        else:
            logger.info(f"Consumer group {self.group} already exists")

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def stop(self):
        """Request shutdown; the in-flight job is allowed to finish."""
        self._stop.set()

    def run(self):
        """Consume until ``stop()`` is called."""
        logger.info(f"Consumer {self.consumer_name} reading {self.stream_key} as {self.group}")
        recovered = False

        while not self._stop.is_set():
            try:
                if not recovered:
                    self.recover_pending()
                    recovered = True
                self.poll_once()
            except Exception as e:
                logger.error(f"Consumer error: {e}")
                # Fixed delay before the next read; stop() cuts it short
                self._stop.wait(self.error_delay)

        logger.info(f"Consumer {self.consumer_name} stopped after {self.processed} jobs")

    def recover_pending(self) -> int:
        """
        Handle entries delivered to this consumer earlier but never
        acknowledged, e.g. by a previous run under the same consumer name.

        Returns:
            Number of entries recovered
        """
        recovered = 0
        while not self._stop.is_set():
            handled = self.poll_once(pending=True)
            if not handled:
                break
            recovered += handled

        if recovered:
            logger.info(f"Recovered {recovered} unacknowledged entries for {self.consumer_name}")
        return recovered

    def poll_once(self, pending: bool = False) -> int:
        """
        Read and handle one batch of entries.

        Every entry of a fetched batch is handled, even if ``stop()`` is
        called meanwhile; fetched entries are already in flight.

        Args:
            pending: Re-read this consumer's unacknowledged entries instead
                of waiting for new ones

        Returns:
            Number of entries handled
        """
        try:
            response = self.redis.read_group(
                self.stream_key,
                self.group,
                self.consumer_name,
                count=self.batch_size,
                block_ms=None if pending else self.block_ms,
                start_id="0" if pending else ">",
            )
        except RedisError as e:
            raise QueueError(f"Stream read failed: {e}") from e

        handled = 0
        for _stream, entries in response:
            for entry_id, fields in entries:
                self.handle_entry(entry_id, fields)
                handled += 1
        return handled

    def handle_entry(self, entry_id: str, fields: Dict[str, str]):
        """
        Dispatch one entry and acknowledge it regardless of the outcome.

        Entries without a decodable job are logged and acknowledged. If
        dispatch raises, the job is marked failed, the entry acknowledged and
        the exception re-raised to the loop.
        """
        job = self._decode(entry_id, fields)
        if job is None:
            self._ack(entry_id)
            return

        try:
            result = self.processor.process_job(job)
        except Exception as e:
            self.jobs.mark_failed(job, str(e) or e.__class__.__name__)
            self._ack(entry_id)
            raise

        self._ack(entry_id)
        self.processed += 1
        if result is not None and not result.success:
            logger.warning(f"Job {job.id} failed: {result.error}")

    def _decode(self, entry_id: str, fields: Dict[str, str]) -> Optional[Job]:
        raw = (fields or {}).get(JOB_FIELD)
        if raw is None:
            logger.warning(f"Stream entry {entry_id} has no job field, discarding")
            return None
        try:
            return Job.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error(f"Stream entry {entry_id} has an invalid job payload, discarding: {e}")
            return None

    def _ack(self, entry_id: str):
        try:
            self.redis.ack(self.stream_key, self.group, entry_id)
        except RedisError as e:
            raise QueueError(f"Failed to acknowledge {entry_id}: {e}") from e

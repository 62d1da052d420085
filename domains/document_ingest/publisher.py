"""
Job publisher for the document ingestion queue.

Turns classified filesystem events into persisted Job records and appends
them to the ``stream:docling`` Redis Stream. Delivery is at-least-once:
repeated events for the same file produce repeated jobs, and the
processing side is responsible for idempotency.
"""

from loguru import logger

from app.models.schemas import FileEvent, Job, JobOperation, JobPriority, Library
from app.utils.config import get_settings
from app.utils.exceptions import QueueError
from app.utils.helpers import generate_id, now_iso
from app.utils.redis_client import RedisClient
from domains.document_ingest.job_store import JobStore

EVENT_OPERATIONS: dict[str, JobOperation] = {
    "add": "ingest",
    "change": "update",
    "unlink": "delete",
}

JOB_FIELD = "job"


def event_priority(event: FileEvent) -> JobPriority:
    return "low" if event == "unlink" else "normal"


def build_job(library: Library, file_path: str, event: FileEvent) -> Job:
    """Build a fresh pending job for a filesystem event."""
    if event not in EVENT_OPERATIONS:
        raise ValueError(f"Unknown file event: {event}")

    now = now_iso()
    return Job(
        id=generate_id("job"),
        library_id=library.id,
        library_name=library.name,
        file_path=file_path,
        operation=EVENT_OPERATIONS[event],
        priority=event_priority(event),
        status="pending",
        created_at=now,
        updated_at=now,
    )


class JobPublisher:
    """Publishes ingestion jobs to the durable queue."""

    def __init__(self, redis_client: RedisClient, job_store: JobStore | None = None, stream_key: str | None = None):
        self.redis = redis_client
        self.job_store = job_store or JobStore(redis_client)
        self.stream_key = stream_key or get_settings().stream_key

    def publish(self, library: Library, file_path: str, event: FileEvent) -> Job:
        """
        Persist a job for ``event`` and append it to the stream.

        Raises:
            QueueError: if the record or the stream entry cannot be written
        """
        job = build_job(library, file_path, event)

        try:
            self.job_store.save(job)
            entry_id = self.redis.stream_add(self.stream_key, {JOB_FIELD: job.model_dump_json()})
        except Exception as e:
            raise QueueError(f"Failed to publish {job.operation} job for {file_path}: {e}") from e

        logger.info(f"Published {job.operation} job {job.id} for: {file_path} (entry {entry_id})")
        return job

"""
Persistence for ingestion job records.

Each job lives at ``docling_job:{id}`` independently of the stream entry
that references it, so its final status survives acknowledgement.
"""

from typing import Any

from loguru import logger

from app.models.schemas import Job, JobStatus
from app.utils.helpers import now_iso
from app.utils.redis_client import RedisClient


def job_key(job_id: str) -> str:
    return f"docling_job:{job_id}"


class JobStore:
    """Job records backed by RedisJSON."""

    def __init__(self, redis_client: RedisClient):
        self.redis = redis_client

    def save(self, job: Job) -> None:
        """Persist the full job record."""
        self.redis.json_set(job_key(job.id), job.model_dump())

    def get(self, job_id: str) -> Job | None:
        data = self.redis.json_get(job_key(job_id))
        if not data:
            return None
        return Job.model_validate(data)

    def update_status(self, job_id: str, status: JobStatus, **fields: Any) -> None:
        """
        Set status (plus any extra fields) on a job record.

        A missing record is recreated from the supplied fields so the
        outcome is never lost. Errors are logged and swallowed; status
        bookkeeping must not abort processing.
        """
        updates = {"status": status, "updated_at": now_iso(), **fields}
        key = job_key(job_id)
        try:
            if not self.redis.json_update(key, updates):
                self.redis.json_set(key, {"id": job_id, **updates})
        except Exception as e:
            logger.warning(f"Failed to update job {job_id} status to {status}: {e}")

    def mark_processing(self, job: Job) -> None:
        self.update_status(job.id, "processing", started_at=now_iso(), progress=0)

    def mark_completed(self, job: Job, chunks_created: int, duration_ms: int) -> None:
        self.update_status(
            job.id,
            "completed",
            progress=100,
            chunks_created=chunks_created,
            duration_ms=duration_ms,
            completed_at=now_iso(),
        )

    def mark_failed(self, job: Job, error: str) -> None:
        self.update_status(job.id, "failed", error=error, completed_at=now_iso())

    def set_progress(self, job: Job, progress: int) -> None:
        self.update_status(job.id, "processing", progress=progress)

import json

import pytest

from app.utils.exceptions import QueueError
from domains.document_ingest.job_store import JobStore, job_key
from domains.document_ingest.publisher import JobPublisher, build_job


@pytest.mark.parametrize(
    "event, operation, priority",
    [
        ("add", "ingest", "normal"),
        ("change", "update", "normal"),
        ("unlink", "delete", "low"),
    ],
)
def test_event_maps_to_operation(library, event, operation, priority):
    job = build_job(library, "/lib/report.pdf", event)

    assert job.operation == operation
    assert job.priority == priority
    assert job.status == "pending"
    assert job.library_id == library.id
    assert job.library_name == library.name
    assert job.id.startswith("job-")


def test_unknown_event_is_rejected(library):
    with pytest.raises(ValueError):
        build_job(library, "/lib/report.pdf", "rename")


def test_publish_persists_job_and_appends_to_stream(fake_redis, library):
    publisher = JobPublisher(fake_redis, stream_key="stream:docling")

    job = publisher.publish(library, "/lib/report.pdf", "add")

    stored = JobStore(fake_redis).get(job.id)
    assert stored == job

    entries = fake_redis.streams["stream:docling"]
    assert len(entries) == 1
    payload = json.loads(entries[0][1]["job"])
    assert payload["id"] == job.id
    assert payload["operation"] == "ingest"


def test_repeated_events_are_not_deduplicated(fake_redis, library):
    publisher = JobPublisher(fake_redis, stream_key="stream:docling")

    first = publisher.publish(library, "/lib/report.pdf", "change")
    second = publisher.publish(library, "/lib/report.pdf", "change")

    assert first.id != second.id
    assert len(fake_redis.streams["stream:docling"]) == 2


def test_stream_failure_raises_queue_error(fake_redis, library, monkeypatch):
    def broken(stream, fields):
        raise ConnectionError("connection refused")

    monkeypatch.setattr(fake_redis, "stream_add", broken)
    publisher = JobPublisher(fake_redis, stream_key="stream:docling")

    with pytest.raises(QueueError, match="connection refused"):
        publisher.publish(library, "/lib/report.pdf", "add")


def test_update_status_recreates_missing_record(fake_redis):
    store = JobStore(fake_redis)

    store.update_status("job-missing", "failed", error="boom")

    record = fake_redis.json_get(job_key("job-missing"))
    assert record["id"] == "job-missing"
    assert record["status"] == "failed"
    assert record["error"] == "boom"

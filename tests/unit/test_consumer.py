import threading

import pytest

from app.models.schemas import ProcessResult
from domains.document_ingest.consumer import ConsumerLoop
from domains.document_ingest.job_store import JobStore
from domains.document_ingest.publisher import JobPublisher

STREAM = "stream:docling"
GROUP = "docling-processors"


class ScriptedProcessor:
    """Raises for jobs whose file name contains 'explode'."""

    def __init__(self):
        self.jobs = []

    def process_job(self, job):
        self.jobs.append(job)
        if "explode" in job.file_path:
            raise RuntimeError("processor crashed")
        return ProcessResult(success=True, chunks=3)


def make_loop(fake_redis, processor, **kwargs):
    loop = ConsumerLoop(
        fake_redis,
        processor,
        consumer_name="processor-test",
        stream_key=STREAM,
        group=GROUP,
        **kwargs,
    )
    loop.ensure_group()
    return loop


def test_ensure_group_treats_existing_group_as_success(fake_redis):
    loop = make_loop(fake_redis, ScriptedProcessor())
    loop.ensure_group()

    assert (STREAM, GROUP) in fake_redis.groups


def test_successful_job_is_dispatched_and_acked(fake_redis, library):
    processor = ScriptedProcessor()
    loop = make_loop(fake_redis, processor)
    job = JobPublisher(fake_redis, stream_key=STREAM).publish(library, "/lib/report.pdf", "add")

    assert loop.poll_once() == 1

    assert [j.id for j in processor.jobs] == [job.id]
    assert fake_redis.pending(STREAM, GROUP) == {}
    assert loop.processed == 1


def test_dispatch_exception_acks_and_marks_failed(fake_redis, library):
    loop = make_loop(fake_redis, ScriptedProcessor())
    job = JobPublisher(fake_redis, stream_key=STREAM).publish(library, "/lib/explode.pdf", "add")

    with pytest.raises(RuntimeError):
        loop.poll_once()

    assert fake_redis.pending(STREAM, GROUP) == {}
    record = JobStore(fake_redis).get(job.id)
    assert record.status == "failed"
    assert "processor crashed" in record.error


def test_loop_resumes_after_dispatch_failure(fake_redis, library):
    processor = ScriptedProcessor()
    loop = make_loop(fake_redis, processor, error_delay=0.0)
    publisher = JobPublisher(fake_redis, stream_key=STREAM)
    publisher.publish(library, "/lib/explode.pdf", "add")
    publisher.publish(library, "/lib/report.pdf", "add")

    original = fake_redis.read_group

    def read_then_stop(*args, **kwargs):
        response = original(*args, **kwargs)
        if not response and kwargs.get("start_id") == ">":
            loop.stop()
        return response

    fake_redis.read_group = read_then_stop
    thread = threading.Thread(target=loop.run)
    thread.start()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert [job.file_path for job in processor.jobs] == ["/lib/explode.pdf", "/lib/report.pdf"]
    assert fake_redis.pending(STREAM, GROUP) == {}


def test_entry_without_job_is_acked_and_skipped(fake_redis):
    processor = ScriptedProcessor()
    loop = make_loop(fake_redis, processor)
    fake_redis.stream_add(STREAM, {"other": "value"})
    fake_redis.stream_add(STREAM, {"job": "{not json"})

    loop.poll_once()
    loop.poll_once()

    assert processor.jobs == []
    assert fake_redis.pending(STREAM, GROUP) == {}


def test_stop_prevents_further_reads(fake_redis):
    loop = make_loop(fake_redis, ScriptedProcessor())
    reads = []
    fake_redis.read_group = lambda *args, **kwargs: reads.append(args) or []

    loop.stop()
    loop.run()

    assert reads == []
    assert not loop.running


def test_entry_fetched_during_shutdown_is_still_handled(fake_redis, library):
    processor = ScriptedProcessor()
    loop = make_loop(fake_redis, processor)
    job = JobPublisher(fake_redis, stream_key=STREAM).publish(library, "/lib/report.pdf", "add")

    original = fake_redis.read_group

    def stop_while_blocked(*args, **kwargs):
        # Shutdown requested while XREADGROUP was waiting
        loop.stop()
        return original(*args, **kwargs)

    fake_redis.read_group = stop_while_blocked

    assert loop.poll_once() == 1

    assert [j.id for j in processor.jobs] == [job.id]
    assert fake_redis.pending(STREAM, GROUP) == {}
    assert not loop.running


def test_startup_recovers_unacknowledged_entries(fake_redis, library):
    publisher = JobPublisher(fake_redis, stream_key=STREAM)
    stranded = publisher.publish(library, "/lib/stranded.pdf", "add")
    make_loop(fake_redis, ScriptedProcessor())
    # Delivered to this consumer by an earlier run that never acknowledged it
    fake_redis.read_group(STREAM, GROUP, "processor-test")
    fresh = publisher.publish(library, "/lib/fresh.pdf", "add")

    processor = ScriptedProcessor()
    loop = make_loop(fake_redis, processor, error_delay=0.0)
    original = fake_redis.read_group

    def read_then_stop(*args, **kwargs):
        response = original(*args, **kwargs)
        if not response and kwargs.get("start_id") == ">":
            loop.stop()
        return response

    fake_redis.read_group = read_then_stop
    thread = threading.Thread(target=loop.run)
    thread.start()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert [j.id for j in processor.jobs] == [stranded.id, fresh.id]
    assert fake_redis.pending(STREAM, GROUP) == {}


def test_recover_pending_ignores_other_consumers(fake_redis, library):
    JobPublisher(fake_redis, stream_key=STREAM).publish(library, "/lib/report.pdf", "add")
    loop = make_loop(fake_redis, ScriptedProcessor())
    fake_redis.read_group(STREAM, GROUP, "processor-other")

    assert loop.recover_pending() == 0
    assert fake_redis.pending(STREAM, GROUP) == {"1-0": "processor-other"}

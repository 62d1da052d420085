"""
Job processing: extract, chunk, embed and index a document.

``DocumentProcessor.process_job`` is the unit of work the consumer loop
dispatches. It never raises for a failed document; the outcome is recorded
on the job record and returned as a ``ProcessResult``.
"""

import shutil
import time
from pathlib import Path
from typing import Optional

from loguru import logger

from app.models.schemas import DocumentChunk, ExtractedDocument, Job, ProcessResult
from app.utils.config import Settings, get_settings
from app.utils.embedding import EmbeddingClient, get_embedding_client
from app.utils.exceptions import ExtractionError
from app.utils.helpers import file_mtime_iso, hash_text, now_iso
from app.utils.redis_client import RedisClient
from domains.document_ingest.chunking import ChunkEmbedder, Chunker, EmbeddedChunk
from domains.document_ingest.extractors import ExtractorRegistry, build_default_registry
from domains.document_ingest.index_writer import IndexWriter, document_id_for
from domains.document_ingest.job_store import JobStore
from domains.document_ingest.library_registry import LibraryRegistry


class DocumentProcessor:
    """Processes ingest, update and delete jobs against the chunk index."""

    def __init__(
        self,
        redis_client: RedisClient,
        extractors: Optional[ExtractorRegistry] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        chunker: Optional[Chunker] = None,
        index_writer: Optional[IndexWriter] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.extractors = extractors or build_default_registry(self.settings)
        self.chunker = chunker or Chunker()
        self.embedder = ChunkEmbedder(
            embedding_client or get_embedding_client(),
            dimension=self.settings.embedding_dimension,
            batch_size=self.settings.embedding_batch_size,
        )
        self.index = index_writer or IndexWriter(redis_client)
        self.jobs = JobStore(redis_client)
        self.libraries = LibraryRegistry(redis_client)

    def process_job(self, job: Job) -> ProcessResult:
        """
        Run a job to completion, recording its outcome.

        Returns:
            ProcessResult with the number of chunks written, or the error
        """
        start = time.monotonic()
        self.jobs.mark_processing(job)

        try:
            if job.operation == "delete":
                self._delete(job)
                chunks = 0
            else:
                chunks = self._ingest(job)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(f"Job {job.id} failed for {job.file_path}: {error}")
            self.jobs.mark_failed(job, error)
            self.quarantine(job, error)
            return ProcessResult(success=False, chunks=0, error=error)

        duration_ms = int((time.monotonic() - start) * 1000)
        self.jobs.mark_completed(job, chunks_created=chunks, duration_ms=duration_ms)
        logger.success(f"Processed {job.operation} for {job.file_path}: {chunks} chunks in {duration_ms}ms")
        return ProcessResult(success=True, chunks=chunks)

    def _ingest(self, job: Job) -> int:
        path = Path(job.file_path)
        document = self.extractors.extract(path)
        self.jobs.set_progress(job, 30)

        drafts = self.chunker.chunk(document)
        if not drafts:
            raise ExtractionError("No content extracted from document")

        document_id = document_id_for(job.library_id, job.file_path)
        previous = self.index.get_document(document_id)
        reuse = self.index.existing_chunks(job.library_id, document_id) if previous else {}

        embedded = self.embedder.embed(drafts, reuse=reuse)
        self.jobs.set_progress(job, 80)

        chunks = self.build_chunks(job, document_id, path, embedded)
        record = self.document_record(job, document_id, document, len(chunks))
        written, removed = self.index.write_document(job.library_id, document_id, chunks, record)

        previous_chunks = previous.get("chunk_count", 0) if previous else 0
        previous_size = previous.get("file_size", 0) if previous else 0
        self.libraries.adjust_stats(
            job.library_id,
            chunk_delta=written - previous_chunks,
            document_delta=0 if previous else 1,
            size_delta=document.metadata.file_size - previous_size,
        )

        if removed:
            logger.info(f"Replaced {job.file_path}: {removed} stale chunks removed")
        return written

    def _delete(self, job: Job) -> None:
        document_id = document_id_for(job.library_id, job.file_path)
        previous = self.index.get_document(document_id)
        removed = self.index.delete_document(job.library_id, document_id)

        if previous or removed:
            self.libraries.adjust_stats(
                job.library_id,
                chunk_delta=-removed,
                document_delta=-1,
                size_delta=-(previous or {}).get("file_size", 0),
            )

    def build_chunks(
        self,
        job: Job,
        document_id: str,
        path: Path,
        embedded: list[EmbeddedChunk],
    ) -> list[DocumentChunk]:
        indexed_at = now_iso()
        source_modified_at = file_mtime_iso(path) or indexed_at
        total = len(embedded)

        return [
            DocumentChunk(
                id=f"chunk-{document_id}-{index}",
                library=job.library_id,
                document_id=document_id,
                document_name=path.name,
                file_path=job.file_path,
                content=item.draft.content,
                embedding=item.embedding,
                images=item.draft.images,
                tables=item.draft.tables,
                page_number=item.draft.page_number,
                section_title=item.draft.section_title,
                hierarchy=item.draft.hierarchy,
                chunk_type=item.draft.chunk_type,
                chunk_index=index,
                total_chunks=total,
                content_hash=item.draft.content_hash,
                indexed_at=indexed_at,
                source_modified_at=source_modified_at,
                searchable=item.searchable,
            )
            for index, item in enumerate(embedded)
        ]

    def document_record(
        self,
        job: Job,
        document_id: str,
        document: ExtractedDocument,
        chunk_count: int,
    ) -> dict:
        metadata = document.metadata
        return {
            "id": document_id,
            "library_id": job.library_id,
            "file_path": job.file_path,
            "title": metadata.title,
            "author": metadata.author,
            "file_type": metadata.file_type,
            "file_size": metadata.file_size,
            "page_count": metadata.page_count,
            "chunk_count": chunk_count,
            "content_hash": hash_text(document.text),
            "indexed_at": now_iso(),
        }

    def quarantine(self, job: Job, error: str) -> Optional[Path]:
        """
        Move a failed source file into the library's ``_failed`` folder,
        with an ``.error.txt`` report beside it.

        Returns:
            The quarantined path, or None if nothing was moved
        """
        if not self.settings.move_failed_files or job.operation == "delete":
            return None

        source = Path(job.file_path)
        if not source.is_file():
            return None

        try:
            failed_dir = source.parent / self.settings.failed_dir_name
            failed_dir.mkdir(parents=True, exist_ok=True)
            target = failed_dir / source.name
            shutil.move(str(source), str(target))

            report = target.with_name(f"{target.name}.error.txt")
            report.write_text(
                f"Error: {error}\nTimestamp: {now_iso()}\nJob ID: {job.id}\n",
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning(f"Could not move failed file {source}: {e}")
            return None

        logger.info(f"Moved failed file to: {target}")
        return target

"""
Document Ingestion Domain

Turns files dropped into library folders into searchable chunks:
- watchers/library.py - Debounced per-library folder watchers
- publisher.py - Job records and the stream:docling queue
- consumer.py - Consumer-group worker loop
- processor.py - Per-job extract, chunk, embed and index
- extractors/ - Multi-strategy text and metadata extraction
- chunking.py - Chunking and embedding
- index_writer.py - idx:chunks schema and chunk writes
- service.py - Process entry point
"""

__all__ = ["watchers", "extractors"]

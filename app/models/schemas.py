"""
Pydantic models for the document ingestion service.

Shared data models across the application.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator


JobOperation = Literal["ingest", "update", "delete"]
JobPriority = Literal["high", "normal", "low"]
JobStatus = Literal["pending", "processing", "completed", "failed"]
ScanStatus = Literal["idle", "scanning", "processing"]
ChunkType = Literal["text", "table", "figure", "code"]
FileEvent = Literal["add", "change", "unlink"]


# =====================================================
# Library Models
# =====================================================

class Library(BaseModel):
    """Document library, stored as library:{id} by the registry."""
    id: str
    name: str
    folder_path: str
    description: Optional[str] = None
    auto_scan: bool = True
    scan_schedule: Optional[str] = None  # cron, e.g. '0 2 * * *'
    scan_status: ScanStatus = "idle"
    document_count: int = 0
    chunk_count: int = 0
    total_size_bytes: int = 0
    last_scanned: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# =====================================================
# Job Models
# =====================================================

class Job(BaseModel):
    """Ingestion job, stored as docling_job:{id} and carried on the stream."""
    id: str
    library_id: str
    library_name: str
    file_path: str
    operation: JobOperation
    priority: JobPriority = "normal"
    status: JobStatus = "pending"
    progress: Optional[int] = None  # 0-100
    error: Optional[str] = None
    chunks_created: Optional[int] = None
    duration_ms: Optional[int] = None
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProcessResult(BaseModel):
    """Outcome of processing a single job."""
    success: bool
    chunks: int = 0
    error: Optional[str] = None


# =====================================================
# Extraction Models
# =====================================================

class ImageRef(BaseModel):
    """Image reference extracted from a document."""
    id: str
    file_path: str
    caption: Optional[str] = None
    page_number: Optional[int] = None


class TableRef(BaseModel):
    """Table reference extracted from a document (markdown content)."""
    id: str
    content: str
    caption: Optional[str] = None
    page_number: Optional[int] = None


class ExtractedPage(BaseModel):
    """A single page of extracted content."""
    page_number: int
    content: str = ""
    tables: List[TableRef] = Field(default_factory=list)
    images: List[ImageRef] = Field(default_factory=list)


class DocumentMetadata(BaseModel):
    """Metadata captured during extraction."""
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: Optional[str] = None
    created_date: Optional[str] = None
    page_count: int = 0
    file_type: str
    file_size: int = 0


class ExtractedDocument(BaseModel):
    """Normalized extraction result. ``pages`` is never empty."""
    text: str
    pages: List[ExtractedPage] = Field(min_length=1)
    metadata: DocumentMetadata


# =====================================================
# Chunk Models
# =====================================================

class DocumentChunk(BaseModel):
    """Indexed chunk, stored as chunk:{library}:{document_id}:{chunk_index}."""
    id: str
    library: str
    document_id: str
    document_name: str
    file_path: str
    content: str
    embedding: List[float]
    images: List[ImageRef] = Field(default_factory=list)
    tables: List[TableRef] = Field(default_factory=list)
    page_number: Optional[int] = None
    section_title: Optional[str] = None
    hierarchy: List[str] = Field(default_factory=list)
    chunk_type: ChunkType = "text"
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    content_hash: str
    indexed_at: str
    source_modified_at: str
    searchable: bool = True

    @model_validator(mode="after")
    def check_position(self) -> "DocumentChunk":
        if self.chunk_index >= self.total_chunks:
            raise ValueError("chunk_index must be lower than total_chunks")
        return self


# =====================================================
# Response Models
# =====================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    service: str
    pid: int
    uptime: float

"""
Helper utilities for the ingestion service.

Common functions used across domains.
"""

import hashlib
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from uuid import uuid4


PAGE_BREAK = "\f"


def generate_id(prefix: str) -> str:
    """Generate a prefixed identifier such as ``job-3f2c...``."""
    return f"{prefix}-{uuid4().hex}"


def hash_text(text: str) -> str:
    """Generate SHA256 hash of text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def short_hash(text: str, length: int = 16) -> str:
    """Truncated SHA256 hash, used for compact record identifiers."""
    return hash_text(text)[:length]


def split_sentences(text: str, max_length: int) -> List[str]:
    """
    Split text into pieces of at most ``max_length`` characters.

    Tries to break at sentence boundaries, falling back to a hard cut
    when no boundary is reasonably far into the window.

    Args:
        text: Text to split
        max_length: Maximum characters per piece

    Returns:
        List of text pieces
    """
    if not text:
        return []

    if len(text) <= max_length:
        return [text]

    pieces = []
    start = 0

    while start < len(text):
        end = start + max_length
        piece = text[start:end]

        # Try to break at sentence boundary
        if end < len(text):
            last_break = max(
                piece.rfind('. '),
                piece.rfind('? '),
                piece.rfind('! '),
                piece.rfind('\n')
            )
            if last_break > max_length // 2:  # Only break if reasonably far in
                end = start + last_break + 1
                piece = text[start:end]

        if piece.strip():
            pieces.append(piece.strip())
        start = end

    return pieces


def split_pages(text: str) -> List[str]:
    """Split text on form-feed page-break markers."""
    if not text:
        return []
    return text.split(PAGE_BREAK)


def get_file_extension(path: Path) -> str:
    """Get lowercase file extension without dot."""
    return path.suffix.lower().lstrip('.')


def now_iso() -> str:
    """Get current timestamp as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def file_mtime_iso(path: Path) -> Optional[str]:
    """Modification time of ``path`` as ISO string, or None if unavailable."""
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()
    except OSError:
        return None


def clean_whitespace(text: str) -> str:
    """Collapse runs of blank lines and trailing spaces."""
    text = re.sub(r'[ \t]+\n', '\n', text)
    return re.sub(r'\n{3,}', '\n\n', text).strip()


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"

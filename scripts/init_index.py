#!/usr/bin/env python3
"""
Create (or recreate) the RediSearch chunk index.

Chunk documents are kept; only the index definition is rebuilt, after
which Redis re-indexes every ``chunk:*`` key in the background.

Usage:
    python scripts/init_index.py [--keep]
"""

import argparse
import sys
from pathlib import Path

from loguru import logger

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.utils.exceptions import SearchIndexError
from app.utils.redis_client import close_redis_client, get_redis_client
from domains.document_ingest.index_writer import IndexWriter


def verify_index(redis_client, index_name: str):
    """Log the index definition summary reported by FT.INFO."""
    info = redis_client.execute("FT.INFO", index_name)
    fields = dict(zip(info[::2], info[1::2])) if isinstance(info, list) else dict(info)
    logger.info("\n=== Index ===")
    for name in ("index_name", "num_docs", "indexing", "hash_indexing_failures"):
        if name in fields:
            logger.info(f"  {name}: {fields[name]}")


def main(argv=None) -> int:
    """Main initialization function."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--keep", action="store_true", help="Only create the index if it is missing")
    args = parser.parse_args(argv)

    logger.info("Starting chunk index initialization...")

    try:
        redis_client = get_redis_client()
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        return 1

    try:
        writer = IndexWriter(redis_client)
        writer.ensure_index(recreate=not args.keep)
        verify_index(redis_client, writer.index_name)
    except SearchIndexError as e:
        logger.error(f"Index initialization failed: {e}")
        return 1
    finally:
        close_redis_client()

    logger.success("Chunk index ready")
    return 0


if __name__ == "__main__":
    sys.exit(main())

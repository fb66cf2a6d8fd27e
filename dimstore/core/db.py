"""
SQLite persistence layout.

One record table per collection (<name>_records), partitioned by
embedding_dimension, plus vector_buckets holding per-bucket metadata and the
serialised index so a restart does not need to re-detect dimensions.
"""

import re
import sqlite3
from contextlib import contextmanager
from typing import Generator, Iterable, Optional
from .config import get_db_path, ensure_db_directory

COLLECTION_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def records_table(collection: str) -> str:
    """Table name for a collection; names are validated because they end up in SQL text."""
    if not COLLECTION_NAME_RE.match(collection or ""):
        raise ValueError(f"Invalid collection name: {collection!r}")
    return f"{collection}_records"


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or get_db_path())
    try:
        yield conn
    finally:
        conn.close()


def init_db(collections: Iterable[str], db_path: Optional[str] = None):
    """Initialize the database with required tables."""
    if db_path is None:
        ensure_db_directory()

    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS vector_buckets (
                collection TEXT NOT NULL,
                dimension INTEGER NOT NULL,
                slot TEXT NOT NULL,
                strategy TEXT NOT NULL,   -- 'approximate' or 'exact'
                state TEXT NOT NULL,      -- 'absent', 'building', 'ready', 'stale'
                model_hint TEXT,
                lists INTEGER DEFAULT 0,
                index_blob BLOB,          -- serialised FAISS index
                index_ids TEXT,           -- JSON list mapping index labels to record ids
                built_at TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, dimension)
            )
        ''')

        for collection in collections:
            table = records_table(collection)
            cursor.execute(f'''
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    source_id TEXT,
                    content TEXT NOT NULL DEFAULT '',
                    metadata TEXT NOT NULL DEFAULT '{{}}',
                    embedding_model TEXT NOT NULL,
                    embedding_dimension INTEGER NOT NULL,
                    embedding BLOB NOT NULL,  -- little-endian float32
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CHECK (length(embedding) = 4 * embedding_dimension)
                )
            ''')
            cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_{table}_dimension ON {table}(embedding_dimension)')
            cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_{table}_source_id ON {table}(source_id)')

        conn.commit()


def health_check(db_path: Optional[str] = None) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return 'vector_buckets' in table_names
    except Exception:
        return False

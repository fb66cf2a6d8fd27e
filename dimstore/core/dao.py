"""
Data access for persisted records and bucket metadata.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional, Tuple
import numpy as np

from .db import get_db, records_table
from ..util.logging import logger
from ..vector.types import BucketState, BucketStatus, EmbeddingRecord


@dataclass
class BucketRow:
    """Persisted bucket metadata."""
    collection: str
    dimension: int
    slot: str
    strategy: str
    state: BucketState
    model_hint: Optional[str]
    lists: int
    index_blob: Optional[bytes]
    index_ids: Tuple[str, ...]
    built_at: Optional[datetime]


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


class VectorDAO:
    """Write-through persistence for one database file."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def save_record(self, collection: str, record: EmbeddingRecord) -> None:
        table = records_table(collection)
        blob = np.asarray(record.embedding, dtype='<f4').tobytes()
        with get_db(self.db_path) as conn:
            conn.execute(
                f'''INSERT INTO {table}
                    (id, source_id, content, metadata, embedding_model, embedding_dimension, embedding, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        source_id = excluded.source_id,
                        content = excluded.content,
                        metadata = excluded.metadata,
                        embedding_model = excluded.embedding_model,
                        embedding_dimension = excluded.embedding_dimension,
                        embedding = excluded.embedding,
                        updated_at = excluded.updated_at''',
                (record.id, record.source_id, record.content, json.dumps(record.metadata, default=str),
                 record.embedding_model, record.embedding_dimension, blob, record.updated_at.isoformat())
            )
            conn.commit()

    def delete_record(self, collection: str, record_id: str) -> bool:
        table = records_table(collection)
        with get_db(self.db_path) as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            conn.commit()
            return cursor.rowcount > 0

    def delete_records_by_source(self, collection: str, source_id: str) -> int:
        table = records_table(collection)
        with get_db(self.db_path) as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE source_id = ?", (source_id,))
            conn.commit()
            return cursor.rowcount

    def load_records(self, collection: str) -> Iterator[EmbeddingRecord]:
        """Yield every persisted record of a collection."""
        table = records_table(collection)
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                f'''SELECT id, source_id, content, metadata, embedding_model, embedding_dimension, embedding, updated_at
                    FROM {table} ORDER BY embedding_dimension, id'''
            )
            for row in cursor:
                record_id, source_id, content, metadata, model, dimension, blob, updated_at = row
                yield EmbeddingRecord(
                    id=record_id,
                    embedding=np.frombuffer(blob, dtype='<f4').astype(np.float32),
                    embedding_model=model,
                    embedding_dimension=dimension,
                    content=content or "",
                    source_id=source_id,
                    metadata=json.loads(metadata) if metadata else {},
                    updated_at=_parse_timestamp(updated_at) or datetime.now(),
                )

    def count_records(self, collection: str, dimension: Optional[int] = None) -> int:
        table = records_table(collection)
        with get_db(self.db_path) as conn:
            if dimension is None:
                row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            else:
                row = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE embedding_dimension = ?",
                                   (dimension,)).fetchone()
            return row[0]

    def save_bucket(self, collection: str, status: BucketStatus, index_blob: Optional[bytes] = None,
                    index_ids: Tuple[str, ...] = ()) -> None:
        """Persist bucket metadata; the index blob is only kept while the bucket is ready."""
        keep_index = status.state == BucketState.READY and index_blob is not None
        with get_db(self.db_path) as conn:
            conn.execute(
                '''INSERT INTO vector_buckets
                   (collection, dimension, slot, strategy, state, model_hint, lists, index_blob, index_ids, built_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(collection, dimension) DO UPDATE SET
                       slot = excluded.slot,
                       strategy = excluded.strategy,
                       state = excluded.state,
                       model_hint = excluded.model_hint,
                       lists = excluded.lists,
                       index_blob = excluded.index_blob,
                       index_ids = excluded.index_ids,
                       built_at = excluded.built_at,
                       updated_at = excluded.updated_at''',
                (collection, status.dimension, status.slot, status.strategy.value, status.state.value,
                 status.model_hint, status.lists,
                 index_blob if keep_index else None,
                 json.dumps(list(index_ids)) if keep_index else None,
                 status.built_at.isoformat() if status.built_at else None,
                 datetime.now().isoformat())
            )
            conn.commit()

    def load_buckets(self, collection: str) -> List[BucketRow]:
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                '''SELECT dimension, slot, strategy, state, model_hint, lists, index_blob, index_ids, built_at
                   FROM vector_buckets WHERE collection = ? ORDER BY dimension''',
                (collection,)
            )
            rows = []
            for dimension, slot, strategy, state, model_hint, lists, blob, ids, built_at in cursor:
                try:
                    bucket_state = BucketState(state)
                except ValueError:
                    logger.warning(f"Unknown bucket state {state!r} for {collection}/{dimension}; treating as stale")
                    bucket_state = BucketState.STALE
                rows.append(BucketRow(
                    collection=collection,
                    dimension=dimension,
                    slot=slot,
                    strategy=strategy,
                    state=bucket_state,
                    model_hint=model_hint,
                    lists=lists or 0,
                    index_blob=bytes(blob) if blob is not None else None,
                    index_ids=tuple(json.loads(ids)) if ids else (),
                    built_at=_parse_timestamp(built_at),
                ))
            return rows

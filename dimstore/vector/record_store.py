"""
Record store - one entity per content chunk, exactly one populated vector slot.

Each dimension bucket keeps its vectors in an arena matrix (rows reused through a
free list) with an id -> row map. A small directory maps every id to the bucket
that currently holds it. Buckets lock independently; the directory lock is only
taken by id-keyed operations, never by scans.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import numpy as np

from ..core.errors import DimensionMismatch
from ..util.logging import logger
from .registry import DimensionRegistry
from .types import DimensionBucket, EmbeddingRecord

INITIAL_CAPACITY = 16


@dataclass(frozen=True)
class BucketSnapshot:
    """Point-in-time copy of one bucket's rows."""

    dimension: int
    ids: Tuple[str, ...]
    source_ids: Tuple[Optional[str], ...]
    vectors: np.ndarray
    version: int

    def __len__(self):
        return len(self.ids)


class BucketTable:
    """Arena storage for all records of one dimension."""

    def __init__(self, bucket: DimensionBucket):
        self.bucket = bucket
        self.dimension = bucket.dimension
        self.lock = threading.RLock()
        self.version = 0
        self.model_hint: Optional[str] = None
        self._matrix = np.zeros((INITIAL_CAPACITY, self.dimension), dtype=np.float32)
        self._id_to_row: Dict[str, int] = {}
        self._free_rows: List[int] = []
        self._next_row = 0
        self._records: Dict[str, EmbeddingRecord] = {}  # payload only, vector lives in the matrix

    def __len__(self):
        return len(self._id_to_row)

    def __contains__(self, record_id):
        return record_id in self._id_to_row

    def _allocate_row(self) -> int:
        if self._free_rows:
            return self._free_rows.pop()
        if self._next_row >= self._matrix.shape[0]:
            grown = np.zeros((self._matrix.shape[0] * 2, self.dimension), dtype=np.float32)
            grown[:self._next_row] = self._matrix[:self._next_row]
            self._matrix = grown
        row = self._next_row
        self._next_row += 1
        return row

    def check(self, record: EmbeddingRecord) -> None:
        """Raise DimensionMismatch unless the record's slot fits this bucket."""
        actual = int(record.embedding.shape[0]) if record.embedding.ndim == 1 else -1
        if record.embedding_dimension != self.dimension or actual != self.dimension:
            logger.log_vector_operation(
                "put", record.id,
                {"bucket": self.dimension, "declared": record.embedding_dimension, "actual": actual},
                status="violation"
            )
            raise DimensionMismatch(record.id, record.embedding_dimension, actual)

    def put(self, record: EmbeddingRecord) -> None:
        self.check(record)

        with self.lock:
            row = self._id_to_row.get(record.id)
            if row is None:
                row = self._allocate_row()
                self._id_to_row[record.id] = row
            self._matrix[row] = record.embedding
            self._records[record.id] = replace(record, embedding=None)
            self.model_hint = record.embedding_model
            self.version += 1

    def remove(self, record_id: str) -> Optional[EmbeddingRecord]:
        with self.lock:
            row = self._id_to_row.pop(record_id, None)
            if row is None:
                return None
            self._matrix[row] = 0.0
            self._free_rows.append(row)
            self.version += 1
            return self._records.pop(record_id)

    def get(self, record_id: str) -> Optional[EmbeddingRecord]:
        with self.lock:
            row = self._id_to_row.get(record_id)
            if row is None:
                return None
            stored = self._records[record_id]
            return EmbeddingRecord(
                id=stored.id,
                embedding=self._matrix[row].copy(),
                embedding_model=stored.embedding_model,
                embedding_dimension=stored.embedding_dimension,
                content=stored.content,
                source_id=stored.source_id,
                metadata=dict(stored.metadata),
                updated_at=stored.updated_at,
            )

    def ids_for_source(self, source_id: str) -> List[str]:
        with self.lock:
            return [rid for rid, rec in self._records.items() if rec.source_id == source_id]

    def snapshot(self) -> BucketSnapshot:
        with self.lock:
            ids = tuple(self._id_to_row)
            rows = np.fromiter((self._id_to_row[i] for i in ids), dtype=np.int64, count=len(ids))
            return BucketSnapshot(
                dimension=self.dimension,
                ids=ids,
                source_ids=tuple(self._records[i].source_id for i in ids),
                vectors=self._matrix[rows],
                version=self.version,
            )

    def fetch(self, record_ids: Iterable[str]) -> BucketSnapshot:
        """Current vectors for the given ids; ids no longer in the bucket are dropped."""
        with self.lock:
            ids = tuple(i for i in dict.fromkeys(record_ids) if i in self._id_to_row)
            rows = np.fromiter((self._id_to_row[i] for i in ids), dtype=np.int64, count=len(ids))
            return BucketSnapshot(
                dimension=self.dimension,
                ids=ids,
                source_ids=tuple(self._records[i].source_id for i in ids),
                vectors=self._matrix[rows],
                version=self.version,
            )


class RecordStore:
    """Holds every EmbeddingRecord of a collection, partitioned by dimension bucket."""

    def __init__(self, registry: DimensionRegistry):
        self.registry = registry
        self._tables: Dict[int, BucketTable] = {b.dimension: BucketTable(b) for b in registry}
        self._directory: Dict[str, int] = {}  # record_id -> dimension
        self._directory_lock = threading.Lock()
        self._listeners: List[Callable[[int], None]] = []

    def add_write_listener(self, listener: Callable[[int], None]) -> None:
        """Register a callback invoked with the dimension of every bucket a write touches."""
        self._listeners.append(listener)

    def _notify(self, dimensions: Iterable[int]) -> None:
        for dimension in dimensions:
            for listener in self._listeners:
                listener(dimension)

    def table(self, dimension: int) -> BucketTable:
        return self._tables[self.registry.resolve(dimension).dimension]

    def build_record(self, record_id: str, vector: Sequence[float], model_name: str, content: str = "",
                     source_id: Optional[str] = None, metadata: Optional[Dict[str, object]] = None) -> EmbeddingRecord:
        """Create a record for a vector, resolving its bucket (raises UnsupportedDimension)."""
        embedding = np.asarray(vector, dtype=np.float32).reshape(-1)
        bucket = self.registry.resolve(embedding.shape[0])
        return EmbeddingRecord(
            id=record_id,
            embedding=embedding,
            embedding_model=model_name,
            embedding_dimension=bucket.dimension,
            content=content or "",
            source_id=source_id,
            metadata=dict(metadata or {}),
            updated_at=datetime.now(),
        )

    def upsert(self, record_id: str, vector: Sequence[float], model_name: str, content: str = "",
               source_id: Optional[str] = None, metadata: Optional[Dict[str, object]] = None) -> EmbeddingRecord:
        record = self.build_record(record_id, vector, model_name, content, source_id, metadata)
        self.put(record)
        return record

    def put(self, record: EmbeddingRecord) -> None:
        """Store a record, clearing any slot it held in another bucket."""
        target = self.table(record.embedding_dimension)
        target.check(record)
        touched = [target.dimension]

        with self._directory_lock:
            previous = self._directory.get(record.id)
            if previous is not None and previous != target.dimension:
                self._tables[previous].remove(record.id)
                touched.append(previous)
                logger.log_vector_operation(
                    "migrate", record.id, {"from": previous, "to": target.dimension}
                )
            target.put(record)
            self._directory[record.id] = target.dimension

        logger.log_vector_operation(
            "upsert", record.id,
            {"dimension": target.dimension, "model": record.embedding_model}
        )
        self._notify(touched)

    def get(self, record_id: str) -> Optional[EmbeddingRecord]:
        with self._directory_lock:
            dimension = self._directory.get(record_id)
            if dimension is None:
                return None
            return self._tables[dimension].get(record_id)

    def delete(self, record_id: str) -> bool:
        with self._directory_lock:
            dimension = self._directory.pop(record_id, None)
            if dimension is None:
                logger.log_vector_operation("delete", record_id, status="not_found")
                return False
            self._tables[dimension].remove(record_id)

        logger.log_vector_operation("delete", record_id, {"dimension": dimension})
        self._notify([dimension])
        return True

    def delete_by_source(self, source_id: str) -> List[str]:
        """Remove every record owned by a source. Returns the removed ids."""
        removed = []
        touched = set()
        with self._directory_lock:
            for dimension, table in self._tables.items():
                for record_id in table.ids_for_source(source_id):
                    table.remove(record_id)
                    self._directory.pop(record_id, None)
                    removed.append(record_id)
                    touched.add(dimension)

        if removed:
            logger.log_operation("vector.delete_by_source", "success",
                                 {"source_id": source_id, "removed": len(removed)})
        self._notify(sorted(touched))
        return removed

    def count(self, dimension: Optional[int] = None) -> int:
        if dimension is None:
            with self._directory_lock:
                return len(self._directory)
        return len(self.table(dimension))

    def snapshot(self, dimension: int) -> BucketSnapshot:
        return self.table(dimension).snapshot()

    def fetch(self, dimension: int, record_ids: Iterable[str]) -> BucketSnapshot:
        return self.table(dimension).fetch(record_ids)

    def version(self, dimension: int) -> int:
        table = self.table(dimension)
        with table.lock:
            return table.version

    def model_hint(self, dimension: int) -> Optional[str]:
        return self.table(dimension).model_hint

    def load(self, records: Iterable[EmbeddingRecord]) -> int:
        """Bulk-load persisted records without notifying write listeners."""
        loaded = 0
        with self._directory_lock:
            for record in records:
                table = self.table(record.embedding_dimension)
                table.put(record)
                self._directory[record.id] = table.dimension
                loaded += 1
        return loaded

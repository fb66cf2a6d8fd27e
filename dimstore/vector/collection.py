"""
Vector collection - one logical entity type ("documents", "code_examples") with
its record store, index manager, query planner and ingestion gate.
"""

import threading
from typing import Dict, List, Optional, Sequence

from ..util.logging import logger
from .index_manager import IndexManager
from .ingestion import IngestionGate
from .query_planner import QueryPlanner
from .record_store import RecordStore
from .registry import DimensionRegistry
from .types import BucketState, BucketStatus, EmbeddingRecord, ScoredId


class VectorCollection:
    """External interface for a single collection: upsert, delete, search, rebuild_index."""

    def __init__(self, name: str, registry: Optional[DimensionRegistry] = None, repository=None,
                 chunk_size: int = 4096):
        self.name = name
        self.registry = registry or DimensionRegistry()
        self.repository = repository
        self.store = RecordStore(self.registry)
        self.index_manager = IndexManager(self.registry, self.store, collection=name)
        self.planner = QueryPlanner(self.registry, self.store, self.index_manager,
                                    collection=name, chunk_size=chunk_size)
        self.gate = IngestionGate(self.registry, self.store)
        # orders the repository write and the in-memory write of each mutation
        self._write_lock = threading.RLock()

        if self.repository is not None:
            self.index_manager.add_transition_listener(self._persist_bucket)

    def upsert(self, record_id: str, vector: Sequence[float], model: str, content: str = "",
               source_id: Optional[str] = None, metadata: Optional[Dict[str, object]] = None) -> EmbeddingRecord:
        """Insert or replace a record. Raises UnsupportedDimension / InvalidRecord before any mutation."""
        record = self.gate.admit(record_id, vector, model, content, source_id, metadata)
        with self._write_lock:
            if self.repository is not None:
                self.repository.save_record(self.name, record)
            self.store.put(record)
        return record

    def get(self, record_id: str) -> Optional[EmbeddingRecord]:
        return self.store.get(record_id)

    def delete(self, record_id: str) -> bool:
        """Delete a record; returns False when the id is unknown."""
        with self._write_lock:
            if self.repository is not None:
                self.repository.delete_record(self.name, record_id)
            return self.store.delete(record_id)

    def delete_by_source(self, source_id: str) -> int:
        """Cascade removal of every record owned by a source."""
        with self._write_lock:
            if self.repository is not None:
                self.repository.delete_records_by_source(self.name, source_id)
            return len(self.store.delete_by_source(source_id))

    def search(self, vector: Sequence[float], threshold: float = 0.7, limit: int = 10,
               source_id: Optional[str] = None, timeout: Optional[float] = None,
               cancel_event: Optional[threading.Event] = None) -> List[ScoredId]:
        return self.planner.search(vector, threshold=threshold, limit=limit, source_id=source_id,
                                   timeout=timeout, cancel_event=cancel_event)

    def rebuild_index(self, dimension: int) -> BucketStatus:
        return self.index_manager.rebuild(dimension)

    def bucket_status(self, dimension: Optional[int] = None):
        if dimension is not None:
            return self.index_manager.status(dimension)
        return [self.index_manager.status(b.dimension) for b in self.registry]

    def __len__(self):
        return self.store.count()

    def load(self) -> int:
        """Restore records and bucket states from the repository."""
        if self.repository is None:
            return 0

        loaded = self.store.load(self.repository.load_records(self.name))
        persisted = {row.dimension: row for row in self.repository.load_buckets(self.name)}

        for bucket in self.registry:
            row = persisted.get(bucket.dimension)
            if row is not None:
                self.index_manager.restore(bucket.dimension, row.state, row.index_blob,
                                           row.index_ids, row.built_at)
            self._persist_bucket(bucket.dimension)

        logger.log_operation("collection.load", "success",
                             {"collection": self.name, "records": loaded,
                              "buckets": {d: s.value for d, s in self.index_manager.states().items()}})
        return loaded

    def _persist_bucket(self, dimension: int) -> None:
        status = self.index_manager.status(dimension)
        index_blob, index_ids = (None, ())
        if status.state == BucketState.READY:
            index_blob, index_ids = self.index_manager.export_artifact(dimension)
        self.repository.save_bucket(self.name, status, index_blob, index_ids)

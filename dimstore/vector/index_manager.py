"""
Index manager - per-bucket approximate index and its state machine.

    absent -> building -> ready -> (write) -> stale -> building -> ready

Approximate buckets get a FAISS IVF (inverted-list) index over L2-normalised
vectors, built from a snapshot of the bucket so writers are never blocked.
Buckets wider than the index limit use the exact strategy: nothing is built and
every query scans the bucket.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
import numpy as np

from ..core.errors import IndexBuildError
from ..util.logging import logger
from .record_store import BucketSnapshot, RecordStore
from .registry import DimensionRegistry
from .types import BucketState, BucketStatus, DimensionBucket, IndexStrategy

# FAISS k-means wants roughly this many training points per centroid
MIN_POINTS_PER_LIST = 39

# float32 inner products closer than this are treated as tied
TIE_TOLERANCE = 1e-6


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """L2-normalise rows into a new float32 array; zero rows stay zero."""
    vectors = np.asarray(vectors, dtype=np.float32)
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    out = np.zeros_like(vectors)
    np.divide(vectors, norms, out=out, where=norms > 0)
    return np.ascontiguousarray(out)


def effective_lists(configured: int, n_vectors: int) -> int:
    """Cluster count tuned to corpus size."""
    return max(1, min(configured, n_vectors // MIN_POINTS_PER_LIST))


@dataclass
class BuiltIndex:
    """An immutable index artifact and the record ids its labels refer to."""

    index: object
    ids: Tuple[str, ...]
    lists: int
    built_at: datetime


class BucketIndex:
    """Mutable per-bucket index state, owned by IndexManager."""

    def __init__(self, bucket: DimensionBucket):
        self.bucket = bucket
        self.lock = threading.Lock()
        self.build_lock = threading.Lock()
        self.artifact: Optional[BuiltIndex] = None
        self.built_at: Optional[datetime] = None
        if bucket.index_strategy == IndexStrategy.EXACT:
            self.state = BucketState.READY
        else:
            self.state = BucketState.ABSENT


class IndexManager:
    """Builds and serves approximate indexes, one per eligible dimension bucket."""

    def __init__(self, registry: DimensionRegistry, store: RecordStore, collection: str = "default"):
        try:
            import faiss
            self.faiss = faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.registry = registry
        self.store = store
        self.collection = collection
        self._indexes: Dict[int, BucketIndex] = {b.dimension: BucketIndex(b) for b in registry}
        self._listeners: List[Callable[[int], None]] = []

        store.add_write_listener(self.mark_stale)

    def add_transition_listener(self, listener: Callable[[int], None]) -> None:
        """Register a callback invoked with the dimension after every state change."""
        self._listeners.append(listener)

    def _entry(self, dimension: int) -> BucketIndex:
        return self._indexes[self.registry.resolve(dimension).dimension]

    def _transition(self, entry: BucketIndex, new_state: BucketState) -> None:
        # caller holds entry.lock
        old_state = entry.state
        entry.state = new_state
        if old_state != new_state:
            logger.log_bucket_transition(self.collection, entry.bucket.dimension, old_state.value, new_state.value)

    def _notify(self, dimension: int) -> None:
        for listener in self._listeners:
            listener(dimension)

    def state(self, dimension: int) -> BucketState:
        entry = self._entry(dimension)
        with entry.lock:
            return entry.state

    def states(self) -> Dict[int, BucketState]:
        return {d: self.state(d) for d in self._indexes}

    def strategy(self, dimension: int) -> IndexStrategy:
        return self._entry(dimension).bucket.index_strategy

    def status(self, dimension: int) -> BucketStatus:
        entry = self._entry(dimension)
        with entry.lock:
            state = entry.state
            built_at = entry.built_at
            lists = entry.artifact.lists if entry.artifact is not None else 0
        return BucketStatus(
            dimension=entry.bucket.dimension,
            slot=entry.bucket.slot,
            strategy=entry.bucket.index_strategy,
            state=state,
            record_count=self.store.count(entry.bucket.dimension),
            lists=lists,
            model_hint=self.store.model_hint(entry.bucket.dimension),
            built_at=built_at,
        )

    def mark_stale(self, dimension: int) -> None:
        """A write landed in this bucket; a ready index no longer covers it."""
        entry = self._entry(dimension)
        if entry.bucket.index_strategy == IndexStrategy.EXACT:
            return
        with entry.lock:
            if entry.state != BucketState.READY:
                return
            self._transition(entry, BucketState.STALE)
        self._notify(entry.bucket.dimension)

    def rebuild(self, dimension: int) -> BucketStatus:
        """Build the bucket's index from a snapshot; all-or-nothing."""
        entry = self._entry(dimension)
        bucket = entry.bucket

        if bucket.index_strategy == IndexStrategy.EXACT:
            logger.log_operation("index.rebuild", "skipped",
                                 {"collection": self.collection, "dimension": bucket.dimension,
                                  "reason": "exact strategy, nothing to build"})
            return self.status(bucket.dimension)

        with entry.build_lock:
            with entry.lock:
                prior_state = entry.state
                self._transition(entry, BucketState.BUILDING)
            self._notify(bucket.dimension)

            start_time = time.time()
            snapshot = self.store.snapshot(bucket.dimension)
            try:
                artifact = self._build(bucket, snapshot)
            except Exception as e:
                with entry.lock:
                    if prior_state == BucketState.READY and self.store.version(bucket.dimension) != snapshot.version:
                        # the kept index misses writes that landed during the failed build
                        self._transition(entry, BucketState.STALE)
                    else:
                        self._transition(entry, prior_state)
                logger.log_index_build(self.collection, bucket.dimension, start_time, time.time(),
                                       status="failed", details={"error": str(e)})
                self._notify(bucket.dimension)
                raise IndexBuildError(f"Index rebuild failed for dimension {bucket.dimension}: {e}") from e

            with entry.lock:
                entry.artifact = artifact
                entry.built_at = artifact.built_at
                if self.store.version(bucket.dimension) == snapshot.version:
                    self._transition(entry, BucketState.READY)
                else:
                    # writes landed while building; they are reachable by exact scan only
                    self._transition(entry, BucketState.STALE)

            logger.log_index_build(self.collection, bucket.dimension, start_time, time.time(),
                                   details={"vectors": len(snapshot), "lists": artifact.lists})
        self._notify(bucket.dimension)
        return self.status(bucket.dimension)

    def _build(self, bucket: DimensionBucket, snapshot: BucketSnapshot) -> BuiltIndex:
        n_vectors = len(snapshot)
        if n_vectors == 0:
            return BuiltIndex(index=None, ids=(), lists=0, built_at=datetime.now())

        vectors = normalize_rows(snapshot.vectors)
        lists = effective_lists(bucket.lists, n_vectors)

        quantizer = self.faiss.IndexFlatIP(bucket.dimension)
        index = self.faiss.IndexIVFFlat(quantizer, bucket.dimension, lists, self.faiss.METRIC_INNER_PRODUCT)
        index.train(vectors)
        index.add_with_ids(vectors, np.arange(n_vectors, dtype=np.int64))
        index.nprobe = min(bucket.probes, lists)

        return BuiltIndex(index=index, ids=snapshot.ids, lists=lists, built_at=datetime.now())

    def shortlist(self, dimension: int, query: np.ndarray, k: int, keep: int = 1) -> Optional[List[str]]:
        """Candidate ids from a ready index, or None when the caller must scan.

        The first `keep` candidates are the ones the caller will return. While the
        k-th candidate still ties with the keep-th, k is doubled so a tied group is
        never cut at an arbitrary label.
        """
        entry = self._entry(dimension)
        with entry.lock:
            if entry.state != BucketState.READY or entry.bucket.index_strategy == IndexStrategy.EXACT:
                return None
            artifact = entry.artifact
        if artifact is None:
            return None
        if artifact.index is None:
            return []

        query_array = normalize_rows(np.asarray(query, dtype=np.float32).reshape(1, -1))
        n_total = len(artifact.ids)
        k = min(k, n_total)
        keep = max(1, min(keep, k))
        while True:
            distances, labels = artifact.index.search(query_array, k)
            found = int(np.count_nonzero(labels[0] >= 0))
            if k >= n_total or found < k:
                break
            if distances[0][k - 1] < distances[0][keep - 1] - TIE_TOLERANCE:
                break
            k = min(k * 2, n_total)
            logger.debug(f"Shortlist for {self.collection}/{dimension} ends in a tie; widening to {k}")
        return [artifact.ids[label] for label in labels[0] if label >= 0]

    def export_artifact(self, dimension: int) -> Tuple[Optional[bytes], Tuple[str, ...]]:
        """Serialised index bytes and id list for persistence."""
        entry = self._entry(dimension)
        with entry.lock:
            artifact = entry.artifact
        if artifact is None or artifact.index is None:
            return None, ()
        return self.faiss.serialize_index(artifact.index).tobytes(), artifact.ids

    def restore(self, dimension: int, state: BucketState, index_blob: Optional[bytes] = None,
                ids: Tuple[str, ...] = (), built_at: Optional[datetime] = None) -> None:
        """Restore persisted bucket state after a restart."""
        entry = self._entry(dimension)
        if entry.bucket.index_strategy == IndexStrategy.EXACT:
            return

        artifact = None
        if state == BucketState.READY:
            if index_blob:
                index = self.faiss.deserialize_index(np.frombuffer(index_blob, dtype=np.uint8).copy())
                index.nprobe = min(entry.bucket.probes, index.nlist)
                artifact = BuiltIndex(index=index, ids=tuple(ids), lists=index.nlist,
                                      built_at=built_at or datetime.now())
            elif self.store.count(dimension) == 0:
                artifact = BuiltIndex(index=None, ids=(), lists=0, built_at=built_at or datetime.now())
            else:
                state = BucketState.STALE
        elif state == BucketState.BUILDING:
            # interrupted build
            state = BucketState.STALE

        with entry.lock:
            entry.artifact = artifact
            entry.built_at = artifact.built_at if artifact is not None else built_at
            entry.state = state

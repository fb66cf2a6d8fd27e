"""
Query planner - dimension detection, strategy selection, scoring, filtering and ranking.
"""

import threading
import time
from typing import List, Optional, Sequence
import numpy as np

from ..core.errors import InvalidQuery, SearchCancelled, SearchTimeout
from ..util.logging import logger
from .index_manager import IndexManager
from .record_store import BucketSnapshot, RecordStore
from .registry import DimensionRegistry
from .types import IndexStrategy, ScoredId

# Shortlist size requested from the index, as a multiple of the result limit
SHORTLIST_FACTOR = 4

# Scores are rounded so identical rows compare equal and ties fall to the id order
SCORE_DECIMALS = 12


def cosine_scores(vectors: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity (1 - cosine distance) of each row against the query.

    Rows or queries with zero norm score 0. Each row is reduced on its own
    (no BLAS matmul) so equal rows always get bit-identical scores.
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    query = np.asarray(query, dtype=np.float64)
    dots = np.einsum('ij,j->i', vectors, query)
    norms = np.sqrt(np.einsum('ij,ij->i', vectors, vectors)) * np.sqrt(np.dot(query, query))
    scores = np.zeros_like(dots)
    np.divide(dots, norms, out=scores, where=norms > 0)
    return np.round(scores, SCORE_DECIMALS)


def rank(candidates, limit: int) -> List[ScoredId]:
    """Descending score, ties broken by ascending id, truncated to limit."""
    ordered = sorted(candidates, key=lambda c: (-c[1], c[0]))
    return [ScoredId(id=record_id, score=score) for record_id, score in ordered[:limit]]


class QueryPlanner:
    """Answers similarity queries against the bucket matching the query's length."""

    def __init__(self, registry: DimensionRegistry, store: RecordStore, index_manager: IndexManager,
                 collection: str = "default", chunk_size: int = 4096):
        self.registry = registry
        self.store = store
        self.index_manager = index_manager
        self.collection = collection
        self.chunk_size = max(1, chunk_size)

    def search(self, vector: Sequence[float], threshold: float = 0.7, limit: int = 10,
               source_id: Optional[str] = None, timeout: Optional[float] = None,
               cancel_event: Optional[threading.Event] = None) -> List[ScoredId]:
        """
        Rank records of the query's dimension by cosine similarity.

        Args:
            vector: Query embedding; its length selects the bucket
            threshold: Minimum similarity a result must reach
            limit: Maximum number of results
            source_id: Only consider records owned by this source
            timeout: Seconds before the query aborts with SearchTimeout
            cancel_event: Set to abort the query with SearchCancelled

        Returns:
            Ranked ScoredId list, possibly empty
        """
        deadline = time.monotonic() + timeout if timeout is not None else None

        if isinstance(limit, bool) or not isinstance(limit, (int, np.integer)) or limit < 1:
            raise InvalidQuery(f"limit must be a positive integer, got {limit!r}")
        try:
            threshold = float(threshold)
            query = np.asarray(vector, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidQuery(f"Query vector must be a sequence of floats: {e}") from e
        if query.ndim != 1:
            raise InvalidQuery("Query vector must be one-dimensional")

        bucket = self.registry.resolve(self.registry.detect_dimension(query))

        if not np.all(np.isfinite(query)) or not np.isfinite(threshold):
            raise InvalidQuery("Query vector and threshold must be finite")

        self._check(cancel_event, deadline)

        candidates = None
        strategy = "exact_scan"
        if bucket.index_strategy == IndexStrategy.APPROXIMATE and source_id is None:
            shortlist = self.index_manager.shortlist(bucket.dimension, query, limit * SHORTLIST_FACTOR,
                                                     keep=limit)
            if shortlist is not None:
                candidates = self.store.fetch(bucket.dimension, shortlist)
                strategy = "index"
            else:
                logger.debug(f"Index unavailable for {self.collection}/{bucket.dimension}; scanning bucket")

        if candidates is None:
            candidates = self.store.snapshot(bucket.dimension)

        try:
            scored = self._score(candidates, query, threshold, source_id, cancel_event, deadline)
        except (SearchCancelled, SearchTimeout):
            logger.log_search(self.collection, bucket.dimension, strategy, len(candidates), 0,
                              status="aborted")
            raise

        results = rank(scored, limit)
        logger.log_search(self.collection, bucket.dimension, strategy, len(candidates), len(results))
        return results

    def _score(self, candidates: BucketSnapshot, query: np.ndarray, threshold: float,
               source_id: Optional[str], cancel_event, deadline):
        scored = []
        for start in range(0, len(candidates), self.chunk_size):
            self._check(cancel_event, deadline)
            end = start + self.chunk_size
            scores = cosine_scores(candidates.vectors[start:end], query)
            for offset in np.flatnonzero(scores >= threshold):
                position = start + int(offset)
                if source_id is not None and candidates.source_ids[position] != source_id:
                    continue
                scored.append((candidates.ids[position], float(scores[offset])))
        self._check(cancel_event, deadline)
        return scored

    @staticmethod
    def _check(cancel_event, deadline) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SearchCancelled("Search cancelled")
        if deadline is not None and time.monotonic() > deadline:
            raise SearchTimeout("Search exceeded its timeout")
